#!/usr/bin/env python3
"""
Bookmark Codec

Converts absolute file system paths to and from relocatable bookmark data,
the opaque blob the Finder stores in each sidebar item.

The blob follows the "book" layout used by macOS bookmark files: a 48 byte
header, a body of typed items and a table of contents mapping keys to item
offsets. Besides the path components we record the inode of every component
so a renamed folder can still be found from its parent.
"""

import os
import stat
import struct
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote
import logging

from sidebar_errors import InvalidPath, UnresolvableBookmark

logger = logging.getLogger(__name__)

BOOKMARK_MAGIC = b'book'
ALIAS_MAGIC = b'alis'
BOOKMARK_VERSION = 0x10040000
HEADER_SIZE = 0x30
TOC_RECORD_TYPE = 0xFFFFFFFE
MAX_ARRAY_DEPTH = 4

# Seconds between the Unix epoch and 2001-01-01 (Core Foundation reference date)
MAC_EPOCH_OFFSET = 978307200.0

# Item types
BMK_STRING = 0x0101
BMK_DATA = 0x0201
BMK_NUMBER = 0x0300
BMK_SINT64 = 0x0304
BMK_DATE = 0x0400
BMK_FALSE = 0x0500
BMK_TRUE = 0x0501
BMK_ARRAY = 0x0601
BMK_URL = 0x0901
BMK_NULL = 0x0A01

NUMBER_FORMATS = {1: '<b', 2: '<h', 3: '<i', 4: '<q', 5: '<f', 6: '<d'}

# Table of contents keys
KEY_PATH = 0x1004
KEY_CNID_PATH = 0x1005
KEY_FILE_PROPERTIES = 0x1010
KEY_FILE_NAME = 0x1020
KEY_FILE_ID = 0x1030
KEY_FILE_CREATION_DATE = 0x1040
KEY_VOLUME_PATH = 0x2002
KEY_VOLUME_URL = 0x2005
KEY_VOLUME_IS_ROOT = 0x2030
KEY_CREATION_OPTIONS = 0xD010

# Resource property flags
PROP_REGULAR_FILE = 0x1
PROP_DIRECTORY = 0x2
PROP_SYMLINK = 0x4
PROP_VALID_MASK = PROP_REGULAR_FILE | PROP_DIRECTORY | PROP_SYMLINK

# NSURLBookmarkCreationSuitableForBookmarkFile
CREATION_OPTIONS = 0x200

URL_SAFE_CHARACTERS = "/!$&'()*+,;=:@"


@dataclass
class ResolvedBookmark:
    """Result of resolving a bookmark blob."""
    path: str
    stale: bool
    is_directory: bool = False

    @property
    def url(self) -> str:
        return canonical_url(self.path, self.is_directory)


def normalize_path(path) -> str:
    """Expand ~, make absolute against the cwd and collapse . and .. components."""
    if not isinstance(path, str) or not path:
        raise InvalidPath(path, "empty path")
    if '\0' in path:
        raise InvalidPath(path, "path contains a NUL character")

    try:
        normalized = os.path.abspath(os.path.expanduser(path))
    except (OSError, ValueError) as e:
        raise InvalidPath(path, str(e)) from e

    # POSIX keeps a leading double slash, Finder does not
    if normalized.startswith('//'):
        normalized = '/' + normalized.lstrip('/')

    # Bookmarks and file URLs store UTF-8 paths
    try:
        normalized.encode('utf-8')
    except UnicodeEncodeError as e:
        raise InvalidPath(path, "path is not valid UTF-8") from e
    return normalized


def canonical_url(path: str, is_directory: Optional[bool] = None) -> str:
    """Absolute file URL for a path, with a trailing slash for directories."""
    if is_directory is None:
        is_directory = os.path.isdir(path)

    url = 'file://' + quote(path, safe=URL_SAFE_CHARACTERS)
    if is_directory and not url.endswith('/'):
        url += '/'
    return url


def _stat_or_none(path: str) -> Optional[os.stat_result]:
    try:
        return os.stat(path)
    except (OSError, ValueError):
        return None


class _BookmarkWriter:
    """Accumulates typed items and finishes them into a bookmark blob."""

    def __init__(self):
        # First four bytes hold the offset of the table of contents
        self.body = bytearray(4)

    def _append(self, item_type: int, payload: bytes) -> int:
        offset = len(self.body)
        self.body += struct.pack('<II', len(payload), item_type)
        self.body += payload
        self.body += b'\0' * (-len(payload) % 4)
        return offset

    def add_string(self, value: str) -> int:
        return self._append(BMK_STRING, value.encode('utf-8'))

    def add_url(self, value: str) -> int:
        return self._append(BMK_URL, value.encode('utf-8'))

    def add_data(self, value: bytes) -> int:
        return self._append(BMK_DATA, value)

    def add_number(self, value: int) -> int:
        return self._append(BMK_SINT64, struct.pack('<q', value))

    def add_date(self, seconds: float) -> int:
        return self._append(BMK_DATE, struct.pack('>d', seconds))

    def add_bool(self, value: bool) -> int:
        return self._append(BMK_TRUE if value else BMK_FALSE, b'')

    def add_array(self, offsets: List[int]) -> int:
        return self._append(BMK_ARRAY, b''.join(struct.pack('<I', o) for o in offsets))

    def finish(self, toc: Dict[int, int]) -> bytes:
        toc_offset = len(self.body)
        keys = sorted(toc)
        self.body += struct.pack('<IIIII', 12 + 12 * len(keys), TOC_RECORD_TYPE, 1, 0, len(keys))
        for key in keys:
            self.body += struct.pack('<III', key, toc[key], 0)
        struct.pack_into('<I', self.body, 0, toc_offset)

        header = struct.pack('<4sIII', BOOKMARK_MAGIC, HEADER_SIZE + len(self.body),
                             BOOKMARK_VERSION, HEADER_SIZE)
        header += b'\0' * (HEADER_SIZE - len(header))
        return header + bytes(self.body)


class _BookmarkReader:
    """Bounds-checked access to the items of a bookmark blob."""

    def __init__(self, data: bytes):
        if len(data) < 16:
            raise UnresolvableBookmark("Bookmark data is too short")

        magic, size, _version, header_size = struct.unpack_from('<4sIII', data, 0)
        if magic == ALIAS_MAGIC:
            raise UnresolvableBookmark("Legacy alias records are not supported")
        if magic != BOOKMARK_MAGIC:
            raise UnresolvableBookmark(f"Not bookmark data (magic {magic!r})")
        if size != len(data):
            raise UnresolvableBookmark(f"Bookmark size mismatch: header says {size}, got {len(data)}")
        if header_size < 16 or header_size + 4 > size:
            raise UnresolvableBookmark(f"Bad bookmark header size {header_size}")

        self.body = data[header_size:]

    def _check(self, offset: int, length: int):
        if offset < 0 or length < 0 or offset + length > len(self.body):
            raise UnresolvableBookmark(f"Bookmark item at offset {offset} is truncated")

    def table_of_contents(self) -> Dict[int, int]:
        """Map of key -> item offset, following chained TOCs."""
        entries = {}
        seen = set()
        offset = struct.unpack_from('<I', self.body, 0)[0]

        while offset:
            if offset in seen:
                raise UnresolvableBookmark("Bookmark table of contents loops")
            seen.add(offset)

            self._check(offset, 20)
            _length, record_type, _level, next_toc, count = struct.unpack_from('<IIIII', self.body, offset)
            if record_type != TOC_RECORD_TYPE:
                raise UnresolvableBookmark(f"Bad table of contents record type 0x{record_type:08x}")

            self._check(offset + 20, 12 * count)
            for i in range(count):
                key, item_offset, _reserved = struct.unpack_from('<III', self.body, offset + 20 + 12 * i)
                if key & 0x80000000:
                    continue  # string keys, not used by Finder items
                entries.setdefault(key, item_offset)

            offset = next_toc

        return entries

    def read_item(self, offset: int, depth: int = 0):
        self._check(offset, 8)
        length, item_type = struct.unpack_from('<II', self.body, offset)
        self._check(offset + 8, length)
        payload = bytes(self.body[offset + 8:offset + 8 + length])

        if item_type in (BMK_STRING, BMK_URL):
            try:
                return payload.decode('utf-8')
            except UnicodeDecodeError as e:
                raise UnresolvableBookmark(f"Bad UTF-8 in bookmark string: {e}") from e

        if item_type == BMK_DATA:
            return payload

        if item_type & 0xFF00 == BMK_NUMBER:
            fmt = NUMBER_FORMATS.get(item_type & 0xFF)
            if fmt is None or struct.calcsize(fmt) != length:
                raise UnresolvableBookmark(f"Unsupported bookmark number type 0x{item_type:04x}")
            return struct.unpack(fmt, payload)[0]

        if item_type == BMK_DATE:
            if length != 8:
                raise UnresolvableBookmark("Bad bookmark date")
            return struct.unpack('>d', payload)[0]

        if item_type in (BMK_FALSE, BMK_TRUE):
            return item_type == BMK_TRUE

        if item_type == BMK_NULL:
            return None

        if item_type == BMK_ARRAY:
            if depth >= MAX_ARRAY_DEPTH or length % 4:
                raise UnresolvableBookmark("Bad bookmark array")
            offsets = struct.unpack(f'<{length // 4}I', payload)
            return [self.read_item(o, depth + 1) for o in offsets]

        raise UnresolvableBookmark(f"Unsupported bookmark item type 0x{item_type:04x}")

    def read_key(self, toc: Dict[int, int], key: int, default=None):
        if key not in toc:
            return default
        return self.read_item(toc[key])


class BookmarkCodec:
    """Creates and resolves bookmark data for sidebar items."""

    def from_path(self, path: str) -> bytes:
        """Create bookmark data for a path (which does not need to exist)."""
        normalized = normalize_path(path)
        components = [c for c in normalized.split('/') if c]
        inodes = self._inode_path(components)
        live = _stat_or_none(normalized)

        writer = _BookmarkWriter()
        toc = {
            KEY_PATH: writer.add_array([writer.add_string(c) for c in components]),
            KEY_CNID_PATH: writer.add_array([writer.add_number(i) for i in inodes]),
            KEY_FILE_PROPERTIES: writer.add_data(self._resource_properties(live)),
            KEY_FILE_NAME: writer.add_string(components[-1] if components else '/'),
            KEY_VOLUME_PATH: writer.add_string('/'),
            KEY_VOLUME_URL: writer.add_url('file:///'),
            KEY_VOLUME_IS_ROOT: writer.add_bool(True),
            KEY_CREATION_OPTIONS: writer.add_number(CREATION_OPTIONS),
        }

        if live is not None:
            created = getattr(live, 'st_birthtime', live.st_mtime)
            toc[KEY_FILE_ID] = writer.add_number(live.st_ino)
            toc[KEY_FILE_CREATION_DATE] = writer.add_date(created - MAC_EPOCH_OFFSET)

        return writer.finish(toc)

    def to_path(self, blob: bytes) -> Tuple[str, bool]:
        """Resolve bookmark data to (absolute path, stale)."""
        resolved = self.resolve(blob)
        return resolved.path, resolved.stale

    def resolve(self, blob: bytes) -> ResolvedBookmark:
        """Resolve bookmark data without any user interaction."""
        if not isinstance(blob, (bytes, bytearray)):
            raise UnresolvableBookmark(f"Bookmark must be binary data, got {type(blob).__name__}")

        reader = _BookmarkReader(bytes(blob))
        toc = reader.table_of_contents()

        volume_url = reader.read_key(toc, KEY_VOLUME_URL)
        if volume_url is not None and not str(volume_url).startswith('file://'):
            raise UnresolvableBookmark(f"Bookmark volume is not a local file URL: {volume_url}")

        components = reader.read_key(toc, KEY_PATH)
        if not isinstance(components, list) or not all(self._valid_component(c) for c in components):
            raise UnresolvableBookmark("Bookmark carries no usable file path")

        inodes = reader.read_key(toc, KEY_CNID_PATH, [])
        if not isinstance(inodes, list) or not all(self._is_int(i) for i in inodes):
            raise UnresolvableBookmark("Bookmark inode path is malformed")

        file_id = reader.read_key(toc, KEY_FILE_ID)
        if file_id is not None and not self._is_int(file_id):
            raise UnresolvableBookmark("Bookmark file id is malformed")

        path, relocated = self._locate(components, inodes)
        live = _stat_or_none(path)
        stale = relocated or (bool(file_id) and (live is None or live.st_ino != file_id))

        if live is not None:
            is_directory = stat.S_ISDIR(live.st_mode)
        else:
            properties = reader.read_key(toc, KEY_FILE_PROPERTIES, b'')
            is_directory = self._recorded_directory_flag(properties)

        if stale:
            logger.debug(f"Bookmark for {path} is stale")
        return ResolvedBookmark(path=path, stale=stale, is_directory=is_directory)

    def _locate(self, components: List[str], inodes: List[int]) -> Tuple[str, bool]:
        """Walk the recorded path, following renames within the same parent folder."""
        current = '/'
        relocated = False

        for index, name in enumerate(components):
            candidate = os.path.join(current, name)
            expected = inodes[index] if index < len(inodes) else 0

            if expected:
                live = _stat_or_none(candidate)
                if live is None or live.st_ino != expected:
                    moved = self._find_by_inode(current, expected)
                    if moved is not None:
                        logger.debug(f"Bookmark component {candidate} moved to {moved}")
                        candidate = moved
                        relocated = True

            current = candidate

        return current, relocated

    @staticmethod
    def _find_by_inode(directory: str, inode: int) -> Optional[str]:
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    try:
                        if entry.stat().st_ino == inode:
                            return entry.path
                    except OSError:
                        continue
        except OSError:
            return None
        return None

    @staticmethod
    def _inode_path(components: List[str]) -> List[int]:
        inodes = []
        current = '/'
        for name in components:
            current = os.path.join(current, name)
            live = _stat_or_none(current) if (not inodes or inodes[-1]) else None
            inodes.append(live.st_ino if live is not None else 0)
        return inodes

    @staticmethod
    def _resource_properties(live: Optional[os.stat_result]) -> bytes:
        if live is None:
            return struct.pack('<QQQ', 0, 0, 0)

        flags = 0
        if stat.S_ISDIR(live.st_mode):
            flags |= PROP_DIRECTORY
        elif stat.S_ISREG(live.st_mode):
            flags |= PROP_REGULAR_FILE
        return struct.pack('<QQQ', flags, PROP_VALID_MASK, 0)

    @staticmethod
    def _recorded_directory_flag(properties) -> bool:
        if not isinstance(properties, bytes) or len(properties) < 16:
            return False
        flags, valid = struct.unpack_from('<QQ', properties, 0)
        return bool(flags & valid & PROP_DIRECTORY)

    @staticmethod
    def _valid_component(component) -> bool:
        return (isinstance(component, str) and component not in ('', '.', '..')
                and '/' not in component and '\0' not in component)

    @staticmethod
    def _is_int(value) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)
