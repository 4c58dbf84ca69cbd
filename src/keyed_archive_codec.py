#!/usr/bin/env python3
"""
Keyed Archive Codec

Decodes and encodes NSKeyedArchiver property lists such as the Finder's
.sfl3 shared file lists.

Only a closed set of value kinds can come out of the decoder: maps, ordered
lists, strings, binary data, numbers, UUIDs and dates. Archived objects are
looked up by class name in CLASS_KINDS; any other class fails with
DisallowedType before its fields are read.
"""

import copy
import plistlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
import logging

from sidebar_errors import CorruptArchive, DisallowedType

logger = logging.getLogger(__name__)

ARCHIVER_NAME = 'NSKeyedArchiver'
ARCHIVE_VERSION = 100000
NULL_MARKER = '$null'
MAX_DEPTH = 200
MAX_DECODED_VALUES = 100_000

MAC_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

# Archived class name -> value kind
CLASS_KINDS = {
    'NSDictionary': 'map',
    'NSMutableDictionary': 'map',
    'NSArray': 'list',
    'NSMutableArray': 'list',
    'NSString': 'string',
    'NSMutableString': 'string',
    'NSData': 'data',
    'NSMutableData': 'data',
    'NSUUID': 'uuid',
    'NSDate': 'date',
}

CLASS_HIERARCHY = {
    'NSMutableDictionary': ['NSMutableDictionary', 'NSDictionary', 'NSObject'],
    'NSMutableArray': ['NSMutableArray', 'NSArray', 'NSObject'],
    'NSUUID': ['NSUUID', 'NSObject'],
    'NSDate': ['NSDate', 'NSObject'],
}


@dataclass(frozen=True)
class ArchiveTimestamp:
    """An archived NSDate, kept as seconds since 2001-01-01 UTC."""
    seconds: float

    def to_datetime(self) -> datetime:
        return MAC_EPOCH + timedelta(seconds=self.seconds)

    @classmethod
    def from_datetime(cls, value: datetime) -> 'ArchiveTimestamp':
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return cls((value - MAC_EPOCH).total_seconds())


class ValueGraph:
    """Owned root map of a decoded archive.

    Holders that want to change the graph take a copy(); nothing hands out
    the same nested dicts and lists to two owners.
    """

    def __init__(self, root: Dict[str, Any]):
        if not isinstance(root, dict):
            raise CorruptArchive(f"Archive root must be a map, got {type(root).__name__}")
        self._root = root

    @property
    def root(self) -> Dict[str, Any]:
        return self._root

    def get(self, key: str, default=None):
        return self._root.get(key, default)

    def __getitem__(self, key: str):
        return self._root[key]

    def __setitem__(self, key: str, value):
        self._root[key] = value

    def __contains__(self, key) -> bool:
        return key in self._root

    def copy(self) -> 'ValueGraph':
        return ValueGraph(copy.deepcopy(self._root))

    def __eq__(self, other) -> bool:
        return isinstance(other, ValueGraph) and self._root == other._root

    def __repr__(self) -> str:
        return f"ValueGraph(keys={list(self._root.keys())})"


def _uid_index(ref) -> int:
    """Index of an object reference (binary UID or XML CF$UID dict)."""
    if isinstance(ref, plistlib.UID):
        return ref.data
    if isinstance(ref, dict) and set(ref) == {'CF$UID'} and isinstance(ref['CF$UID'], int):
        return ref['CF$UID']
    raise CorruptArchive(f"Expected an object reference, got {type(ref).__name__}")


class _ArchiveReader:
    """Walks the $objects table starting from a reference."""

    def __init__(self, objects: List[Any]):
        self.objects = objects
        self._active = set()
        self._decoded = 0
        self._decoders = {
            'map': self._decode_map,
            'list': self._decode_list,
            'string': self._decode_string,
            'data': self._decode_data,
            'uuid': self._decode_uuid,
            'date': self._decode_date,
        }

    def _lookup(self, ref) -> int:
        index = _uid_index(ref)
        if not 0 <= index < len(self.objects):
            raise CorruptArchive(f"Object reference {index} out of range")
        return index

    def resolve(self, ref, depth: int = 0):
        if depth > MAX_DEPTH:
            raise CorruptArchive("Archive nesting is too deep")

        # Shared objects are expanded at every reference
        self._decoded += 1
        if self._decoded > MAX_DECODED_VALUES:
            raise CorruptArchive(f"Archive expands to more than {MAX_DECODED_VALUES} values")

        index = self._lookup(ref)
        obj = self.objects[index]

        if index == 0:
            return None
        if isinstance(obj, (bool, int, float, str, bytes)):
            return obj
        if not isinstance(obj, dict):
            raise CorruptArchive(f"Unexpected {type(obj).__name__} in archive objects")

        if index in self._active:
            raise CorruptArchive("Archive contains a reference cycle")

        kind = self._kind_of(obj)
        self._active.add(index)
        try:
            return self._decoders[kind](obj, depth)
        finally:
            self._active.discard(index)

    def _kind_of(self, obj: Dict) -> str:
        if '$class' not in obj:
            raise CorruptArchive("Archived object has no class reference")

        class_info = self.objects[self._lookup(obj['$class'])]
        if not isinstance(class_info, dict) or not isinstance(class_info.get('$classname'), str):
            raise CorruptArchive("Archived object has a malformed class entry")

        class_name = class_info['$classname']
        kind = CLASS_KINDS.get(class_name)
        if kind is None:
            logger.warning(f"Refusing archived class {class_name}")
            raise DisallowedType(class_name)
        return kind

    def _decode_map(self, obj: Dict, depth: int) -> Dict[str, Any]:
        keys = obj.get('NS.keys')
        values = obj.get('NS.objects')
        if not isinstance(keys, list) or not isinstance(values, list) or len(keys) != len(values):
            raise CorruptArchive("Malformed archived dictionary")

        result = {}
        for key_ref, value_ref in zip(keys, values):
            key = self.resolve(key_ref, depth + 1)
            if not isinstance(key, str):
                raise CorruptArchive(f"Dictionary key must be a string, got {type(key).__name__}")
            result[key] = self.resolve(value_ref, depth + 1)
        return result

    def _decode_list(self, obj: Dict, depth: int) -> List[Any]:
        values = obj.get('NS.objects')
        if not isinstance(values, list):
            raise CorruptArchive("Malformed archived array")
        return [self.resolve(ref, depth + 1) for ref in values]

    def _decode_string(self, obj: Dict, depth: int) -> str:
        value = obj.get('NS.string')
        if not isinstance(value, str):
            raise CorruptArchive("Malformed archived string")
        return value

    def _decode_data(self, obj: Dict, depth: int) -> bytes:
        value = obj.get('NS.bytes')
        if not isinstance(value, bytes):
            raise CorruptArchive("Malformed archived data")
        return value

    def _decode_uuid(self, obj: Dict, depth: int) -> uuid.UUID:
        value = obj.get('NS.uuidbytes')
        if not isinstance(value, bytes) or len(value) != 16:
            raise CorruptArchive("Malformed archived UUID")
        return uuid.UUID(bytes=value)

    def _decode_date(self, obj: Dict, depth: int) -> ArchiveTimestamp:
        value = obj.get('NS.time')
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise CorruptArchive("Malformed archived date")
        return ArchiveTimestamp(float(value))


class _ArchiveWriter:
    """Flattens a value graph into a $objects table."""

    def __init__(self):
        self.objects = [NULL_MARKER]
        self._shared = {}
        self._classes = {}

    def _append(self, value) -> plistlib.UID:
        self.objects.append(value)
        return plistlib.UID(len(self.objects) - 1)

    def _class_uid(self, class_name: str) -> plistlib.UID:
        uid = self._classes.get(class_name)
        if uid is None:
            uid = self._append({
                '$classname': class_name,
                '$classes': CLASS_HIERARCHY[class_name],
            })
            self._classes[class_name] = uid
        return uid

    def archive(self, value, depth: int = 0) -> plistlib.UID:
        if depth > MAX_DEPTH:
            raise CorruptArchive("Value graph nesting is too deep")

        if value is None:
            return plistlib.UID(0)

        if isinstance(value, (bool, int, float, str, bytes)):
            key = (type(value), value)
            uid = self._shared.get(key)
            if uid is None:
                uid = self._append(value)
                self._shared[key] = uid
            return uid

        if isinstance(value, dict):
            # Containers come before their children, like NSKeyedArchiver does
            uid = self._append(None)
            keys, values = [], []
            for key, item in value.items():
                if not isinstance(key, str):
                    raise DisallowedType(type(key).__name__)
                keys.append(self.archive(key, depth + 1))
                values.append(self.archive(item, depth + 1))
            self.objects[uid.data] = {
                'NS.keys': keys,
                'NS.objects': values,
                '$class': self._class_uid('NSMutableDictionary'),
            }
            return uid

        if isinstance(value, list):
            uid = self._append(None)
            values = [self.archive(item, depth + 1) for item in value]
            self.objects[uid.data] = {
                'NS.objects': values,
                '$class': self._class_uid('NSMutableArray'),
            }
            return uid

        if isinstance(value, uuid.UUID):
            return self._append({'NS.uuidbytes': value.bytes, '$class': self._class_uid('NSUUID')})

        if isinstance(value, ArchiveTimestamp):
            return self._append({'NS.time': value.seconds, '$class': self._class_uid('NSDate')})

        raise DisallowedType(type(value).__name__)


class KeyedArchiveCodec:
    """Converts between keyed archive bytes and ValueGraph."""

    def decode(self, data: bytes) -> ValueGraph:
        """Decode archive bytes; fails closed on anything outside the safelist."""
        try:
            archive = plistlib.loads(data)
        except Exception as e:
            raise CorruptArchive(f"Not a property list: {e}") from e

        if not isinstance(archive, dict):
            raise CorruptArchive("Archive is not a dictionary")
        if archive.get('$archiver') != ARCHIVER_NAME:
            raise CorruptArchive(f"Unsupported archiver {archive.get('$archiver')!r}")

        objects = archive.get('$objects')
        if not isinstance(objects, list) or not objects or objects[0] != NULL_MARKER:
            raise CorruptArchive("Archive has no valid $objects table")

        top = archive.get('$top')
        if not isinstance(top, dict) or 'root' not in top:
            raise CorruptArchive("Archive has no root object")

        reader = _ArchiveReader(objects)
        try:
            root = reader.resolve(top['root'])
        except RecursionError as e:
            raise CorruptArchive("Archive nesting is too deep") from e

        logger.debug(f"Decoded archive with {len(objects)} objects")
        return ValueGraph(root)

    def encode(self, graph: ValueGraph) -> bytes:
        """Encode a graph as a binary NSKeyedArchiver property list."""
        writer = _ArchiveWriter()
        root = writer.archive(graph.root)

        archive = {
            '$version': ARCHIVE_VERSION,
            '$archiver': ARCHIVER_NAME,
            '$top': {'root': root},
            '$objects': writer.objects,
        }
        try:
            return plistlib.dumps(archive, fmt=plistlib.FMT_BINARY, sort_keys=False)
        except (OverflowError, TypeError, ValueError) as e:
            raise CorruptArchive(f"Cannot encode archive: {e}") from e


def to_plain(value):
    """Plist-friendly copy of a graph value, for the diagnostic snapshot."""
    if isinstance(value, ValueGraph):
        value = value.root
    if value is None:
        return NULL_MARKER
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_plain(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value).upper()
    if isinstance(value, ArchiveTimestamp):
        return value.to_datetime().replace(tzinfo=None)
    return value
