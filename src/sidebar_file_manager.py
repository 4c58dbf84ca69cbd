#!/usr/bin/env python3
"""
Sidebar File Manager

Reads and writes the Finder favorites shared file list (.sfl3), creates an
empty one when it is missing, and keeps lz4-compressed backups of it.
"""

import plistlib
from datetime import datetime
from pathlib import Path
from typing import Optional
import logging

import lz4.block

from favorite_item_store import bootstrap_graph
from keyed_archive_codec import KeyedArchiveCodec, ValueGraph, to_plain
from sidebar_errors import (
    ArchiveReadFailure,
    ArchiveWriteFailure,
    CorruptArchive,
    DisallowedType,
    LocationUnavailable,
    SidebarError,
)

logger = logging.getLogger(__name__)

APPLICATION_SUPPORT = 'Library/Application Support'
SHARED_FILE_LIST_CONTAINER = 'com.apple.sharedfilelist'
FAVORITES_FILE_NAME = 'com.apple.LSSharedFileList.FavoriteItems.sfl3'

BACKUP_MAGIC = b'sfbLz40\0'


def default_favorites_location() -> Path:
    """Path of the current user's Finder favorites file."""
    try:
        home_dir = Path.home()
    except (RuntimeError, KeyError) as e:
        raise LocationUnavailable(f"Unable to find the Application Support folder: {e}") from e

    return home_dir / APPLICATION_SUPPORT / SHARED_FILE_LIST_CONTAINER / FAVORITES_FILE_NAME


def compress_backup(data: bytes) -> bytes:
    """Frame archive bytes as an lz4 backup (magic + size-prefixed lz4 block)."""
    return BACKUP_MAGIC + lz4.block.compress(data, store_size=True)


def decompress_backup(blob: bytes) -> bytes:
    if not blob.startswith(BACKUP_MAGIC):
        raise ValueError("Not an sbedit backup file")
    try:
        return lz4.block.decompress(blob[len(BACKUP_MAGIC):])
    except lz4.block.LZ4BlockError as e:
        raise ValueError(f"Corrupt backup: {e}") from e


class SidebarFileManager:
    """Load / save transactions against one favorites file."""

    def __init__(self, location: Path, codec: Optional[KeyedArchiveCodec] = None,
                 snapshot_path: Optional[Path] = None):
        self.location = Path(location)
        self.codec = codec or KeyedArchiveCodec()
        self.snapshot_path = snapshot_path

    def ensure_exists(self) -> bool:
        """Create an empty favorites file if there is none. Returns True if created."""
        if self.location.exists():
            return False

        logger.info(f"Creating empty favorites file at {self.location}")
        try:
            self.location.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveWriteFailure(self.location, str(e)) from e

        self.save(bootstrap_graph())
        return True

    def load(self) -> ValueGraph:
        """Read and decode the favorites file."""
        try:
            data = self.location.read_bytes()
        except FileNotFoundError as e:
            raise ArchiveReadFailure(self.location, "file does not exist") from e
        except OSError as e:
            raise ArchiveReadFailure(self.location, str(e)) from e

        try:
            graph = self.codec.decode(data)
        except (CorruptArchive, DisallowedType) as e:
            logger.error(f"Failed to decode {self.location}: {e}")
            raise ArchiveReadFailure(self.location, str(e)) from e

        if self.snapshot_path is not None:
            self._write_snapshot(graph)

        return graph

    def save(self, graph: ValueGraph):
        """Encode graph and replace the favorites file with it."""
        try:
            data = self.codec.encode(graph)
        except SidebarError as e:
            raise ArchiveWriteFailure(self.location, f"cannot encode archive: {e}") from e

        try:
            with open(self.location, 'wb') as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Failed to save {self.location}: {e}")
            raise ArchiveWriteFailure(self.location, str(e)) from e

        logger.info(f"💾 Saved favorites file {self.location}")

    def _write_snapshot(self, graph: ValueGraph):
        """Write the decoded graph as an XML plist for inspection. Best effort."""
        try:
            with open(self.snapshot_path, 'wb') as f:
                plistlib.dump(to_plain(graph), f, fmt=plistlib.FMT_XML)
            logger.debug(f"Wrote archive snapshot to {self.snapshot_path}")
        except (OSError, TypeError, ValueError, OverflowError) as e:
            logger.warning(f"Could not write archive snapshot to {self.snapshot_path}: {e}")

    def backup(self, backup_dir: Optional[Path] = None) -> Path:
        """Write an lz4-compressed copy of the favorites file and return its path."""
        target_dir = Path(backup_dir) if backup_dir is not None else self.location.parent

        try:
            data = self.location.read_bytes()
        except OSError as e:
            raise ArchiveReadFailure(self.location, str(e)) from e

        stamp = datetime.now().strftime('%Y%m%d-%H%M%S-%f')
        backup_path = target_dir / f"{self.location.name}.{stamp}.lz4"

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            backup_path.write_bytes(compress_backup(data))
        except OSError as e:
            raise ArchiveWriteFailure(backup_path, str(e)) from e

        logger.info(f"✅ Backed up favorites file to {backup_path.name}")
        return backup_path

    def restore(self, backup_path: Path):
        """Replace the favorites file with the contents of a backup."""
        backup_path = Path(backup_path)

        try:
            data = decompress_backup(backup_path.read_bytes())
        except (OSError, ValueError) as e:
            raise ArchiveReadFailure(backup_path, str(e)) from e

        # Never put back something we could not load ourselves
        try:
            self.codec.decode(data)
        except (CorruptArchive, DisallowedType) as e:
            raise ArchiveReadFailure(backup_path, str(e)) from e

        try:
            self.location.parent.mkdir(parents=True, exist_ok=True)
            with open(self.location, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise ArchiveWriteFailure(self.location, str(e)) from e

        logger.info(f"✅ Restored {self.location} from {backup_path.name}")
