#!/usr/bin/env python3
"""
Sidebar Errors

Exception types raised while reading, editing and writing the Finder
sidebar favorites file.
"""

from pathlib import Path
from typing import Optional


class SidebarError(Exception):
    """Base class for every error raised by sbedit."""


class InvalidPath(SidebarError):
    """A path string could not be normalized into an absolute location."""

    def __init__(self, path, reason: str = "invalid path"):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid path {path!r}: {reason}")


class DuplicateItem(SidebarError):
    """The location is already present in the favorites list."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Item already exists in the list: {url}")


class UnresolvableBookmark(SidebarError):
    """Bookmark data is corrupt or points to something we cannot decode."""


class CorruptArchive(SidebarError):
    """The keyed archive is malformed."""


class DisallowedType(SidebarError):
    """The archive references a class outside the decoder's safelist."""

    def __init__(self, class_name):
        self.class_name = class_name
        super().__init__(f"Archive references disallowed class {class_name!r}")


class ArchiveReadFailure(SidebarError):
    """The favorites file could not be read or decoded."""

    def __init__(self, location: Path, message: str):
        self.location = location
        super().__init__(f"Unable to read {location}: {message}")


class ArchiveWriteFailure(SidebarError):
    """The favorites file could not be encoded or written."""

    def __init__(self, location: Optional[Path], message: str):
        self.location = location
        super().__init__(f"Unable to write {location}: {message}")


class LocationUnavailable(SidebarError):
    """The default favorites file location cannot be determined."""
