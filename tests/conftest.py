"""Shared test fixtures for the sbedit test suite."""

from __future__ import annotations

import plistlib
from pathlib import Path

import pytest

from favorite_item_store import FavoriteItemStore, bootstrap_graph
from sidebar_file_manager import SidebarFileManager


def keyed_archive(objects, root=1, fmt=plistlib.FMT_BINARY) -> bytes:
    """Hand-build NSKeyedArchiver bytes from a raw $objects table."""
    top_root = plistlib.UID(root) if fmt == plistlib.FMT_BINARY else {"CF$UID": root}
    return plistlib.dumps(
        {
            "$version": 100000,
            "$archiver": "NSKeyedArchiver",
            "$top": {"root": top_root},
            "$objects": objects,
        },
        fmt=fmt,
    )


def class_entry(name: str) -> dict:
    return {"$classname": name, "$classes": [name, "NSObject"]}


@pytest.fixture
def favorites_file(tmp_path: Path) -> Path:
    """Location of a favorites file that does not exist yet."""
    return tmp_path / "sharedfilelist" / "favorites.sfl3"


@pytest.fixture
def manager(favorites_file: Path) -> SidebarFileManager:
    return SidebarFileManager(favorites_file)


@pytest.fixture
def folders(tmp_path: Path) -> dict:
    """A few real folders to add to the sidebar."""
    home = tmp_path / "home"
    result = {}
    for name in ("Projects", "Documents", "Desktop"):
        folder = home / name
        folder.mkdir(parents=True)
        result[name] = str(folder)
    return result


@pytest.fixture
def store() -> FavoriteItemStore:
    return FavoriteItemStore(bootstrap_graph())
