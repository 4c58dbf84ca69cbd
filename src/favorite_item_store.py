#!/usr/bin/env python3
"""
Favorite Item Store

Adds, removes and lists Finder sidebar favorites inside a decoded
shared file list archive.

Items are identified by the canonical file URL their bookmark resolves to.
Items whose bookmark cannot be resolved are inert: they are kept in the
archive but ignored by dedup, removal and listing.
"""

import copy
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple
import logging

from bookmark_codec import BookmarkCodec, ResolvedBookmark, canonical_url, normalize_path
from keyed_archive_codec import ValueGraph
from sidebar_errors import (
    CorruptArchive,
    DuplicateItem,
    InvalidPath,
    SidebarError,
    UnresolvableBookmark,
)

logger = logging.getLogger(__name__)

ITEMS_KEY = 'items'
PROPERTIES_KEY = 'properties'
UUID_KEY = 'uuid'
VISIBILITY_KEY = 'visibility'
BOOKMARK_KEY = 'Bookmark'
CUSTOM_PROPERTIES_KEY = 'CustomItemProperties'

FORCE_TEMPLATE_ICONS_KEY = 'com.apple.LSSharedFileList.ForceTemplateIcons'
ITEM_IS_HIDDEN_KEY = 'com.apple.LSSharedFileList.ItemIsHidden'
DONT_SHOW_ON_REAPPEARANCE_KEY = 'com.apple.finder.dontshowonreappearance'

# Items whose last path component contains this get no custom properties
DESKTOP_MARKER = 'Desktop'
VISIBLE = 0


def bootstrap_graph() -> ValueGraph:
    """Contents of a freshly created, empty favorites file."""
    return ValueGraph({
        ITEMS_KEY: [],
        PROPERTIES_KEY: {FORCE_TEMPLATE_ICONS_KEY: True},
    })


@dataclass
class FavoriteEntry:
    """Resolution result for one item of the list."""
    index: int
    uuid: Optional[str]
    url: Optional[str] = None
    path: Optional[str] = None
    stale: bool = False
    error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.error is None


@dataclass
class BatchAddResult:
    """Outcome of adding several paths in one go."""
    added: List[str] = field(default_factory=list)
    failures: List[Tuple[str, SidebarError]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.added)


class FavoriteItemStore:
    """Edits the items of a favorites archive.

    The store works on its own copy of the graph; call to_graph() to get
    the edited state for saving.
    """

    def __init__(self, graph: ValueGraph, codec: Optional[BookmarkCodec] = None):
        self._graph = graph.copy()
        self.codec = codec or BookmarkCodec()

    def to_graph(self) -> ValueGraph:
        return self._graph.copy()

    @property
    def properties(self) -> Dict[str, Any]:
        return copy.deepcopy(self._graph.get(PROPERTIES_KEY, {}))

    def _items(self) -> List[Any]:
        items = self._graph.get(ITEMS_KEY)
        if not isinstance(items, list):
            raise CorruptArchive("Unable to find the items list in the archive")
        return items

    def _resolve_item(self, item) -> ResolvedBookmark:
        if not isinstance(item, dict):
            raise UnresolvableBookmark("Item is not a dictionary")
        bookmark = item.get(BOOKMARK_KEY)
        if not isinstance(bookmark, bytes):
            raise UnresolvableBookmark("Item has no bookmark data")
        return self.codec.resolve(bookmark)

    def entries(self) -> Iterator[FavoriteEntry]:
        """Resolve every item in list order, reporting failures per item."""
        for index, item in enumerate(self._items()):
            item_uuid = item.get(UUID_KEY) if isinstance(item, dict) else None
            if item_uuid is not None:
                item_uuid = str(item_uuid)

            try:
                resolved = self._resolve_item(item)
            except UnresolvableBookmark as e:
                yield FavoriteEntry(index=index, uuid=item_uuid, error=str(e))
                continue

            yield FavoriteEntry(
                index=index,
                uuid=item_uuid,
                url=resolved.url,
                path=resolved.path,
                stale=resolved.stale,
            )

    def list(self) -> Iterator[str]:
        """URLs of the resolvable items, in sidebar order."""
        for entry in self.entries():
            if entry.resolved:
                yield entry.url
            else:
                logger.debug(f"Skipping unresolvable item #{entry.index}: {entry.error}")

    def _first_match(self, url: str) -> Optional[FavoriteEntry]:
        for entry in self.entries():
            if entry.resolved and entry.url == url:
                return entry
        return None

    def add(self, path: str) -> str:
        """Append a new favorite for path and return its URL."""
        normalized = normalize_path(path)
        url = canonical_url(normalized)
        items = self._items()

        if self._first_match(url) is not None:
            raise DuplicateItem(url)

        bookmark = self.codec.from_path(normalized)

        item = {}
        if DESKTOP_MARKER not in os.path.basename(normalized):
            item[CUSTOM_PROPERTIES_KEY] = {
                ITEM_IS_HIDDEN_KEY: 1,
                DONT_SHOW_ON_REAPPEARANCE_KEY: 0,
            }
        item[UUID_KEY] = str(uuid.uuid4()).upper()
        item[VISIBILITY_KEY] = VISIBLE
        item[BOOKMARK_KEY] = bookmark

        items.append(item)
        logger.info(f"✅ Added {url}")
        return url

    def add_many(self, paths: Iterable[str]) -> BatchAddResult:
        """Add each path independently, collecting the failures."""
        result = BatchAddResult()
        for path in paths:
            try:
                result.added.append(self.add(path))
            except (InvalidPath, DuplicateItem, UnresolvableBookmark) as e:
                logger.error(f"Error adding item {path!r}: {e}")
                result.failures.append((path, e))
        return result

    def remove(self, path: str) -> bool:
        """Remove the first item resolving to path; False when none does."""
        url = canonical_url(normalize_path(path))
        items = self._items()

        match = self._first_match(url)
        if match is None:
            logger.info(f"No item matches {url}")
            return False

        del items[match.index]
        logger.info(f"🗑️  Removed {url}")
        return True

    def remove_all(self) -> int:
        """Empty the items list, leaving every other field alone."""
        previous = self._graph.get(ITEMS_KEY)
        removed = len(previous) if isinstance(previous, list) else 0
        self._graph[ITEMS_KEY] = []
        logger.info(f"Removed {removed} items")
        return removed
