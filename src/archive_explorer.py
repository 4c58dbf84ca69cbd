#!/usr/bin/env python3
"""
Archive Explorer

Human-readable description of a decoded favorites archive, used by --dump
to investigate what Finder stored.
"""

import uuid
from typing import List, Optional

from bookmark_codec import BookmarkCodec
from favorite_item_store import (
    BOOKMARK_KEY,
    CUSTOM_PROPERTIES_KEY,
    ITEMS_KEY,
    UUID_KEY,
    VISIBILITY_KEY,
    FavoriteItemStore,
)
from keyed_archive_codec import ArchiveTimestamp, ValueGraph


def format_value(value) -> str:
    """Short display form of a graph value."""
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    if isinstance(value, ArchiveTimestamp):
        return value.to_datetime().isoformat()
    if isinstance(value, uuid.UUID):
        return str(value).upper()
    if isinstance(value, dict):
        inner = ', '.join(f"{k}: {format_value(v)}" for k, v in value.items())
        return '{' + inner + '}'
    if isinstance(value, list):
        return '[' + ', '.join(format_value(v) for v in value) + ']'
    return repr(value)


def describe_archive(graph: ValueGraph, codec: Optional[BookmarkCodec] = None) -> List[str]:
    lines = [f"📋 Top-level keys: {list(graph.root.keys())}"]

    store = FavoriteItemStore(graph, codec)
    lines.append("⚙️  Properties:")
    for key, value in store.properties.items():
        lines.append(f"  • {key}: {format_value(value)}")

    items = graph.get(ITEMS_KEY)
    if not isinstance(items, list):
        lines.append("❌ No items list found")
        return lines

    lines.append(f"📁 Items: {len(items)}")
    for entry, item in zip(store.entries(), items):
        if entry.resolved:
            status = entry.url + (" (stale)" if entry.stale else "")
        else:
            status = f"❌ unresolvable: {entry.error}"
        lines.append(f"{entry.index + 1:2}. {status}")

        if not isinstance(item, dict):
            continue

        lines.append(f"    uuid: {entry.uuid}")
        lines.append(f"    visibility: {format_value(item.get(VISIBILITY_KEY))}")
        if CUSTOM_PROPERTIES_KEY in item:
            lines.append(f"    custom properties: {format_value(item[CUSTOM_PROPERTIES_KEY])}")

        # Anything Finder stored that we do not model
        known = {UUID_KEY, VISIBILITY_KEY, BOOKMARK_KEY, CUSTOM_PROPERTIES_KEY}
        for key in item:
            if key not in known:
                lines.append(f"    {key}: {format_value(item[key])}")

    return lines
