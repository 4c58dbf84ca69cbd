#!/usr/bin/env python3
"""
sbedit - Finder Sidebar Favorites Editor

Adds, removes and lists the items of the Finder sidebar (macOS 14 and
later, .sfl3 shared file lists).

Usage:
    sbedit --add PATH [PATH ...]
    sbedit --remove PATH
    sbedit --removeAll
    sbedit --list [--show-unresolved]
    sbedit --reload [--force]
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional
import logging

from archive_explorer import describe_archive
from bookmark_codec import BookmarkCodec
from favorite_item_store import FavoriteItemStore
from shell_service_reloader import ShellServiceReloader
from sidebar_errors import SidebarError
from sidebar_file_manager import SidebarFileManager, default_favorites_location

logger = logging.getLogger(__name__)


class SidebarEditor:
    """Runs one command as a load -> edit -> save transaction."""

    def __init__(self, manager: SidebarFileManager, codec: Optional[BookmarkCodec] = None,
                 dry_run: bool = False, backup: bool = False):
        self.manager = manager
        self.codec = codec or BookmarkCodec()
        self.dry_run = dry_run
        self.backup = backup

    def _open_store(self) -> FavoriteItemStore:
        self.manager.ensure_exists()
        return FavoriteItemStore(self.manager.load(), self.codec)

    def _commit(self, store: FavoriteItemStore):
        if self.dry_run:
            print("🧪 DRY RUN - favorites file left unchanged")
            return

        if self.backup:
            backup_path = self.manager.backup()
            print(f"💾 Backup written to {backup_path}")

        self.manager.save(store.to_graph())

    def add(self, paths: List[str]) -> int:
        store = self._open_store()
        result = store.add_many(paths)

        for url in result.added:
            print(f"✅ Added {url}")
        for path, error in result.failures:
            print(f"❌ Error adding item {path!r}: {error}")

        if not result.succeeded:
            return 1

        self._commit(store)
        return 0

    def remove(self, path: str) -> int:
        store = self._open_store()

        if store.remove(path):
            print(f"🗑️  Removed {path}")
        else:
            print(f"ℹ️  No sidebar item matches {path}")

        self._commit(store)
        return 0

    def remove_all(self) -> int:
        print("Removing all items from the sidebar")
        store = self._open_store()
        store.remove_all()
        self._commit(store)
        return 0

    def list(self, show_unresolved: bool = False) -> int:
        store = self._open_store()

        if not show_unresolved:
            for url in store.list():
                print(url)
            return 0

        for entry in store.entries():
            if entry.resolved:
                print(entry.url)
            else:
                print(f"# unresolved item {entry.uuid}: {entry.error}", file=sys.stderr)
        return 0

    def dump(self) -> int:
        store_graph = self._open_store().to_graph()
        print(f"📁 Favorites file: {self.manager.location}")
        for line in describe_archive(store_graph, self.codec):
            print(line)
        return 0

    def restore(self, backup_path: str) -> int:
        if self.dry_run:
            print(f"🧪 Would restore {self.manager.location} from {backup_path}")
            return 0

        self.manager.restore(Path(backup_path))
        print(f"✅ Restored favorites from {backup_path}")
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='sbedit',
        description="Edit the Finder sidebar favorites",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sbedit --add ~/Projects ~/Documents     # Add two folders
  sbedit --remove ~/Projects              # Remove one folder
  sbedit --list                           # Show the sidebar items
  sbedit --reload --force                 # Restart sharedfilelistd and Finder
        """
    )

    commands = parser.add_mutually_exclusive_group()
    commands.add_argument('--add', nargs='+', metavar='PATH', help='Add one or more locations')
    commands.add_argument('--remove', metavar='PATH', help='Remove a location')
    commands.add_argument('--removeAll', dest='remove_all', action='store_true',
                          help='Remove every item from the sidebar')
    commands.add_argument('--list', action='store_true', help='List the sidebar items')
    commands.add_argument('--reload', action='store_true',
                          help='Restart the services so Finder picks up the changes')
    commands.add_argument('--dump', action='store_true', help='Describe the favorites file contents')
    commands.add_argument('--restore', metavar='BACKUP', help='Restore the favorites file from a backup')

    parser.add_argument('--force', action='store_true', help='With --reload, also restart Finder')
    parser.add_argument('--show-unresolved', action='store_true',
                        help='With --list, report items whose bookmark cannot be resolved')
    parser.add_argument('--file', type=Path, help='Favorites file to edit instead of the default one')
    parser.add_argument('--dry-run', action='store_true', help='Do everything except saving the file')
    parser.add_argument('--backup', action='store_true', help='Back up the favorites file before saving')
    parser.add_argument('--snapshot', type=Path, metavar='PATH',
                        help='Also write the decoded archive to PATH as an XML plist')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging output')
    parser.add_argument('--log-file', type=Path, metavar='PATH', help='Also write the log to PATH')

    return parser


def configure_logging(verbose: bool = False, log_file: Optional[Path] = None):
    handlers = [logging.StreamHandler()]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def run_command(args: argparse.Namespace) -> int:
    if args.reload:
        print("🔄 Reloading services...")
        ShellServiceReloader().reload(force=args.force)
        print("✅ Services reloaded")
        return 0

    location = args.file if args.file is not None else default_favorites_location()
    manager = SidebarFileManager(location, snapshot_path=args.snapshot)
    editor = SidebarEditor(manager, dry_run=args.dry_run, backup=args.backup)

    if args.add is not None:
        return editor.add(args.add)
    if args.remove is not None:
        return editor.remove(args.remove)
    if args.remove_all:
        return editor.remove_all()
    if args.list:
        return editor.list(show_unresolved=args.show_unresolved)
    if args.dump:
        return editor.dump()
    return editor.restore(args.restore)


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose, args.log_file)

    has_command = (args.add is not None or args.remove is not None or args.remove_all
                   or args.list or args.reload or args.dump or args.restore is not None)
    if not has_command:
        parser.print_usage()
        print("Unknown command: no command")
        sys.exit(1)

    try:
        sys.exit(run_command(args))

    except SidebarError as e:
        print(f"❌ {e}")
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\n⚠️ Cancelled by user")
        sys.exit(1)
    except Exception as e:
        print(f"\n❌ Unexpected error: {e}")
        logger.exception("Unexpected error")
        sys.exit(1)


if __name__ == "__main__":
    main()
