#!/usr/bin/env python3
"""
sbEdit - Finder Sidebar Favorites Editor

Runs the sbedit command line straight from a checkout.

Usage:
    python3 sbedit.py --add ~/Projects [--dry-run] [--backup]
    python3 sbedit.py --list
"""

import sys
from pathlib import Path

# Import our modules
sys.path.append(str(Path(__file__).parent / "src"))
from sidebar_cli import main


if __name__ == "__main__":
    main()
