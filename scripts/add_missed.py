#!/usr/bin/env python3
"""
Add articles the feed missed.

Usage:
    python3 scripts/add_missed.py "https://news.google.com/articles/..." --topic Ukraine --priority 2
    python3 scripts/add_missed.py   # process rows marked manual=add
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.services.add_missed import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
