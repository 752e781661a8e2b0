#!/usr/bin/env python3
"""
Entry point used by cron to resolve and summarize pending news rows.

Usage:
    python3 scripts/run_resolution.py --rows-db datasets/rows.sqlite --import-jsonl datasets/news.jsonl
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.services.resolution import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
