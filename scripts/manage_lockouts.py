#!/usr/bin/env python3
"""Manage login lockouts from the command line.

Usage:
  python scripts/manage_lockouts.py clear user@example.com
  python scripts/manage_lockouts.py cleanup
  python scripts/manage_lockouts.py show user@example.com

Environment:
  DATABASE_URL (defaults to backend/data/stageworks.db)
"""
from __future__ import annotations

from stageworks.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
