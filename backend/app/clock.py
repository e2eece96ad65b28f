"""
clock.py — single source of "now" for models and services.

All timestamps are timezone-aware UTC. Validity checks (code expiry,
refresh-token expiry) are always done in SQL WHERE clauses against a value
produced here, never by comparing a loaded column in Python.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
