"""Shared utilities for branchchat."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime


def utc_timestamp() -> str:
    """Return current UTC timestamp in ISO format.

    Returns:
        ISO-formatted timestamp string.
    """
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


def drop_none(data: dict, keep: set[str] | None = None) -> dict:
    """Drop None values from a dict while keeping specified keys."""
    keep = keep or set()
    return {k: v for k, v in data.items() if v is not None or k in keep}
