"""Identifier generation helpers."""

from __future__ import annotations

import uuid


def new_id() -> str:
    """Create a UUID4-based row identifier."""
    return str(uuid.uuid4())


def new_connection_id() -> str:
    """Create a short identifier for one realtime connection."""
    return uuid.uuid4().hex[:12]
