"""Elapsed-time helpers shared by activity dispatch and phase reverts."""

from __future__ import annotations

from datetime import datetime, timezone

_UNITS = (("day", 86400), ("hour", 3600), ("minute", 60), ("second", 1))


def as_utc(value: datetime) -> datetime:
    # naive timestamps come back from stores without timezone support
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_completion_difference(triggered_at: datetime, completed_at: datetime) -> str:
    """
    Human-readable time from trigger firing to activity completion.

    >>> format_completion_difference(datetime(2025, 8, 1), datetime(2025, 8, 3, 3))
    '2 days 3 hours'
    """
    delta = as_utc(completed_at) - as_utc(triggered_at)
    total = int(abs(delta.total_seconds()))
    if total == 0:
        return "0 seconds"

    parts = []
    for unit, size in _UNITS:
        amount, total = divmod(total, size)
        if amount:
            parts.append(f"{amount} {unit}" if amount == 1 else f"{amount} {unit}s")

    text = " ".join(parts)
    return f"-{text}" if delta.total_seconds() < 0 else text
