from __future__ import annotations

from typing import Any, Mapping, Optional


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def death_count(headers: Optional[Mapping[str, Any]], queue: Optional[str] = None) -> int:
    """Count dead-letter cycles recorded in an ``x-death`` header.

    RabbitMQ appends one table per (queue, reason) pair and increments its
    ``count`` on every further cycle. When ``queue`` is given only entries for
    that queue are counted.
    """
    if not headers:
        return 0
    deaths = headers.get("x-death") or []
    total = 0
    for entry in deaths:
        if not isinstance(entry, Mapping):
            continue
        if queue is not None and _text(entry.get("queue", "")) != queue:
            continue
        total += int(entry.get("count", 1))
    return total


def record_death(
    headers: Optional[Mapping[str, Any]], queue: str, reason: str = "rejected"
) -> dict[str, Any]:
    """Return a copy of ``headers`` with one more death for ``queue``."""
    updated = dict(headers or {})
    deaths = [dict(entry) for entry in updated.get("x-death") or []]
    for entry in deaths:
        if _text(entry.get("queue", "")) == queue and entry.get("reason") == reason:
            entry["count"] = int(entry.get("count", 1)) + 1
            break
    else:
        deaths.insert(0, {"queue": queue, "reason": reason, "count": 1})
    updated["x-death"] = deaths
    return updated


def retries_exhausted(count: int, max_retries: int) -> bool:
    return count >= max_retries
