"""
At-most-once filter over freshly evaluated alerts.
"""
from __future__ import annotations

from typing import Iterable

from app.services.alerts.rules import AlertItem


def filter_new_alerts(
    alerts: Iterable[AlertItem],
    notified_keys: set[tuple[str, str, str]],
) -> list[AlertItem]:
    """
    Drop every alert whose (vehicle id, alert type, bucket) was already
    announced. A bucket change yields a different key and passes through.
    Duplicates inside the same batch collapse to the first occurrence.
    """
    seen = set(notified_keys)
    fresh: list[AlertItem] = []
    for alert in alerts:
        key = alert.natural_key
        if key in seen:
            continue
        seen.add(key)
        fresh.append(alert)
    return fresh
