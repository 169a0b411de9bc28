"""GATT identifiers and matching helpers for the Heart Rate profile."""

from __future__ import annotations

from typing import Callable

HEART_RATE_SERVICE_UUID = "0000180D-0000-1000-8000-00805F9B34FB"
HEART_RATE_MEASUREMENT_UUID = "00002A37-0000-1000-8000-00805F9B34FB"

NameFilter = Callable[[str], bool]


def uuid_matches(first: str | None, second: str | None) -> bool:
    """Compare UUIDs case-insensitively, accepting containment either way.

    Adapters report UUIDs in different shapes ("2a37", "00002a37-...",
    "{00002A37-...}"), so a short form contained in the long form matches.
    """

    if not first or not second:
        return False
    first_upper = first.upper()
    second_upper = second.upper()
    return first_upper in second_upper or second_upper in first_upper


def name_contains(token: str) -> NameFilter:
    """Return a filter accepting advertised names that contain ``token``."""

    def _matches(name: str) -> bool:
        return bool(name) and token in name

    return _matches
