"""Fixed pool of agent names."""

from __future__ import annotations

from collections.abc import Iterable

AGENT_NAMES: tuple[str, ...] = (
    "alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel",
    "india", "juliet", "kilo", "lima", "mike", "november", "oscar", "papa",
    "quebec", "romeo", "sierra", "tango", "uniform", "victor", "whiskey",
    "xray", "yankee", "zulu",
)


def get_available_names(existing: Iterable[str], count: int) -> list[str]:
    """First *count* pool names not in *existing*, in pool order.

    Returns fewer than *count* names when the pool runs out.
    """
    if count <= 0:
        return []
    taken = set(existing)
    return [name for name in AGENT_NAMES if name not in taken][:count]


def is_valid_name(name: str) -> bool:
    """Names double as branch and directory components."""
    return bool(name) and name.isascii() and all(c.isalnum() or c in "-_" for c in name)
