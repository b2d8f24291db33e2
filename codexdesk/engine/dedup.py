"""Suppress identical diffs shown more than once within a turn."""

from __future__ import annotations


class DiffSeenSet:
    """Raw diff texts already shown during the current turn.

    Cleared only by the turn lifecycle, never by content matching.
    """

    __slots__ = ("_seen",)

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def should_show(self, raw_diff: str) -> bool:
        if raw_diff in self._seen:
            return False
        self._seen.add(raw_diff)
        return True

    def clear(self) -> None:
        self._seen.clear()

    def __contains__(self, raw_diff: object) -> bool:
        return raw_diff in self._seen

    def __len__(self) -> int:
        return len(self._seen)


__all__ = ["DiffSeenSet"]
