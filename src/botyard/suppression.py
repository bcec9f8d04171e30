"""Self-write tracking and announcement dedup helpers.

Components that persist their own state into a bot record (the
announcement scheduler's dedup set, the starboard's posted ids, the
supervisor's online/offline status) must not have those writes mistaken
for operator edits by the config watcher, which would reload the bot on
every poll. Each such writer registers the revision its write will
produce before writing; the watcher consumes that revision instead of
reloading. Any revision the watcher sees that was not registered is an
external edit, even when it lands right after a self-write.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")

ANNOUNCED_IDS_CAP = 500
POSTED_MESSAGE_IDS_CAP = 1000


class SelfWriteLedger:
    """Revisions of bot records that were produced by our own writes."""

    def __init__(self) -> None:
        self._pending: dict[str, set[int]] = defaultdict(set)

    def expect(self, bot_id: str, revision: int) -> None:
        """Register that ``revision`` of ``bot_id`` is about to be self-written."""
        self._pending[bot_id].add(revision)

    def discard(self, bot_id: str, revision: int) -> None:
        """Withdraw an expectation whose write did not happen."""
        pending = self._pending.get(bot_id)
        if pending is None:
            return
        pending.discard(revision)
        if not pending:
            del self._pending[bot_id]

    def consume(self, bot_id: str, revision: int) -> bool:
        """Check whether the observed revision is one of our own writes.

        Expectations at or below ``revision`` are dropped either way: the
        watcher has moved past them.

        Returns:
            True if the watcher should treat the change as a self-write.
        """
        pending = self._pending.get(bot_id)
        if not pending:
            return False
        matched = revision in pending
        remaining = {r for r in pending if r > revision}
        if remaining:
            self._pending[bot_id] = remaining
        else:
            del self._pending[bot_id]
        return matched

    def forget(self, bot_id: str) -> None:
        """Drop every expectation for a bot (e.g. after deletion)."""
        self._pending.pop(bot_id, None)

    def pending(self, bot_id: str) -> set[int]:
        """Revisions still expected for a bot."""
        return set(self._pending.get(bot_id, ()))


def unseen(items: Iterable[T], seen: Iterable[str], key: Callable[[T], str]) -> list[T]:
    """Items whose key is not in ``seen``, in their original order.

    Duplicate keys within ``items`` are collapsed to their first occurrence.
    """
    seen_set = set(seen)
    result: list[T] = []
    for item in items:
        item_key = key(item)
        if item_key in seen_set:
            continue
        seen_set.add(item_key)
        result.append(item)
    return result


def merge_seen(existing: Sequence[str], new: Iterable[str], cap: int) -> list[str]:
    """Append new ids to a seen-list and keep only the most recent ``cap``.

    Order is insertion order, so trimming evicts the oldest entries first.
    """
    merged = list(dict.fromkeys(existing))
    present = set(merged)
    for item_id in new:
        if item_id not in present:
            merged.append(item_id)
            present.add(item_id)
    return merged[-cap:] if cap > 0 else []
