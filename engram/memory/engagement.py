"""Engagement tracking - taps and promotion."""

from typing import TYPE_CHECKING

from loguru import logger

from engram.memory.event import MemoryEvent
from engram.memory.record import GEN_PERMANENT, derive_generation

if TYPE_CHECKING:
    from engram.memory.store import MemoryStore


class EngagementTracker:
    """
    Records usage signal against memories.

    A tap appends a TAP event; the projection maintainer turns it into an
    incremented ``tap_count`` and a fresh ``last_tapped_at``. Generation is
    never written here: it is derived from ``tap_count`` on read. The only
    generation-related write is the one-off PROMOTE event, appended the first
    time a memory reaches generation 2.
    """

    def __init__(self, store: "MemoryStore"):
        self.store = store

    def tap(self, ref: str) -> int:
        """
        Tap one memory.

        Args:
            ref: Exact id or unambiguous prefix.

        Returns:
            The updated tap count.

        Raises:
            NotFound: No live memory matches ``ref``.
            AmbiguousId: The prefix matches several live memories.
        """
        with self.store.transaction():
            memory_id = self.store.resolve(ref)
            return self._tap_resolved(memory_id)

    def tap_by_match(self, substring: str) -> list[str]:
        """
        Tap every live memory whose content contains ``substring``.

        Matching is case-sensitive. Nothing matching is a normal outcome and
        returns an empty list; an empty substring matches nothing.

        Returns:
            Ids of the tapped memories, in creation order.
        """
        if not substring:
            return []

        with self.store.transaction():
            ids = [row.id for row in self.store.view.search(substring)]
            for memory_id in ids:
                self._tap_resolved(memory_id)

        if ids:
            logger.debug(f"Tapped {len(ids)} memories matching {substring!r}")
        return ids

    def _tap_resolved(self, memory_id: str) -> int:
        """Append TAP (and PROMOTE if due) for a live id. Caller holds the transaction."""
        self.store.commit_event(MemoryEvent(
            action="TAP",
            memory_id=memory_id,
            timestamp=self.store.now(),
        ))

        row = self.store.view.get(memory_id)
        tap_count = row.tap_count if row else 0
        threshold = self.store.config.policy.promotion_threshold

        if (
            derive_generation(tap_count, threshold) == GEN_PERMANENT
            and not self.store.ledger.has_event("PROMOTE", memory_id)
        ):
            self.store.commit_event(MemoryEvent(
                action="PROMOTE",
                memory_id=memory_id,
                timestamp=self.store.now(),
                payload={"from": 1, "to": 2, "tap_count": tap_count},
            ))
            logger.info(f"Promoted memory {memory_id} to generation 2 ({tap_count} taps)")

        return tap_count
