"""
Garbage collection - engagement-decay retention policy.

A live memory is an expiry candidate only if all of these hold:
- it has never been tapped (generation 0);
- it is at least ``grace_period_days`` old;
- it is not the most recently created memory in its scope.

Any tap at all removes a memory from candidacy for good. Candidates are
returned oldest first so a per-run cap discards the oldest unused memories.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from engram.memory.event import MemoryEvent
from engram.memory.record import GEN_EPHEMERAL, Memory, MemoryRow

if TYPE_CHECKING:
    from engram.memory.store import MemoryStore


@dataclass(frozen=True)
class ExpiryCandidate:
    """A memory selected for expiry and the reason it was selected."""

    memory_id: str
    reason: str

    def __iter__(self):
        # Unpacks as (memory_id, reason)
        return iter((self.memory_id, self.reason))


def select_candidates(
    rows: list[MemoryRow],
    now: datetime,
    grace_period_days: float,
    promotion_threshold: int,
) -> list[ExpiryCandidate]:
    """
    Apply the retention policy to projection rows.

    Args:
        rows: Live rows in creation order.
        now: Reference time for ages.
        grace_period_days: Minimum age before a memory can expire.
        promotion_threshold: Threshold for generation derivation.

    Returns:
        Candidates in ascending creation order.
    """
    # Rows arrive in creation order, so the last row per scope is the newest.
    newest_by_scope: dict[str, str] = {}
    for row in rows:
        newest_by_scope[row.scope] = row.id

    candidates = []
    for row in rows:
        memory = Memory.from_projection(row, promotion_threshold)
        if memory.generation != GEN_EPHEMERAL:
            continue
        age = memory.age_days(now)
        if age < grace_period_days:
            continue
        if newest_by_scope[row.scope] == row.id:
            continue
        candidates.append(ExpiryCandidate(
            memory_id=row.id,
            reason=f"never tapped, {int(age)} days old",
        ))
    return candidates


class GarbageCollector:
    """Evaluates the retention policy and expires candidates."""

    def __init__(self, store: "MemoryStore"):
        self.store = store

    def collect(self, dry_run: bool = True, limit: int | None = None) -> list[ExpiryCandidate]:
        """
        Find and (unless ``dry_run``) expire candidates.

        A dry run writes nothing and returns exactly the list a real run at
        the same instant would act on, in the same order.

        Args:
            dry_run: Report only, do not append EXPIRE events.
            limit: Maximum number of memories to expire in this run.

        Returns:
            The selected candidates, oldest first.
        """
        policy = self.store.config.policy
        if limit is None:
            limit = policy.gc_max_expire

        with self.store.transaction(write=not dry_run):
            now = self.store.now()
            candidates = select_candidates(
                self.store.view.all_rows(),
                now,
                policy.grace_period_days,
                policy.promotion_threshold,
            )
            if limit is not None:
                candidates = candidates[:max(limit, 0)]

            if not dry_run:
                for candidate in candidates:
                    self.store.commit_event(MemoryEvent(
                        action="EXPIRE",
                        memory_id=candidate.memory_id,
                        timestamp=now,
                        payload={"reason": candidate.reason},
                    ))

        logger.info(
            f"GC {'dry run' if dry_run else 'run'}: "
            f"{len(candidates)} {'candidates' if dry_run else 'expired'}"
        )
        return candidates
