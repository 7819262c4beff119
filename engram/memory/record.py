"""Memory records and generation derivation."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime

from engram.memory import scope as scopes
from engram.memory.scope import Scope

DEFAULT_PROMOTION_THRESHOLD = 3

# Generation tiers
GEN_EPHEMERAL = 0
GEN_SURVIVING = 1
GEN_PERMANENT = 2

GENERATION_LABELS = {
    GEN_EPHEMERAL: "ephemeral",
    GEN_SURVIVING: "surviving",
    GEN_PERMANENT: "permanent",
}


def derive_generation(tap_count: int, promotion_threshold: int = DEFAULT_PROMOTION_THRESHOLD) -> int:
    """
    Derive the engagement tier from a tap count.

    - 0: never tapped
    - 1: tapped, below the promotion threshold
    - 2: tapped at least ``promotion_threshold`` times
    """
    if tap_count <= 0:
        return GEN_EPHEMERAL
    if tap_count < promotion_threshold:
        return GEN_SURVIVING
    return GEN_PERMANENT


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class MemoryRow:
    """
    A row of the ``memories`` projection table.

    Holds only stored fields. Generation is never stored; see ``Memory``.
    """

    id: str
    content: str
    scope: str
    tap_count: int
    last_tapped_at: datetime | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MemoryRow":
        return cls(
            id=row["id"],
            content=row["content"],
            scope=row["scope"],
            tap_count=row["tap_count"],
            last_tapped_at=_parse_ts(row["last_tapped_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def to_params(self) -> tuple:
        """Positional parameters for an INSERT into ``memories``."""
        return (
            self.id,
            self.content,
            self.scope,
            self.tap_count,
            self.last_tapped_at.isoformat() if self.last_tapped_at else None,
            self.created_at.isoformat(),
        )


@dataclass(frozen=True)
class Memory:
    """
    A live memory as seen by callers.

    Attributes:
        id: Stable external identifier.
        content: Opaque text payload.
        scope: Visibility scope.
        tap_count: Number of taps since creation.
        last_tapped_at: Time of the most recent tap, if any.
        created_at: Creation time.
        generation: Engagement tier derived from ``tap_count`` at read time.
    """

    id: str
    content: str
    scope: Scope
    tap_count: int
    last_tapped_at: datetime | None
    created_at: datetime
    generation: int

    @classmethod
    def from_projection(
        cls,
        row: MemoryRow,
        promotion_threshold: int = DEFAULT_PROMOTION_THRESHOLD,
    ) -> "Memory":
        return cls(
            id=row.id,
            content=row.content,
            scope=scopes.normalize(row.scope),
            tap_count=row.tap_count,
            last_tapped_at=row.last_tapped_at,
            created_at=row.created_at,
            generation=derive_generation(row.tap_count, promotion_threshold),
        )

    def age_days(self, now: datetime) -> float:
        """Elapsed days since creation (fractional)."""
        return (now - self.created_at).total_seconds() / 86400

    def __str__(self) -> str:
        return f"[{self.id}] taps:{self.tap_count} | {self.content}"
