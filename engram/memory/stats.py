"""Usage insights over the projection and the event log."""

import sqlite3
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from engram.memory.record import Memory


@dataclass
class MemoryStats:
    """
    Aggregated statistics over live memories.

    Attributes:
        total: Number of live memories.
        by_generation: Counts for generations 0, 1 and 2.
        total_taps: Sum of tap counts.
        never_tapped: Memories with no taps.
        scopes: (scope tag, count) pairs, largest first.
    """

    total: int = 0
    by_generation: list[int] = field(default_factory=lambda: [0, 0, 0])
    total_taps: int = 0
    never_tapped: int = 0
    scopes: list[tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total": self.total,
            "by_generation": list(self.by_generation),
            "total_taps": self.total_taps,
            "never_tapped": self.never_tapped,
            "scopes": dict(self.scopes),
        }


@dataclass
class HotMemory:
    """A memory ranked by recent taps."""

    id: str
    content: str
    recent_taps: int
    total_taps: int


@dataclass
class ActivitySummary:
    """Event counts for one day (UTC)."""

    period: str  # YYYY-MM-DD
    adds: int = 0
    taps: int = 0
    removes: int = 0
    expires: int = 0


def compute_stats(memories: list[Memory]) -> MemoryStats:
    """Aggregate statistics from live memories."""
    stats = MemoryStats(total=len(memories))
    scope_counts: Counter[str] = Counter()

    for memory in memories:
        stats.by_generation[memory.generation] += 1
        stats.total_taps += memory.tap_count
        if memory.tap_count == 0:
            stats.never_tapped += 1
        scope_counts[str(memory.scope)] += 1

    stats.scopes = scope_counts.most_common()
    return stats


def hot_memories(conn: sqlite3.Connection, since: datetime, limit: int = 10) -> list[HotMemory]:
    """
    Live memories with the most TAP events since ``since``.

    Ties are broken by total tap count.
    """
    rows = conn.execute(
        """
        SELECT m.id, m.content, COUNT(e.id) AS recent_taps, m.tap_count
        FROM memories m
        JOIN events e ON e.memory_id = m.id AND e.action = 'TAP' AND e.timestamp >= ?
        GROUP BY m.id
        ORDER BY recent_taps DESC, m.tap_count DESC, m.created_at ASC
        LIMIT ?
        """,
        (since.isoformat(), limit),
    ).fetchall()
    return [
        HotMemory(
            id=row["id"],
            content=row["content"],
            recent_taps=row["recent_taps"],
            total_taps=row["tap_count"],
        )
        for row in rows
    ]


def activity_by_day(conn: sqlite3.Connection, since: datetime) -> list[ActivitySummary]:
    """Per-day event counts since ``since``, newest day first."""
    rows = conn.execute(
        """
        SELECT substr(timestamp, 1, 10) AS day,
               SUM(CASE WHEN action = 'ADD' THEN 1 ELSE 0 END) AS adds,
               SUM(CASE WHEN action = 'TAP' THEN 1 ELSE 0 END) AS taps,
               SUM(CASE WHEN action = 'REMOVE' THEN 1 ELSE 0 END) AS removes,
               SUM(CASE WHEN action = 'EXPIRE' THEN 1 ELSE 0 END) AS expires
        FROM events
        WHERE timestamp >= ?
        GROUP BY day
        ORDER BY day DESC
        """,
        (since.isoformat(),),
    ).fetchall()
    return [
        ActivitySummary(
            period=row["day"],
            adds=row["adds"],
            taps=row["taps"],
            removes=row["removes"],
            expires=row["expires"],
        )
        for row in rows
    ]
