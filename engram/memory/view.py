"""
Memory view - the current-state projection of the event log.

The ``memories`` table is a materialized view: every row is derived from the
events recorded for its id. Events are applied in order:
- ADD: creates a row (content and scope from the payload)
- TAP: increments ``tap_count`` and sets ``last_tapped_at``
- EDIT: replaces the content
- REMOVE / EXPIRE: deletes the row
- PROMOTE: informational, no state change

The same rules are implemented twice: incrementally in SQL (``apply``) and as
a pure fold over events (``replay``). The fold is the oracle that ``verify``
and ``rebuild`` use.
"""

import sqlite3
from dataclasses import replace
from typing import Iterable

from loguru import logger

from engram.memory.errors import Corruption
from engram.memory.event import MemoryEvent
from engram.memory.ledger import EventLedger
from engram.memory.record import MemoryRow

_COLUMNS = "id, content, scope, tap_count, last_tapped_at, created_at"


def replay(events: Iterable[MemoryEvent]) -> dict[str, MemoryRow]:
    """
    Fold events into projection rows, starting from empty state.

    Args:
        events: Events in ascending sequence order.

    Returns:
        Mapping of memory id to row, in creation order.

    Raises:
        Corruption: If an event refers to a memory that is not live, or an
            ADD reuses a live id.
    """
    rows: dict[str, MemoryRow] = {}

    for event in events:
        memory_id = event.memory_id
        if memory_id is None:
            continue

        if event.action == "ADD":
            if memory_id in rows:
                raise Corruption(f"Event #{event.sequence_id} re-adds live memory {memory_id}", [memory_id])
            rows[memory_id] = MemoryRow(
                id=memory_id,
                content=event.payload.get("content", ""),
                scope=event.payload.get("scope", "global"),
                tap_count=0,
                last_tapped_at=None,
                created_at=event.timestamp,
            )
            continue

        current = rows.get(memory_id)
        if current is None:
            raise Corruption(
                f"Event #{event.sequence_id} ({event.action}) refers to unknown memory {memory_id}",
                [memory_id],
            )

        if event.action == "TAP":
            rows[memory_id] = replace(
                current,
                tap_count=current.tap_count + 1,
                last_tapped_at=event.timestamp,
            )
        elif event.action == "EDIT":
            rows[memory_id] = replace(current, content=event.payload.get("new", current.content))
        elif event.is_terminal:
            del rows[memory_id]

    return rows


class ProjectionView:
    """
    Maintains the ``memories`` table from the event log.

    Writes go through ``apply`` only, which the store calls inside the same
    transaction as the corresponding ``EventLedger.append``.
    """

    def __init__(self, conn: sqlite3.Connection, ledger: EventLedger):
        self.conn = conn
        self.ledger = ledger

    # =========================================================================
    # Incremental maintenance
    # =========================================================================

    def apply(self, event: MemoryEvent) -> None:
        """
        Apply one event to the projection.

        Raises:
            Corruption: If the event targets a memory that is not live.
        """
        memory_id = event.memory_id
        if memory_id is None:
            return

        if event.action == "ADD":
            self.conn.execute(
                f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, 0, NULL, ?)",
                (
                    memory_id,
                    event.payload.get("content", ""),
                    event.payload.get("scope", "global"),
                    event.timestamp.isoformat(),
                ),
            )
            return

        if event.action == "TAP":
            cursor = self.conn.execute(
                "UPDATE memories SET tap_count = tap_count + 1, last_tapped_at = ? WHERE id = ?",
                (event.timestamp.isoformat(), memory_id),
            )
        elif event.action == "EDIT":
            cursor = self.conn.execute(
                "UPDATE memories SET content = ? WHERE id = ?",
                (event.payload.get("new", ""), memory_id),
            )
        elif event.is_terminal:
            cursor = self.conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        else:
            return

        if cursor.rowcount != 1:
            raise Corruption(f"{event.action} applied to missing memory {memory_id}", [memory_id])

    # =========================================================================
    # Full replay
    # =========================================================================

    def replay(self) -> dict[str, MemoryRow]:
        """Replay the whole log into rows without touching the table."""
        return replay(self.ledger.scan())

    def rebuild(self) -> int:
        """
        Discard the projection and regenerate it from the event log.

        Must run inside a store transaction.

        Returns:
            Number of live memories after the rebuild.
        """
        rows = self.replay()
        self.conn.execute("DELETE FROM memories")
        self.conn.executemany(
            f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            [row.to_params() for row in rows.values()],
        )
        logger.info(f"Rebuilt projection: {len(rows)} memories from {self.ledger.count()} events")
        return len(rows)

    def verify(self) -> None:
        """
        Compare the projection with a full replay.

        Raises:
            Corruption: If any row differs, is missing, or is extra.
        """
        expected = self.replay()
        actual = {row.id: row for row in self.all_rows()}

        mismatched = sorted(
            memory_id
            for memory_id in expected.keys() | actual.keys()
            if expected.get(memory_id) != actual.get(memory_id)
        )
        if mismatched:
            logger.warning(f"Projection diverges from event log for {len(mismatched)} memories")
            raise Corruption(
                f"Projection does not match the event log for {len(mismatched)} memories; "
                "run rebuild",
                mismatched,
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, memory_id: str) -> MemoryRow | None:
        """Get a live row by exact id."""
        row = self.conn.execute(
            f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
        ).fetchone()
        return MemoryRow.from_row(row) if row else None

    def find_by_prefix(self, prefix: str) -> list[str]:
        """Ids of live memories starting with ``prefix``."""
        rows = self.conn.execute(
            "SELECT id FROM memories WHERE substr(id, 1, ?) = ? ORDER BY created_at, rowid",
            (len(prefix), prefix),
        ).fetchall()
        return [row["id"] for row in rows]

    def all_rows(self) -> list[MemoryRow]:
        """All live rows in creation order."""
        rows = self.conn.execute(
            f"SELECT {_COLUMNS} FROM memories ORDER BY created_at, rowid"
        ).fetchall()
        return [MemoryRow.from_row(row) for row in rows]

    def search(self, substring: str) -> list[MemoryRow]:
        """Live rows whose content contains ``substring`` (case-sensitive)."""
        rows = self.conn.execute(
            f"SELECT {_COLUMNS} FROM memories WHERE instr(content, ?) > 0 "
            "ORDER BY created_at, rowid",
            (substring,),
        ).fetchall()
        return [MemoryRow.from_row(row) for row in rows]
