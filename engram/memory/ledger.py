"""
Event ledger - immutable append-only event log.

This module implements the bottom layer of the memory system: the event log.
Every state change is recorded as an event that is never modified or deleted,
only appended. The log is the single source of truth; the ``memories``
projection can always be regenerated from it.
"""

import sqlite3
from typing import Iterator

from loguru import logger

from engram.memory.errors import DuplicateId
from engram.memory.event import ACTIONS, MemoryEvent

_SCAN_BATCH = 256


class EventLedger:
    """
    Append-only event log stored in the ``events`` table.

    Each appended event receives a monotonically increasing ``sequence_id``
    (the table's AUTOINCREMENT key) which defines the total order of the log.

    Appends must happen inside a store transaction so that the event and the
    matching projection update commit together.

    Attributes:
        conn: SQLite connection owned by the store.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # =========================================================================
    # Writes
    # =========================================================================

    def append(self, event: MemoryEvent) -> int:
        """
        Append an event to the log.

        Args:
            event: The event to append (its ``sequence_id`` is ignored).

        Returns:
            The assigned sequence id.

        Raises:
            DuplicateId: If ``event`` is an ADD for an id that was already added.
            RuntimeError: If called outside a transaction.
        """
        if not self.conn.in_transaction:
            raise RuntimeError("Event log appends must run inside a store transaction")

        if event.action == "ADD" and self.has_event("ADD", event.memory_id):
            raise DuplicateId(event.memory_id or "")

        cursor = self.conn.execute(
            "INSERT INTO events (timestamp, action, memory_id, data) VALUES (?, ?, ?, ?)",
            (
                event.timestamp.isoformat(),
                event.action,
                event.memory_id,
                event.payload_json(),
            ),
        )
        sequence_id = cursor.lastrowid
        logger.debug(f"Appended event #{sequence_id} {event.action} {event.memory_id}")
        return sequence_id

    # =========================================================================
    # Reads
    # =========================================================================

    def scan(
        self,
        action: str | None = None,
        memory_id: str | None = None,
        limit: int | None = None,
        descending: bool = False,
    ) -> Iterator[MemoryEvent]:
        """
        Iterate over events in log order.

        The iterator is lazy and finite; calling ``scan`` again starts over.

        Args:
            action: Only events with this action.
            memory_id: Only events for this memory.
            limit: Maximum number of events to yield.
            descending: Newest first instead of oldest first.

        Yields:
            Events ordered by sequence id.
        """
        if action is not None and action not in ACTIONS:
            raise ValueError(f"Unknown event action: {action}")

        sql = "SELECT id, timestamp, action, memory_id, data FROM events WHERE 1=1"
        params: list = []
        if action is not None:
            sql += " AND action = ?"
            params.append(action)
        if memory_id is not None:
            sql += " AND memory_id = ?"
            params.append(memory_id)
        sql += " ORDER BY id DESC" if descending else " ORDER BY id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(limit, 0))

        cursor = self.conn.execute(sql, params)
        try:
            while True:
                rows = cursor.fetchmany(_SCAN_BATCH)
                if not rows:
                    break
                for row in rows:
                    yield MemoryEvent.from_row(row)
        finally:
            cursor.close()

    def has_event(self, action: str, memory_id: str | None) -> bool:
        """Check if an event with this action exists for a memory."""
        row = self.conn.execute(
            "SELECT 1 FROM events WHERE action = ? AND memory_id = ? LIMIT 1",
            (action, memory_id),
        ).fetchone()
        return row is not None

    def find_ids_by_prefix(self, prefix: str) -> list[str]:
        """Ids of all memories ever added whose id starts with ``prefix``, oldest first."""
        rows = self.conn.execute(
            "SELECT memory_id FROM events WHERE action = 'ADD' AND substr(memory_id, 1, ?) = ? "
            "ORDER BY id",
            (len(prefix), prefix),
        ).fetchall()
        return [row["memory_id"] for row in rows]

    def count(self, action: str | None = None) -> int:
        """Count events in the log, optionally for one action."""
        if action is None:
            row = self.conn.execute("SELECT COUNT(*) FROM events").fetchone()
        else:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM events WHERE action = ?", (action,)
            ).fetchone()
        return row[0]

    def last_content(self, memory_id: str) -> str | None:
        """
        Get the last content recorded for a memory.

        Works for terminated memories too, since the log keeps their history.
        """
        for event in self.scan(memory_id=memory_id, descending=True):
            if event.action == "EDIT":
                return event.payload.get("new")
            if event.action == "ADD":
                return event.payload.get("content")
        return None
