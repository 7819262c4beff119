"""Memory event data structure."""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, get_args

from engram.memory.errors import Corruption


# Actions recorded in the event log
EventAction = Literal["ADD", "TAP", "EDIT", "REMOVE", "EXPIRE", "PROMOTE"]

ACTIONS: tuple[str, ...] = get_args(EventAction)

# Actions that end a memory's life
TERMINAL_ACTIONS = ("REMOVE", "EXPIRE")


@dataclass(frozen=True)
class MemoryEvent:
    """
    An immutable event in the log.

    Represents a single state-changing operation. Events are never updated
    or deleted once committed; the current state of every memory is derived
    from them.

    Attributes:
        action: Type of operation.
        memory_id: The memory this event applies to.
        timestamp: When the event was recorded (UTC).
        payload: Action-specific data (content for ADD/EDIT, reason for EXPIRE).
        sequence_id: Position in the log, assigned on append (None before).
    """

    action: EventAction
    memory_id: str | None
    timestamp: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    sequence_id: int | None = None

    def __post_init__(self) -> None:
        if self.action not in ACTIONS:
            raise ValueError(f"Unknown event action: {self.action}")

    @property
    def is_terminal(self) -> bool:
        return self.action in TERMINAL_ACTIONS

    def payload_json(self) -> str | None:
        """Serialize the payload for storage (None when empty)."""
        if not self.payload:
            return None
        return json.dumps(self.payload, ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MemoryEvent":
        """
        Create from an ``events`` table row.

        Raises:
            Corruption: If the row holds an unknown action or unreadable data.
        """
        try:
            payload = json.loads(row["data"]) if row["data"] else {}
            return cls(
                action=row["action"],
                memory_id=row["memory_id"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                payload=payload,
                sequence_id=row["id"],
            )
        except (ValueError, TypeError) as e:
            raise Corruption(f"Unreadable event #{row['id']}: {e}") from e

    def with_sequence(self, sequence_id: int) -> "MemoryEvent":
        """Return a copy carrying its assigned log position."""
        return MemoryEvent(
            action=self.action,
            memory_id=self.memory_id,
            timestamp=self.timestamp,
            payload=self.payload,
            sequence_id=sequence_id,
        )

    def __str__(self) -> str:
        """Human-readable representation."""
        return f"#{self.sequence_id} [{self.action}] {self.memory_id or '-'}"
