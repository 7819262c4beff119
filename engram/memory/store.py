"""
Memory store - main interface for the memory system.

A ``MemoryStore`` is an explicit handle on one SQLite database holding two
relations: the append-only ``events`` log and the ``memories`` projection.
Every state change goes through ``commit_event``, which appends the event and
applies it to the projection inside one transaction.

Operations:
    - add / edit / remove
    - list / show
    - tap / tap_match
    - log
    - gc
    - rebuild / verify
    - stats / hot / activity / context_memories
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator

from loguru import logger

from engram.config.schema import Config
from engram.memory import scope as scopes
from engram.memory import stats
from engram.memory.engagement import EngagementTracker
from engram.memory.errors import AmbiguousId, ContentTooLong, DuplicateId, NotFound, StoreLocked
from engram.memory.event import MemoryEvent
from engram.memory.gc import ExpiryCandidate, GarbageCollector
from engram.memory.ids import new_id
from engram.memory.ledger import EventLedger
from engram.memory.record import Memory, MemoryRow
from engram.memory.scope import GLOBAL, Scope
from engram.memory.view import ProjectionView

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS memories (
    id             TEXT PRIMARY KEY,
    content        TEXT NOT NULL,
    scope          TEXT NOT NULL DEFAULT 'global',
    tap_count      INTEGER NOT NULL DEFAULT 0,
    last_tapped_at TEXT,
    created_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_scope ON memories(scope);

CREATE TABLE IF NOT EXISTS events (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    action    TEXT NOT NULL,
    memory_id TEXT,
    data      TEXT
);

CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp);
CREATE INDEX IF NOT EXISTS idx_events_action ON events(action);
CREATE INDEX IF NOT EXISTS idx_events_memory_id ON events(memory_id);
"""

# ADD is attempted at most this many times with fresh ids.
_ADD_ATTEMPTS = 2


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class MemoryStore:
    """
    Event-sourced memory store.

    Args:
        db_path: Database file. Parent directories are created as needed.
        config: Configuration (defaults apply if omitted).
        clock: Returns the current time; injectable for tests.
        id_factory: Generates new identifiers; injectable for tests.
    """

    def __init__(
        self,
        db_path: Path | str,
        config: Config | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.config = config or Config()
        self.db_path = Path(db_path)
        self._clock = clock or utc_now
        self._id_factory = id_factory or new_id
        self._depth = 0

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = self._connect()

        self.ledger = EventLedger(self.conn)
        self.view = ProjectionView(self.conn, self.ledger)
        self.engagement = EngagementTracker(self)
        self.collector = GarbageCollector(self)

        logger.debug(f"Opened memory store at {self.db_path}")

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> MemoryStore:
        """Open the store at the configured database path."""
        return cls(config.database_path, config=config, **kwargs)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.config.store.lock_timeout,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=FULL")
            conn.executescript(_SCHEMA_SQL)
        except sqlite3.OperationalError as e:
            conn.close()
            if _is_lock_error(e):
                raise StoreLocked(f"Store is locked: {self.db_path}") from e
            raise
        return conn

    def close(self) -> None:
        """Close the underlying connection."""
        self.conn.close()

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[None]:
        """
        Run a block as one atomic unit.

        Write transactions take the database write lock up front
        (``BEGIN IMMEDIATE``) so writers serialize. Nested calls join the
        outer transaction.

        Raises:
            StoreLocked: The lock was not acquired within ``store.lock_timeout``.
        """
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        try:
            self.conn.execute("BEGIN IMMEDIATE" if write else "BEGIN DEFERRED")
        except sqlite3.OperationalError as e:
            if _is_lock_error(e):
                raise StoreLocked(f"Timed out waiting for the store lock: {self.db_path}") from e
            raise

        self._depth = 1
        try:
            yield
        except sqlite3.OperationalError as e:
            self._rollback()
            if _is_lock_error(e):
                raise StoreLocked(f"Store lock lost during transaction: {self.db_path}") from e
            raise
        except BaseException:
            self._rollback()
            raise
        else:
            try:
                self.conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                self._rollback()
                if _is_lock_error(e):
                    raise StoreLocked(f"Commit failed, store is locked: {self.db_path}") from e
                raise
        finally:
            self._depth = 0

    def _rollback(self) -> None:
        # SQLite may already have rolled back on some errors
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    def commit_event(self, event: MemoryEvent) -> MemoryEvent:
        """
        Append an event and apply it to the projection.

        Must be called inside ``transaction()``; both writes commit or roll
        back together.

        Returns:
            The event with its assigned sequence id.
        """
        sequence_id = self.ledger.append(event)
        self.view.apply(event)
        return event.with_sequence(sequence_id)

    def now(self) -> datetime:
        """Current time from the store clock, in UTC."""
        current = self._clock()
        if current.tzinfo is None:
            return current.replace(tzinfo=timezone.utc)
        return current.astimezone(timezone.utc)

    # =========================================================================
    # Lookup
    # =========================================================================

    def resolve(self, ref: str) -> str:
        """
        Resolve an id or id prefix to a live memory id.

        Exact match first, else a prefix match that must be unique.

        Raises:
            NotFound: Nothing matches.
            AmbiguousId: The prefix matches more than one live memory.
        """
        ref = ref.strip()
        if not ref:
            raise NotFound(ref)
        if self.view.get(ref) is not None:
            return ref
        matches = self.view.find_by_prefix(ref)
        if not matches:
            raise NotFound(ref)
        if len(matches) > 1:
            raise AmbiguousId(ref, matches)
        return matches[0]

    def resolve_logged(self, ref: str) -> str:
        """
        Resolve an id or prefix against every memory ever added.

        Live memories are tried first; removed and expired ones are found
        through their ADD events.

        Raises:
            NotFound: No memory with this id or prefix was ever added.
            AmbiguousId: The prefix matches more than one memory.
        """
        ref = ref.strip()
        try:
            return self.resolve(ref)
        except NotFound:
            if not ref:
                raise
        matches = self.ledger.find_ids_by_prefix(ref)
        if not matches:
            raise NotFound(ref)
        if ref in matches:
            return ref
        if len(matches) > 1:
            raise AmbiguousId(ref, matches)
        return matches[0]

    def _to_memory(self, row: MemoryRow) -> Memory:
        return Memory.from_projection(row, self.config.policy.promotion_threshold)

    def _check_content(self, content: str) -> None:
        limit = self.config.store.max_content_length
        if len(content) > limit:
            raise ContentTooLong(len(content), limit)

    # =========================================================================
    # Operations
    # =========================================================================

    def add(self, content: str, scope: str | Scope = GLOBAL) -> Memory:
        """
        Create a new memory.

        Raises:
            InvalidScope: The scope is malformed.
            ContentTooLong: The content exceeds ``store.max_content_length``.
            DuplicateId: The id generator collided twice in a row.
        """
        resolved = scopes.normalize(scope)
        self._check_content(content)

        for attempt in range(1, _ADD_ATTEMPTS + 1):
            memory_id = self._id_factory()
            try:
                with self.transaction():
                    self.commit_event(MemoryEvent(
                        action="ADD",
                        memory_id=memory_id,
                        timestamp=self.now(),
                        payload={"content": content, "scope": str(resolved)},
                    ))
                    row = self.view.get(memory_id)
            except DuplicateId:
                if attempt == _ADD_ATTEMPTS:
                    raise
                logger.warning(f"Identifier collision on {memory_id}, regenerating")
                continue
            logger.debug(f"Added memory {memory_id} ({resolved})")
            return self._to_memory(row)

        raise AssertionError("unreachable")

    def list(
        self,
        scope: str | Scope | None = None,
        generation: int | None = None,
    ) -> list[Memory]:
        """
        List live memories in creation order.

        Args:
            scope: Visibility filter (see ``scope.matches``).
            generation: Only memories of this generation.
        """
        scope_filter = scopes.normalize(scope) if scope is not None else None
        memories = [self._to_memory(row) for row in self.view.all_rows()]
        return [
            m for m in memories
            if scopes.matches(m.scope, scope_filter)
            and (generation is None or m.generation == generation)
        ]

    def show(self, ref: str) -> Memory:
        """
        Get one memory by id or unambiguous prefix.

        Raises:
            NotFound, AmbiguousId
        """
        with self.transaction(write=False):
            memory_id = self.resolve(ref)
            row = self.view.get(memory_id)
        return self._to_memory(row)

    def edit(self, ref: str, content: str) -> Memory:
        """
        Replace a memory's content.

        Raises:
            NotFound, AmbiguousId, ContentTooLong
        """
        self._check_content(content)
        with self.transaction():
            memory_id = self.resolve(ref)
            old = self.view.get(memory_id)
            self.commit_event(MemoryEvent(
                action="EDIT",
                memory_id=memory_id,
                timestamp=self.now(),
                payload={"old": old.content, "new": content},
            ))
            row = self.view.get(memory_id)
        return self._to_memory(row)

    def remove(self, ref: str) -> None:
        """
        Discard a memory. Its history stays in the log.

        Raises:
            NotFound, AmbiguousId
        """
        with self.transaction():
            memory_id = self.resolve(ref)
            self.commit_event(MemoryEvent(
                action="REMOVE",
                memory_id=memory_id,
                timestamp=self.now(),
            ))
        logger.debug(f"Removed memory {memory_id}")

    def tap(self, ref: str) -> int:
        """Tap one memory; returns the new tap count. See ``EngagementTracker.tap``."""
        return self.engagement.tap(ref)

    def tap_match(self, substring: str) -> list[str]:
        """Tap all memories containing ``substring``. See ``EngagementTracker.tap_by_match``."""
        return self.engagement.tap_by_match(substring)

    def log(
        self,
        action: str | None = None,
        memory_id: str | None = None,
        limit: int | None = None,
    ) -> list[MemoryEvent]:
        """
        Get events from the log.

        With a ``limit`` the most recent events are returned. The result is
        always in ascending sequence order.
        """
        if limit is None:
            return list(self.ledger.scan(action=action, memory_id=memory_id))
        events = list(self.ledger.scan(
            action=action,
            memory_id=memory_id,
            limit=limit,
            descending=True,
        ))
        events.reverse()
        return events

    def gc(self, dry_run: bool = True, limit: int | None = None) -> list[ExpiryCandidate]:
        """Run garbage collection. See ``GarbageCollector.collect``."""
        return self.collector.collect(dry_run=dry_run, limit=limit)

    def rebuild(self) -> int:
        """Regenerate the projection from the event log; returns the row count."""
        with self.transaction():
            return self.view.rebuild()

    def verify(self) -> None:
        """
        Check the projection against a full replay.

        Raises:
            Corruption: The projection has diverged; run ``rebuild``.
        """
        with self.transaction(write=False):
            self.view.verify()

    # =========================================================================
    # Insights
    # =========================================================================

    def stats(self) -> stats.MemoryStats:
        """Counts by generation, taps and scope."""
        return stats.compute_stats(self.list())

    def hot(self, window: timedelta = timedelta(hours=24), limit: int = 10) -> list[stats.HotMemory]:
        """Memories with the most taps within ``window``."""
        return stats.hot_memories(self.conn, self.now() - window, limit)

    def activity(self, days: int = 7) -> list[stats.ActivitySummary]:
        """Per-day event counts for the last ``days`` days."""
        return stats.activity_by_day(self.conn, self.now() - timedelta(days=days))

    def context_memories(self, scope_filters: list[str | Scope] | None = None) -> list[Memory]:
        """
        Memories visible from any of the given scopes.

        Global memories are always included. Used to build the session
        context block.
        """
        filters = [scopes.normalize(s) for s in scope_filters or []] or [GLOBAL]
        return [
            m for m in self.list()
            if any(scopes.matches(m.scope, f) for f in filters)
        ]
