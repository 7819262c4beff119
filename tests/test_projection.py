"""Tests for the projection: replay, rebuild and verify."""

import random
import tempfile
from pathlib import Path

import pytest

from engram.memory import Corruption, MemoryStore
from engram.memory.event import MemoryEvent
from engram.memory.view import replay
from tests.fixtures.engram_test_data import T0, FakeClock


@pytest.fixture
def temp_workspace():
    """Create a temporary workspace for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(temp_workspace, clock):
    with MemoryStore(temp_workspace / "engram.db", clock=clock) as s:
        yield s


def _snapshot(store):
    return {row.id: row for row in store.view.all_rows()}


def _random_workload(store, clock, seed, steps=120):
    rng = random.Random(seed)
    scopes = ["global", "project:/a", "project:/b"]
    live: list[str] = []

    for i in range(steps):
        clock.advance(hours=rng.randint(0, 30))
        op = rng.choice(["add", "add", "tap", "tap", "tap", "edit", "remove", "gc"])
        if op == "add" or not live:
            live.append(store.add(f"memory {i}", rng.choice(scopes)).id)
        elif op == "tap":
            store.tap(rng.choice(live))
        elif op == "edit":
            store.edit(rng.choice(live), f"edited {i}")
        elif op == "remove":
            store.remove(live.pop(rng.randrange(len(live))))
        else:
            expired = {c.memory_id for c in store.gc(dry_run=False)}
            live = [m for m in live if m not in expired]


class TestReplay:
    """Test the pure fold over events."""

    def test_empty_log(self):
        assert replay([]) == {}

    def test_fold(self):
        events = [
            MemoryEvent("ADD", "a", T0, {"content": "x", "scope": "global"}, 1),
            MemoryEvent("TAP", "a", T0, {}, 2),
            MemoryEvent("EDIT", "a", T0, {"old": "x", "new": "y"}, 3),
            MemoryEvent("ADD", "b", T0, {"content": "z", "scope": "project:/p"}, 4),
            MemoryEvent("PROMOTE", "a", T0, {"from": 1, "to": 2}, 5),
            MemoryEvent("EXPIRE", "b", T0, {"reason": "old"}, 6),
        ]
        rows = replay(events)
        assert list(rows) == ["a"]
        assert rows["a"].content == "y"
        assert rows["a"].tap_count == 1
        assert rows["a"].last_tapped_at == T0

    def test_event_for_unknown_memory(self):
        with pytest.raises(Corruption):
            replay([MemoryEvent("TAP", "ghost", T0, {}, 1)])

    def test_readd_of_live_memory(self):
        add = MemoryEvent("ADD", "a", T0, {"content": "x", "scope": "global"}, 1)
        with pytest.raises(Corruption):
            replay([add, add])


class TestRebuild:
    """Test regenerating the projection from the log."""

    @pytest.mark.parametrize("seed", [1, 7, 42])
    def test_rebuild_matches_incremental(self, store, clock, seed):
        _random_workload(store, clock, seed)
        before = _snapshot(store)

        store.verify()
        assert store.rebuild() == len(before)
        assert _snapshot(store) == before

    def test_rebuild_is_idempotent(self, store):
        store.add("a")
        store.rebuild()
        first = _snapshot(store)
        store.rebuild()
        assert _snapshot(store) == first

    def test_rebuild_appends_no_events(self, store):
        memory = store.add("a")
        store.tap(memory.id)
        count = store.ledger.count()
        store.rebuild()
        assert store.ledger.count() == count


class TestVerify:
    """Test corruption detection."""

    def test_detects_tampered_row(self, store):
        memory = store.add("original")
        store.conn.execute("UPDATE memories SET tap_count = 99 WHERE id = ?", (memory.id,))

        with pytest.raises(Corruption) as exc_info:
            store.verify()
        assert exc_info.value.memory_ids == [memory.id]

        store.rebuild()
        store.verify()
        assert store.show(memory.id).tap_count == 0

    def test_detects_missing_and_extra_rows(self, store):
        kept = store.add("kept")
        store.conn.execute("DELETE FROM memories WHERE id = ?", (kept.id,))
        store.conn.execute(
            "INSERT INTO memories (id, content, scope, tap_count, last_tapped_at, created_at) "
            "VALUES ('stray', 'x', 'global', 0, NULL, ?)",
            (T0.isoformat(),),
        )

        with pytest.raises(Corruption) as exc_info:
            store.verify()
        assert sorted(exc_info.value.memory_ids) == sorted([kept.id, "stray"])

        store.rebuild()
        assert [m.id for m in store.list()] == [kept.id]

    def test_apply_to_missing_row_is_corruption(self, store, clock):
        with pytest.raises(Corruption):
            with store.transaction():
                store.commit_event(MemoryEvent("TAP", "ghost", clock()))
        assert store.log(action="TAP") == []

    def test_rebuild_restores_deleted_row(self, store):
        memory = store.add("a")
        store.conn.execute("DELETE FROM memories WHERE id = ?", (memory.id,))

        store.rebuild()
        assert store.tap(memory.id) == 1
