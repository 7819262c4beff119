"""Tests for engagement-decay garbage collection."""

import tempfile
from datetime import timedelta
from pathlib import Path

import pytest

from engram.config.schema import Config
from engram.memory import MemoryStore, NotFound
from engram.memory.gc import ExpiryCandidate, select_candidates
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


class TestCandidates:
    """Test candidate selection."""

    def test_ten_days_old_vs_yesterday(self, store, clock):
        old = store.add("old and unused")
        clock.advance(days=9)
        recent = store.add("added yesterday")
        clock.advance(days=1)
        store.add("newest in scope")

        candidates = store.gc(dry_run=True)
        assert [c.memory_id for c in candidates] == [old.id]
        assert recent.id not in [c.memory_id for c in candidates]
        assert candidates[0].reason == "never tapped, 10 days old"

    def test_reason_counts_whole_days(self, store, clock):
        store.add("old")
        clock.advance(days=9, hours=14)
        store.add("newest")

        assert [c.reason for c in store.gc(dry_run=True)] == ["never tapped, 9 days old"]

    def test_grace_period_protects_young_memories(self, store, clock):
        for i in range(5):
            store.add(f"fresh {i}")
        clock.advance(days=6, hours=23)
        assert store.gc(dry_run=True) == []

        clock.advance(hours=1)
        assert len(store.gc(dry_run=True)) == 4

    def test_tapped_memories_never_expire(self, store, clock):
        tapped = store.add("used once")
        store.add("newest")
        store.tap(tapped.id)
        clock.advance(days=365)

        assert store.gc(dry_run=True) == []

    def test_newest_in_scope_survives(self, store, clock):
        a = store.add("only in /a", "project:/a")
        g1 = store.add("global one")
        g2 = store.add("global two")
        clock.advance(days=30)

        ids = [c.memory_id for c in store.gc(dry_run=True)]
        assert ids == [g1.id]
        assert a.id not in ids
        assert g2.id not in ids

    def test_candidates_ordered_oldest_first(self, store, clock):
        ids = []
        for i in range(4):
            ids.append(store.add(f"m{i}").id)
            clock.advance(days=1)
        clock.advance(days=30)

        assert [c.memory_id for c in store.gc(dry_run=True)] == ids[:3]

    def test_empty_store(self, store):
        assert store.gc(dry_run=True) == []
        assert store.gc(dry_run=False) == []

    def test_candidate_unpacks(self):
        memory_id, reason = ExpiryCandidate("abc", "never tapped, 9 days old")
        assert memory_id == "abc"
        assert reason.startswith("never tapped")

    def test_select_candidates_is_pure(self, store, clock):
        store.add("a")
        store.add("b")
        rows = store.view.all_rows()
        now = T0 + timedelta(days=8)
        first = select_candidates(rows, now, 7, 3)
        second = select_candidates(rows, now, 7, 3)
        assert first == second
        assert len(first) == 1


class TestCollect:
    """Test dry runs and real runs."""

    def test_dry_run_writes_nothing(self, store, clock):
        store.add("a")
        store.add("b")
        clock.advance(days=10)
        count = store.ledger.count()

        assert len(store.gc(dry_run=True)) == 1
        assert store.ledger.count() == count
        assert len(store.list()) == 2

    def test_dry_run_then_real_run_agree(self, store, clock):
        for i in range(6):
            memory = store.add(f"m{i}", "global" if i % 2 else "project:/p")
            if i == 2:
                store.tap(memory.id)
            clock.advance(hours=6)
        clock.advance(days=14)

        planned = store.gc(dry_run=True)
        expired = store.gc(dry_run=False)
        assert expired == planned
        assert [e.memory_id for e in store.log(action="EXPIRE")] == [c.memory_id for c in planned]

        for candidate in planned:
            with pytest.raises(NotFound):
                store.show(candidate.memory_id)

    def test_expire_records_reason(self, store, clock):
        old = store.add("old")
        store.add("newer")
        clock.advance(days=10)

        store.gc(dry_run=False)
        event = store.log(action="EXPIRE")[0]
        assert event.memory_id == old.id
        assert event.payload == {"reason": "never tapped, 10 days old"}
        assert event.timestamp == clock.current

    def test_second_run_is_noop(self, store, clock):
        store.add("a")
        store.add("b")
        clock.advance(days=10)
        store.gc(dry_run=False)
        assert store.gc(dry_run=False) == []

    def test_limit(self, store, clock):
        ids = [store.add(f"m{i}").id for i in range(5)]
        clock.advance(days=10)

        assert [c.memory_id for c in store.gc(dry_run=False, limit=2)] == ids[:2]
        assert [m.id for m in store.list()] == ids[2:]

    def test_configured_cap(self, temp_workspace, clock):
        config = Config()
        config.policy.gc_max_expire = 1
        with MemoryStore(temp_workspace / "e.db", config=config, clock=clock) as s:
            for i in range(4):
                s.add(f"m{i}")
            clock.advance(days=10)
            assert len(s.gc(dry_run=False)) == 1
            assert len(s.gc(dry_run=False, limit=5)) == 2

    def test_configured_grace_period(self, temp_workspace, clock):
        config = Config()
        config.policy.grace_period_days = 1
        with MemoryStore(temp_workspace / "e.db", config=config, clock=clock) as s:
            s.add("a")
            s.add("b")
            clock.advance(days=2)
            assert len(s.gc(dry_run=True)) == 1

    def test_rebuild_after_gc_matches(self, store, clock):
        for i in range(5):
            store.add(f"m{i}")
        clock.advance(days=10)
        store.gc(dry_run=False)

        before = [m.id for m in store.list()]
        store.rebuild()
        assert [m.id for m in store.list()] == before
