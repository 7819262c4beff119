"""Tests for taps, derived generations and promotion."""

import tempfile
from pathlib import Path

import pytest

from engram.config.schema import Config
from engram.memory import AmbiguousId, MemoryStore, NotFound, derive_generation
from tests.fixtures.engram_test_data import FakeClock, scripted_ids


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


class TestDeriveGeneration:
    """Test the pure generation derivation."""

    @pytest.mark.parametrize("taps,expected", [(0, 0), (1, 1), (2, 1), (3, 2), (10, 2)])
    def test_default_threshold(self, taps, expected):
        assert derive_generation(taps) == expected

    def test_threshold_boundary(self):
        for threshold in range(1, 8):
            for taps in range(0, 12):
                generation = derive_generation(taps, threshold)
                assert (generation == 2) == (taps >= threshold)
                assert (generation == 0) == (taps == 0)


class TestTap:
    """Test tapping single memories."""

    def test_tap_is_monotonic(self, store, clock):
        memory = store.add("fact")
        for n in range(1, 8):
            clock.advance(minutes=5)
            assert store.tap(memory.id) == n

        shown = store.show(memory.id)
        assert shown.tap_count == 7
        assert shown.last_tapped_at == clock.current

    def test_tap_by_prefix(self, store):
        memory = store.add("fact")
        store.tap(memory.id[:5])
        assert store.show(memory.id).tap_count == 1

    def test_tap_missing(self, store):
        with pytest.raises(NotFound):
            store.tap("nope")

    def test_tap_ambiguous(self, temp_workspace):
        factory = scripted_ids("ab10000000000000", "ab20000000000000")
        with MemoryStore(temp_workspace / "e.db", id_factory=factory) as s:
            s.add("one")
            s.add("two")
            with pytest.raises(AmbiguousId):
                s.tap("ab")
            assert s.log(action="TAP") == []

    def test_tap_removed(self, store):
        memory = store.add("fact")
        store.remove(memory.id)
        with pytest.raises(NotFound):
            store.tap(memory.id)


class TestPromotion:
    """Test the one-off PROMOTE event."""

    def test_lifecycle_scenario(self, store):
        memory = store.add("A", "global")
        assert (memory.tap_count, memory.generation) == (0, 0)

        store.tap(memory.id)
        shown = store.show(memory.id)
        assert (shown.tap_count, shown.generation) == (1, 1)

        store.tap(memory.id)
        store.tap(memory.id)
        shown = store.show(memory.id)
        assert (shown.tap_count, shown.generation) == (3, 2)
        assert len(store.log(action="PROMOTE")) == 1

        store.remove(memory.id)
        with pytest.raises(NotFound):
            store.show(memory.id)

        actions = [e.action for e in store.log(memory_id=memory.id)]
        assert actions == ["ADD", "TAP", "TAP", "TAP", "PROMOTE", "REMOVE"]

    def test_promote_only_once(self, store):
        memory = store.add("A")
        for _ in range(10):
            store.tap(memory.id)

        promotes = store.log(action="PROMOTE")
        assert len(promotes) == 1
        assert promotes[0].payload["from"] == 1
        assert promotes[0].payload["to"] == 2

    def test_custom_threshold(self, temp_workspace):
        config = Config()
        config.policy.promotion_threshold = 5
        with MemoryStore(temp_workspace / "e.db", config=config) as s:
            memory = s.add("A")
            for _ in range(4):
                s.tap(memory.id)
            assert s.show(memory.id).generation == 1
            assert s.log(action="PROMOTE") == []

            s.tap(memory.id)
            assert s.show(memory.id).generation == 2
            assert len(s.log(action="PROMOTE")) == 1

    def test_generation_is_never_stored(self, store):
        memory = store.add("A")
        columns = [row[1] for row in store.conn.execute("PRAGMA table_info(memories)")]
        assert "generation" not in columns
        assert store.show(memory.id).generation == 0


class TestTapByMatch:
    """Test tapping by content substring."""

    def test_matches_case_sensitive(self, store, clock):
        a = store.add("Use pytest fixtures")
        clock.advance(seconds=1)
        store.add("use PYTEST markers")
        clock.advance(seconds=1)
        c = store.add("pytest runs fast")

        tapped = store.tap_match("pytest")
        assert tapped == [a.id, c.id]
        assert store.show(a.id).tap_count == 1
        assert store.show(c.id).tap_count == 1

    def test_no_match_is_empty(self, store):
        store.add("something")
        assert store.tap_match("absent") == []
        assert store.log(action="TAP") == []

    def test_empty_substring_taps_nothing(self, store):
        store.add("something")
        assert store.tap_match("") == []
        assert store.log(action="TAP") == []

    def test_match_can_promote(self, store):
        memory = store.add("shared fact")
        for _ in range(3):
            store.tap_match("shared")
        assert store.show(memory.id).generation == 2
        assert len(store.log(action="PROMOTE")) == 1
