"""Tests for configuration loading and validation."""

import json
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from engram.config import Config, load_config, save_config
from engram.memory import MemoryStore


@pytest.fixture
def temp_workspace():
    """Create a temporary workspace for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ["ENGRAM_DB_PATH", "ENGRAM_LOG_LEVEL", "ENGRAM_POLICY__PROMOTION_THRESHOLD"]:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    config = Config()
    assert config.store.lock_timeout == 5.0
    assert config.store.max_content_length == 2000
    assert config.policy.promotion_threshold == 3
    assert config.policy.grace_period_days == 7
    assert config.policy.gc_max_expire is None
    assert config.cli.lock_retries == 3
    assert config.database_path == Path("~/.engram/engram.db").expanduser()


def test_db_path_override(temp_workspace):
    config = Config(db_path=str(temp_workspace / "custom.db"))
    assert config.database_path == temp_workspace / "custom.db"


def test_env_overrides(monkeypatch, temp_workspace):
    monkeypatch.setenv("ENGRAM_DB_PATH", str(temp_workspace / "env.db"))
    monkeypatch.setenv("ENGRAM_POLICY__PROMOTION_THRESHOLD", "5")

    config = Config()
    assert config.database_path == temp_workspace / "env.db"
    assert config.policy.promotion_threshold == 5


@pytest.mark.parametrize(
    "section,values",
    [
        ("policy", {"promotion_threshold": 0}),
        ("policy", {"grace_period_days": -1}),
        ("store", {"lock_timeout": -0.5}),
        ("store", {"max_content_length": 0}),
    ],
)
def test_validation(section, values):
    with pytest.raises(ValidationError):
        Config(**{section: values})


def test_load_missing_file_gives_defaults(temp_workspace):
    config = load_config(temp_workspace / "missing.json")
    assert config.policy.promotion_threshold == 3


def test_save_and_load(temp_workspace):
    path = temp_workspace / "config.json"
    config = Config()
    config.policy.grace_period_days = 14
    config.cli.hot_window_hours = 48
    save_config(config, path)

    data = json.loads(path.read_text())
    assert "db_path" not in data

    loaded = load_config(path)
    assert loaded.policy.grace_period_days == 14
    assert loaded.cli.hot_window_hours == 48


def test_load_invalid_json_falls_back(temp_workspace):
    path = temp_workspace / "config.json"
    path.write_text("{not json")
    assert load_config(path).store.db_name == "engram.db"


def test_store_from_config(temp_workspace):
    config = Config(db_path=str(temp_workspace / "sub" / "e.db"))
    with MemoryStore.from_config(config) as store:
        store.add("x")
    assert (temp_workspace / "sub" / "e.db").exists()
