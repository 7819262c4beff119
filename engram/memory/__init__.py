"""
Event-sourced memory store for engram.

This package provides a small embedded store of memory records annotated with
usage signal, supporting:
- Immutable event log (append-only, single source of truth)
- Current-state projection rebuildable by full replay
- Global and per-project scopes
- Tap tracking with derived generations
- Engagement-decay garbage collection
"""

from engram.memory.errors import (
    AmbiguousId,
    ContentTooLong,
    Corruption,
    DuplicateId,
    EngramError,
    InvalidScope,
    NotFound,
    StoreLocked,
)
from engram.memory.event import MemoryEvent
from engram.memory.gc import ExpiryCandidate
from engram.memory.record import Memory, derive_generation
from engram.memory.scope import GLOBAL, GlobalScope, ProjectScope, Scope
from engram.memory.store import MemoryStore

__all__ = [
    "MemoryStore",
    "Memory",
    "MemoryEvent",
    "ExpiryCandidate",
    "derive_generation",
    "Scope",
    "GlobalScope",
    "ProjectScope",
    "GLOBAL",
    "EngramError",
    "NotFound",
    "AmbiguousId",
    "InvalidScope",
    "ContentTooLong",
    "DuplicateId",
    "StoreLocked",
    "Corruption",
]
