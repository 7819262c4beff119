"""
Scope resolution.

A scope partitions memory visibility. It is either global (visible
everywhere) or tied to one project directory. Scope strings are parsed once
at the boundary into a closed variant and never re-parsed downstream.
"""

from dataclasses import dataclass
from pathlib import PurePosixPath

from engram.memory.errors import InvalidScope

GLOBAL_TAG = "global"
PROJECT_PREFIX = "project:"


@dataclass(frozen=True)
class GlobalScope:
    """Memories visible in every project."""

    def __str__(self) -> str:
        return GLOBAL_TAG


@dataclass(frozen=True)
class ProjectScope:
    """Memories bound to one absolute project path."""

    path: str

    def __str__(self) -> str:
        return f"{PROJECT_PREFIX}{self.path}"


Scope = GlobalScope | ProjectScope

GLOBAL = GlobalScope()


def normalize(raw: "str | Scope") -> Scope:
    """
    Parse a scope tag.

    Accepts ``global``, ``project:<absolute path>`` or an already-resolved
    scope. The engine never discovers the working directory itself, so the
    caller must pass a resolved path.

    Raises:
        InvalidScope: On empty input, an unknown prefix, or a missing or
            relative project path.
    """
    if isinstance(raw, (GlobalScope, ProjectScope)):
        return raw
    if not isinstance(raw, str):
        raise InvalidScope(repr(raw), "expected a string")

    text = raw.strip()
    if not text:
        raise InvalidScope(raw, "empty scope")
    if text == GLOBAL_TAG:
        return GLOBAL
    if text.startswith(PROJECT_PREFIX):
        path = text[len(PROJECT_PREFIX):].strip()
        if not path:
            raise InvalidScope(raw, "empty project path")
        pure = PurePosixPath(path)
        if not pure.is_absolute():
            raise InvalidScope(raw, "project path must be absolute")
        return ProjectScope(path=str(pure))
    raise InvalidScope(raw, f"expected '{GLOBAL_TAG}' or '{PROJECT_PREFIX}<path>'")


def matches(scope: Scope, filter: Scope | None) -> bool:
    """
    Check whether a record's scope is visible under a query filter.

    - No filter: everything matches.
    - Global filter: only global records.
    - Project filter: records of that exact path, plus global records.
    """
    if filter is None:
        return True
    if isinstance(filter, GlobalScope):
        return isinstance(scope, GlobalScope)
    return isinstance(scope, GlobalScope) or scope == filter
