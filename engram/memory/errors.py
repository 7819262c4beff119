"""Error taxonomy for the memory store."""


class EngramError(Exception):
    """Base class for all memory store errors."""


class NotFound(EngramError):
    """The referenced memory does not exist or has been terminated."""

    def __init__(self, ref: str):
        super().__init__(f"Memory not found: {ref}")
        self.ref = ref


class AmbiguousId(EngramError):
    """A prefix matched more than one live memory."""

    def __init__(self, ref: str, candidates: list[str]):
        shown = ", ".join(candidates[:5])
        super().__init__(f"Ambiguous id '{ref}' matches {len(candidates)} memories: {shown}")
        self.ref = ref
        self.candidates = candidates


class InvalidScope(EngramError):
    """A scope string could not be parsed."""

    def __init__(self, raw: str, reason: str):
        super().__init__(f"Invalid scope '{raw}': {reason}")
        self.raw = raw


class ContentTooLong(EngramError):
    """Memory content exceeds the configured bound."""

    def __init__(self, length: int, limit: int):
        super().__init__(f"Content is {length} characters, limit is {limit}")
        self.length = length
        self.limit = limit


class DuplicateId(EngramError):
    """An identifier was already used by an earlier ADD."""

    def __init__(self, memory_id: str):
        super().__init__(f"Identifier already in use: {memory_id}")
        self.memory_id = memory_id


class StoreLocked(EngramError):
    """The store lock could not be acquired in time. Safe to retry."""


class Corruption(EngramError):
    """The projection no longer matches a replay of the event log."""

    def __init__(self, message: str, memory_ids: list[str] | None = None):
        super().__init__(message)
        self.memory_ids = memory_ids or []
