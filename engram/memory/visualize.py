"""
Memory visualization utilities.

Provides display formats for memories, the event log, and the context block
injected into agent sessions.
"""

from dataclasses import dataclass

from engram.memory.event import MemoryEvent
from engram.memory.ids import short_id
from engram.memory.record import Memory
from engram.memory.store import MemoryStore

CONTEXT_OPEN = "<engram-context>"
CONTEXT_CLOSE = "</engram-context>"


def truncate(text: str, max_len: int = 60) -> str:
    """Shorten text to ``max_len`` characters, marking the cut with '...'."""
    text = text.replace("\n", " ")
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def format_memory_line(memory: Memory, full_id: bool = False) -> str:
    """One-line summary: ``[id] gen1 taps:2 global | content``."""
    memory_id = memory.id if full_id else short_id(memory.id)
    return f"[{memory_id}] gen{memory.generation} taps:{memory.tap_count} {memory.scope} | {memory.content}"


@dataclass
class EnrichedEvent:
    """An event paired with the content it refers to."""

    event: MemoryEvent
    content: str


def enrich_event(store: MemoryStore, event: MemoryEvent) -> EnrichedEvent:
    """
    Attach displayable content to an event.

    ADD and EDIT carry their own content. Other events show the memory's
    current content, or the last content recorded in the log if the memory
    has since been removed or expired.
    """
    if event.action == "ADD":
        content = event.payload.get("content", "")
    elif event.action == "EDIT":
        content = event.payload.get("new", "")
    elif event.memory_id is None:
        content = "(no memory id)"
    else:
        row = store.view.get(event.memory_id)
        if row is not None:
            content = row.content
        else:
            content = store.ledger.last_content(event.memory_id) or "(memory not found)"

    if event.action == "EXPIRE" and event.payload.get("reason"):
        content = f"{content} ({event.payload['reason']})"

    return EnrichedEvent(event=event, content=content)


def format_event_line(enriched: EnrichedEvent) -> str:
    """One-line log entry: ``#12 2026-10-17 09:30 TAP [abcd1234] content``."""
    event = enriched.event
    when = event.timestamp.strftime("%Y-%m-%d %H:%M")
    memory_id = short_id(event.memory_id) if event.memory_id else "-"
    return f"#{event.sequence_id} {when} {event.action:<7} [{memory_id}] {truncate(enriched.content)}"


def format_context_block(memories: list[Memory], add_hint: str = 'engram add "<fact>" --scope "project:$PWD"') -> str:
    """
    Build the context block printed by ``engram init`` for session hooks.

    Memory ids are embedded as HTML comments so the agent can tap them.
    """
    lines = [
        CONTEXT_OPEN,
        "# Engram Memory System",
        "",
        "When you learn something worth remembering about this project, store it:",
        "```bash",
        add_hint,
        "```",
        "",
        "When a memory below helps you, record it with `engram tap <id>`.",
        "Store: project conventions, user corrections, architecture decisions, gotchas.",
        "Skip: obvious things from code, sensitive info, duplicates of existing memories.",
        "",
    ]
    if not memories:
        lines.append("No memories yet for this project.")
    else:
        lines.append("## Current Memories")
        for memory in memories:
            lines.append(f"<!-- {memory.id} -->- {memory.content}")
    lines.append(CONTEXT_CLOSE)
    return "\n".join(lines)
