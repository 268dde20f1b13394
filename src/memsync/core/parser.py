"""
Markdown → derived records.

``parse_document(key, content)`` is a pure function returning the tasks and
memories found in a document.  Record ids come from the document key and
the record's ordinal position, so parsing unchanged content twice yields
identical records.  Results are memoized on ``(key, content)``.

Tasks:
    ``- [ ] Call the bank``  /  ``- [x] **HIGH** Ship release``

Memories:
    A ``##`` or ``###`` heading opens a memory; the following lines are its
    body.  ``category: x`` and ``tags: a, b`` lines inside the body set
    metadata.

Tags:
    parser, markdown, tasks, memories, memsync
"""

from __future__ import annotations

import re
from datetime import date
from functools import lru_cache

from memsync.core.models import Memory, Task

__all__ = ["parse_document", "parse_tasks", "parse_memories"]

_TASK_RE = re.compile(r"^- \[([ x])\]\s*(.+)")
_PRIORITY_TAG_RE = re.compile(r"\[(CRITICAL|HIGH|MEDIUM|LOW)\]\s*", re.IGNORECASE)
_HEADING_RE = re.compile(r"^#{2,3}\s+")
_CATEGORY_RE = re.compile(r"category:\s*(.+)", re.IGNORECASE)
_TAGS_RE = re.compile(r"tags?:\s*(.+)", re.IGNORECASE)


def _priority(title: str) -> str:
    if "CRITICAL" in title:
        return "critical"
    if "HIGH" in title:
        return "high"
    if "LOW" in title:
        return "low"
    return "medium"


def _iso_date(key: str) -> str | None:
    try:
        return date.fromisoformat(key).isoformat() + "T00:00:00.000Z"
    except ValueError:
        return None


def parse_tasks(key: str, content: str) -> tuple[Task, ...]:
    tasks = []
    for line in content.split("\n"):
        match = _TASK_RE.match(line)
        if not match:
            continue
        title = match.group(2).replace("**", "").strip()
        tasks.append(
            Task(
                id=f"task-{key}-{len(tasks)}",
                title=_PRIORITY_TAG_RE.sub("", title, count=1),
                status="done" if match.group(1) == "x" else "todo",
                priority=_priority(title),
                source=key,
            )
        )
    return tuple(tasks)


def parse_memories(key: str, content: str) -> tuple[Memory, ...]:
    memories: list[Memory] = []
    when = _iso_date(key)
    title: str | None = None
    category = "general"
    tags: tuple[str, ...] = ()
    body: list[str] = []

    def flush() -> None:
        if title:
            memories.append(
                Memory(
                    id=f"mem-{key}-{len(memories)}",
                    title=title,
                    content="\n".join(body).strip(),
                    source=key,
                    category=category,
                    date=when,
                    tags=tags,
                )
            )

    for line in content.split("\n"):
        if _HEADING_RE.match(line):
            flush()
            title = _HEADING_RE.sub("", line, count=1).strip()
            category, tags, body = "general", (), []
            continue
        if title is None:
            continue
        lowered = line.lower()
        if "category:" in lowered:
            found = _CATEGORY_RE.search(line)
            if found:
                category = found.group(1).strip()
        if "tags:" in lowered or "tag:" in lowered:
            found = _TAGS_RE.search(line)
            if found:
                tags = tuple(t.strip().lower() for t in found.group(1).split(","))
        body.append(line)

    flush()
    return tuple(memories)


@lru_cache(maxsize=1024)
def parse_document(key: str, content: str) -> tuple[tuple[Task, ...], tuple[Memory, ...]]:
    """Parse ``content`` of document ``key`` into ``(tasks, memories)``."""
    return parse_tasks(key, content), parse_memories(key, content)
