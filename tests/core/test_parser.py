"""Tests for memsync.core.parser - markdown → tasks and memories."""

from memsync.core.models import Document, document_to_wire
from memsync.core.parser import parse_document, parse_memories, parse_tasks

SAMPLE = """# 2026-02-21

## Standup
category: work
tags: Team, Daily
Talked about the release.

### Idea
Cache the parse results.

## Tasks

- [ ] Call the bank
- [x] **HIGH** Ship release
- [ ] [CRITICAL] Fix prod
- [ ] LOW priority cleanup
not a task
"""


class TestTasks:
    def test_parses_checkboxes(self):
        tasks = parse_tasks("2026-02-21", SAMPLE)
        assert [t.title for t in tasks] == [
            "Call the bank",
            "HIGH Ship release",
            "Fix prod",
            "LOW priority cleanup",
        ]
        assert [t.status for t in tasks] == ["todo", "done", "todo", "todo"]
        assert [t.priority for t in tasks] == ["medium", "high", "critical", "low"]

    def test_ids_are_positional(self):
        tasks = parse_tasks("2026-02-21", SAMPLE)
        assert [t.id for t in tasks] == [f"task-2026-02-21-{i}" for i in range(4)]
        assert all(t.source == "2026-02-21" for t in tasks)

    def test_no_tasks(self):
        assert parse_tasks("k", "just text") == ()


class TestMemories:
    def test_sections(self):
        memories = parse_memories("2026-02-21", SAMPLE)
        assert [m.title for m in memories] == ["Standup", "Idea", "Tasks"]
        standup = memories[0]
        assert standup.category == "work"
        assert standup.tags == ("team", "daily")
        assert "Talked about the release." in standup.content
        assert standup.date == "2026-02-21T00:00:00.000Z"
        assert memories[1].category == "general"

    def test_non_date_key_has_no_date(self):
        (memory,) = parse_memories("notes", "## Note\nhello")
        assert memory.date is None
        assert memory.id == "mem-notes-0"
        assert memory.content == "hello"

    def test_text_before_first_heading_ignored(self):
        assert parse_memories("k", "# Title\nintro\n") == ()


class TestParseDocument:
    def test_idempotent(self):
        first = parse_document("2026-02-21", SAMPLE)
        parse_document.cache_clear()
        second = parse_document("2026-02-21", SAMPLE)
        assert first == second

    def test_wire_shape(self):
        wire = document_to_wire(Document("2026-02-21", "## Note\nhello\n- [ ] x", 7))
        assert wire["id"] == wire["date"] == "2026-02-21"
        assert wire["lastModified"] == 7
        assert wire["memories"][0]["title"] == "Note"
        assert wire["tasks"][0]["title"] == "x"
        assert wire["tasks"][0]["tags"] == []
