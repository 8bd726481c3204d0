"""
Unit tests for the template store.

Tests both backends, address validation, NotFound handling and read retry.
"""

from typing import Dict, Optional, get_type_hints

import pytest

from prompt_ledger.core.errors import IOFailure, NotFound, ValidationFailure
from prompt_ledger.storage.seed import EXAMPLE_TEMPLATES, seed_examples
from prompt_ledger.storage.templates import (
    PREVIEW_LENGTH,
    FileSystemTemplateBackend,
    InMemoryTemplateBackend,
    TemplateStore,
)


@pytest.fixture(params=["memory", "filesystem"])
def store(request, tmp_path):
    """Template store over each backend."""
    if request.param == "memory":
        return TemplateStore(InMemoryTemplateBackend())
    return TemplateStore(FileSystemTemplateBackend(tmp_path / "prompts"))


class TestTemplateStore:
    """Contract tests shared by every backend."""

    def test_put_then_get_round_trip(self, store):
        """Verify content read back equals content written."""
        content = "Review {{code}}\n\n  trailing spaces  \n"
        store.put("custom", "review", content)
        template = store.get("custom", "review")
        assert template.content == content
        assert template.category == "custom"
        assert template.name == "review"

    def test_put_overwrites_in_place(self, store):
        """Verify rewriting an address replaces its content."""
        store.put("custom", "greet", "v1")
        store.put("custom", "greet", "v2")
        assert store.get("custom", "greet").content == "v2"
        assert len(store.list()) == 1

    def test_get_missing_raises_not_found(self, store):
        """Verify missing templates are NotFound, not a default skeleton."""
        with pytest.raises(NotFound):
            store.get("custom", "missing")

    def test_delete_missing_raises_not_found(self, store):
        """Verify deleting a nonexistent address is never a silent success."""
        with pytest.raises(NotFound):
            store.delete("custom", "missing")

    def test_delete_removes_template(self, store):
        """Verify deleted templates are gone immediately."""
        store.put("custom", "tmp", "x")
        store.delete("custom", "tmp")
        with pytest.raises(NotFound):
            store.get("custom", "tmp")
        assert store.list() == []

    def test_list_sorted_by_category_then_name(self, store):
        """Verify deterministic listing order."""
        store.put("examples", "b", "1")
        store.put("custom", "z", "2")
        store.put("examples", "a", "3")
        store.put("custom", "c", "4")
        addresses = [(s.category, s.name) for s in store.list()]
        assert addresses == [("custom", "c"), ("custom", "z"), ("examples", "a"), ("examples", "b")]

    def test_list_filters_by_category_and_search(self, store):
        """Verify category is an exact match and search spans name and content."""
        store.put("custom", "review", "Look at the SQL query")
        store.put("custom", "greet", "Hello")
        store.put("examples", "sql-helper", "Write a query")

        assert [s.name for s in store.list(category="CUSTOM")] == ["greet", "review"]
        assert [(s.category, s.name) for s in store.list(search="sql")] == [
            ("custom", "review"), ("examples", "sql-helper"),
        ]
        assert [s.name for s in store.list(category="custom", search="query")] == ["review"]
        assert store.list(search="nothing-here") == []

    def test_templates_returns_full_content(self, store):
        """Verify the full-template listing keeps content intact."""
        content = "x" * (PREVIEW_LENGTH + 10)
        store.put("custom", "long", content)
        assert [t.content for t in store.templates()] == [content]

    def test_list_preview_and_variables(self, store):
        """Verify previews truncate long content and list variables."""
        long_content = "{{topic}} " + "x" * 300
        store.put("custom", "long", long_content)
        store.put("custom", "short", "Hi {{name}}")
        summaries = {s.name: s for s in store.list()}

        assert summaries["long"].preview == long_content[:PREVIEW_LENGTH] + "..."
        assert summaries["long"].variables == ["topic"]
        assert summaries["short"].preview == "Hi {{name}}"
        assert summaries["short"].variables == ["name"]

    @pytest.mark.parametrize("category,name", [
        ("", "name"),
        ("custom", ""),
        ("custom", "   "),
        ("custom", "../escape"),
        ("a/b", "name"),
        (".hidden", "name"),
    ])
    def test_invalid_address_rejected(self, store, category, name):
        """Verify malformed addresses raise ValidationFailure."""
        with pytest.raises(ValidationFailure):
            store.put(category, name, "content")

    def test_resolve_prefers_custom(self, store):
        """Verify bare-name lookup checks custom before examples."""
        store.put("examples", "review", "example")
        assert store.resolve("review").content == "example"
        store.put("custom", "review", "custom")
        assert store.resolve("review").content == "custom"

    def test_resolve_missing(self, store):
        """Verify bare-name lookup raises NotFound when absent everywhere."""
        with pytest.raises(NotFound, match='Prompt "nothing" not found'):
            store.resolve("nothing")


class TestFileSystemBackend:
    """Test on-disk layout."""

    def test_layout_is_category_slash_name(self, tmp_path):
        """Verify templates are stored as {category}/{name}.md."""
        store = TemplateStore(FileSystemTemplateBackend(tmp_path))
        store.put("new-category", "greet", "Hello")
        path = tmp_path / "new-category" / "greet.md"
        assert path.read_text(encoding="utf-8") == "Hello"

    def test_reads_are_not_cached(self, tmp_path):
        """Verify external changes are visible on the next read."""
        store = TemplateStore(FileSystemTemplateBackend(tmp_path))
        store.put("custom", "greet", "v1")
        (tmp_path / "custom" / "greet.md").write_text("v2", encoding="utf-8")
        assert store.get("custom", "greet").content == "v2"

    def test_missing_root_lists_nothing(self, tmp_path):
        """Verify a nonexistent root is an empty store."""
        store = TemplateStore(FileSystemTemplateBackend(tmp_path / "absent"))
        assert store.list() == []

    def test_ignores_non_markdown_files(self, tmp_path):
        """Verify only .md files are templates."""
        (tmp_path / "custom").mkdir()
        (tmp_path / "custom" / "notes.txt").write_text("x", encoding="utf-8")
        store = TemplateStore(FileSystemTemplateBackend(tmp_path))
        assert store.list() == []


class _FlakyBackend(InMemoryTemplateBackend):
    """Backend whose reads fail a fixed number of times."""

    def __init__(self, failures):
        super().__init__({"custom": {"greet": "Hello"}})
        self.failures = failures
        self.read_calls = 0
        self.write_calls = 0

    def read(self, category, name):
        self.read_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise IOFailure("disk unavailable")
        return super().read(category, name)

    def write(self, category, name, content):
        self.write_calls += 1
        raise IOFailure("disk unavailable")


class TestReadRetry:
    """Test the single transparent retry on reads."""

    def test_read_retried_once(self):
        """Verify one transient failure is absorbed."""
        backend = _FlakyBackend(failures=1)
        store = TemplateStore(backend)
        assert store.get("custom", "greet").content == "Hello"
        assert backend.read_calls == 2

    def test_read_fails_after_second_failure(self):
        """Verify a second failure is surfaced."""
        backend = _FlakyBackend(failures=2)
        store = TemplateStore(backend)
        with pytest.raises(IOFailure):
            store.get("custom", "greet")
        assert backend.read_calls == 2

    def test_write_not_retried(self):
        """Verify write failures surface immediately."""
        backend = _FlakyBackend(failures=0)
        store = TemplateStore(backend)
        with pytest.raises(IOFailure):
            store.put("custom", "greet", "new")
        assert backend.write_calls == 1


class TestSeedExamples:
    """Test example template seeding."""

    def test_seeds_examples_category(self):
        """Verify every example is written under examples/."""
        store = TemplateStore(InMemoryTemplateBackend())
        assert seed_examples(store) == len(EXAMPLE_TEMPLATES)
        names = [s.name for s in store.list()]
        assert names == sorted(EXAMPLE_TEMPLATES)
        assert "error_description" in store.get("examples", "bug-fix").content


class TestInMemoryBackend:
    """Test the in-memory backend constructor."""

    def test_initial_is_optional(self):
        """Verify the initial mapping is annotated as optional."""
        hints = get_type_hints(InMemoryTemplateBackend.__init__)
        assert hints["initial"] == Optional[Dict[str, Dict[str, str]]]

    def test_initial_content_is_copied(self):
        """Verify seeded content is readable and detached from the caller."""
        initial = {"custom": {"greet": "Hello {{name}}"}}
        store = TemplateStore(InMemoryTemplateBackend(initial))
        initial["custom"]["greet"] = "changed"
        assert store.get("custom", "greet").content == "Hello {{name}}"
