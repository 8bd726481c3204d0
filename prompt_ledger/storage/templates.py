"""
Template store.

Persists prompt templates under a two-level (category, name) address.
Every read goes to the backend; there is no caching layer.
"""

import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from .._logging import get_logger
from ..core.errors import IOFailure, NotFound, ValidationFailure
from ..core.renderer import find_placeholders
from .models import Template, TemplateSummary

logger = get_logger("PromptLedger.Templates")

PREVIEW_LENGTH = 200
TEMPLATE_SUFFIX = ".md"
DEFAULT_SEARCH_ORDER = ("custom", "examples")

T = TypeVar("T")


class FileSystemTemplateBackend:
    """Stores each template as `{root}/{category}/{name}.md`."""

    def __init__(self, root):
        self.root = Path(root)

    def _path(self, category: str, name: str) -> Path:
        return self.root / category / f"{name}{TEMPLATE_SUFFIX}"

    def categories(self) -> List[str]:
        try:
            if not self.root.exists():
                return []
            return sorted(p.name for p in self.root.iterdir() if p.is_dir())
        except OSError as e:
            raise IOFailure(f"Failed to list template categories: {e}") from e

    def names(self, category: str) -> List[str]:
        directory = self.root / category
        try:
            if not directory.is_dir():
                return []
            return sorted(
                p.stem for p in directory.iterdir()
                if p.is_file() and p.suffix == TEMPLATE_SUFFIX
            )
        except OSError as e:
            raise IOFailure(f"Failed to list templates in '{category}': {e}") from e

    def exists(self, category: str, name: str) -> bool:
        return self._path(category, name).is_file()

    def read(self, category: str, name: str) -> str:
        path = self._path(category, name)
        if not path.is_file():
            raise NotFound(f"Template not found: {category}/{name}")
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise IOFailure(f"Failed to read template {category}/{name}: {e}") from e

    def write(self, category: str, name: str, content: str) -> None:
        path = self._path(category, name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file and rename so readers never see a partial template
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".md.tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise IOFailure(f"Failed to write template {category}/{name}: {e}") from e

    def remove(self, category: str, name: str) -> None:
        path = self._path(category, name)
        if not path.is_file():
            raise NotFound(f"Template not found: {category}/{name}")
        try:
            path.unlink()
        except OSError as e:
            raise IOFailure(f"Failed to delete template {category}/{name}: {e}") from e


class InMemoryTemplateBackend:
    """Dictionary-backed template storage for tests and ephemeral use."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, str]]] = None):
        self._lock = threading.Lock()
        self._data: Dict[str, Dict[str, str]] = {
            category: dict(entries) for category, entries in (initial or {}).items()
        }

    def categories(self) -> List[str]:
        with self._lock:
            return sorted(self._data)

    def names(self, category: str) -> List[str]:
        with self._lock:
            return sorted(self._data.get(category, {}))

    def exists(self, category: str, name: str) -> bool:
        with self._lock:
            return name in self._data.get(category, {})

    def read(self, category: str, name: str) -> str:
        with self._lock:
            try:
                return self._data[category][name]
            except KeyError:
                raise NotFound(f"Template not found: {category}/{name}")

    def write(self, category: str, name: str, content: str) -> None:
        with self._lock:
            self._data.setdefault(category, {})[name] = content

    def remove(self, category: str, name: str) -> None:
        with self._lock:
            entries = self._data.get(category, {})
            if name not in entries:
                raise NotFound(f"Template not found: {category}/{name}")
            del entries[name]


def _validate_segment(value: str, label: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailure(f"Template {label} is required and cannot be empty")
    if "/" in value or "\\" in value or value.startswith("."):
        raise ValidationFailure(f"Invalid template {label}: {value!r}")


def make_preview(content: str) -> str:
    """First PREVIEW_LENGTH characters, with '...' only when truncated."""
    if len(content) <= PREVIEW_LENGTH:
        return content
    return content[:PREVIEW_LENGTH] + "..."


class TemplateStore:
    """Repository for prompt templates.

    Reads are retried once on IOFailure; writes surface it immediately.
    Missing addresses always raise NotFound, no default skeleton is
    synthesized.
    """

    def __init__(self, backend):
        """Initialize the store with a persistence backend.

        Args:
            backend: FileSystemTemplateBackend, InMemoryTemplateBackend or
                any object with the same methods
        """
        self.backend = backend

    def _read(self, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except IOFailure as e:
            logger.warning("Template read failed, retrying once: %s", e)
            return operation()

    def templates(self, category: Optional[str] = None, search: Optional[str] = None) -> List[Template]:
        """Full templates, sorted by category then name.

        Args:
            category: Keep only this category (case-insensitive exact match)
            search: Case-insensitive substring of name, category or content
        """
        wanted = category.lower() if category else None
        needle = search.lower() if search else None

        def _templates() -> List[Template]:
            found = []
            for cat in self.backend.categories():
                if wanted is not None and cat.lower() != wanted:
                    continue
                for name in self.backend.names(cat):
                    content = self.backend.read(cat, name)
                    if needle is not None and not any(
                        needle in text.lower() for text in (name, cat, content)
                    ):
                        continue
                    found.append(Template(category=cat, name=name, content=content))
            return found

        return self._read(_templates)

    def list(self, category: Optional[str] = None, search: Optional[str] = None) -> List[TemplateSummary]:
        """Enumerate templates, sorted by category then name, optionally filtered."""
        return [
            TemplateSummary(
                category=template.category,
                name=template.name,
                preview=make_preview(template.content),
                variables=find_placeholders(template.content),
            )
            for template in self.templates(category=category, search=search)
        ]

    def get(self, category: str, name: str) -> Template:
        """Get a template by address.

        Raises:
            NotFound: If no template exists at (category, name)
        """
        _validate_segment(category, "category")
        _validate_segment(name, "name")
        content = self._read(lambda: self.backend.read(category, name))
        return Template(category=category, name=name, content=content)

    def put(self, category: str, name: str, content: str) -> None:
        """Create or overwrite the template at (category, name).

        Raises:
            ValidationFailure: If the address or content is malformed
            IOFailure: If the write could not be persisted
        """
        _validate_segment(category, "category")
        _validate_segment(name, "name")
        if not isinstance(content, str):
            raise ValidationFailure("Template content must be a string")
        self.backend.write(category, name, content)
        logger.info("Saved template %s/%s (%d chars)", category, name, len(content))

    def delete(self, category: str, name: str) -> None:
        """Delete the template at (category, name).

        Raises:
            NotFound: If the address does not exist
        """
        _validate_segment(category, "category")
        _validate_segment(name, "name")
        self.backend.remove(category, name)
        logger.info("Deleted template %s/%s", category, name)

    def resolve(self, name: str, search_order: Sequence[str] = DEFAULT_SEARCH_ORDER) -> Template:
        """Find a template by bare name, checking categories in order.

        Raises:
            NotFound: If no category in search_order holds the name
        """
        _validate_segment(name, "name")
        for category in search_order:
            if self._read(lambda: self.backend.exists(category, name)):
                return self.get(category, name)
        raise NotFound(f'Prompt "{name}" not found')
