"""
Template rendering.

Substitutes {{identifier}} placeholders from a binding set. Unmatched
placeholders pass through unchanged so a preview and the live call show
the same unresolved text.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")


def render(content: str, bindings: Mapping[str, Any]) -> str:
    """Render template content against a variable binding set.

    Every occurrence of a bound identifier is replaced. Substituted values
    are never re-scanned for placeholders.

    Args:
        content: Template text
        bindings: Mapping from placeholder identifier to value

    Returns:
        Rendered text
    """
    def _substitute(match: "re.Match[str]") -> str:
        identifier = match.group(1)
        if identifier in bindings:
            return str(bindings[identifier])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_substitute, content)


def find_placeholders(content: str) -> List[str]:
    """Return distinct placeholder identifiers in first-appearance order."""
    seen: Dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(content):
        seen.setdefault(match.group(1), None)
    return list(seen)


def builtin_bindings(now: Optional[datetime] = None) -> Dict[str, str]:
    """Bindings for the `date` and `time` placeholders.

    Callers merge these under their own variables; `render` never
    injects them on its own.
    """
    now = now or datetime.now(timezone.utc)
    return {
        "date": now.date().isoformat(),
        "time": now.strftime("%H:%M:%S"),
    }
