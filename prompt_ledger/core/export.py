"""
Export of usage records, templates and configuration.

Each exporter renders its data as json, jsonl or csv text; writing the
text to disk is left to the caller.
"""

import csv
import io
import json
from typing import Any, Dict, Iterable, List, Optional

from ..storage.models import Template, UsageRecord
from .errors import ValidationFailure

EXPORT_FORMATS = ("json", "jsonl", "csv")
EXPORT_KINDS = ("logs", "prompts", "config")


def _check_format(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationFailure(f"Unsupported export format: {fmt}. Use 'json', 'csv', or 'jsonl'")
    return fmt


def _dump(items: List[Dict[str, Any]], fmt: str) -> str:
    if fmt == "json":
        return json.dumps(items, indent=2, ensure_ascii=False)
    return "\n".join(json.dumps(item, ensure_ascii=False) for item in items)


def _csv(header: List[str], rows: Iterable[List[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


def template_description(content: str) -> Optional[str]:
    """Title taken from a leading '# ' heading, if the template has one."""
    first_line = content.split("\n", 1)[0]
    if first_line.startswith("# "):
        return first_line[2:].strip()
    return None


def matches_log_filter(record: UsageRecord, text: str) -> bool:
    """Free-text log filter.

    The words 'error' and 'success' select by outcome; anything else is a
    case-insensitive substring of the model, prompt reference or input.
    """
    needle = text.lower()
    if needle == "error" and not record.success:
        return True
    if needle == "success" and record.success:
        return True
    haystacks = (record.model, record.prompt_ref, record.input)
    return any(h is not None and needle in h.lower() for h in haystacks)


def export_records(records: Iterable[UsageRecord], fmt: str) -> str:
    """Render usage records in the boundary schema.

    Raises:
        ValidationFailure: On an unsupported format
    """
    fmt = _check_format(fmt)
    records = list(records)
    if fmt != "csv":
        return _dump([record.to_dict() for record in records], fmt)
    return _csv(
        ["Timestamp", "Model", "Prompt", "Success", "Tokens", "DurationMs", "Cost", "Error"],
        (
            [
                record.timestamp.isoformat(),
                record.model,
                record.prompt_ref or "",
                str(record.success).lower(),
                record.tokens,
                record.duration_ms,
                record.cost,
                record.error or "",
            ]
            for record in records
        ),
    )


def export_templates(templates: Iterable[Template], fmt: str) -> str:
    """Render templates with their content and heading-derived description.

    Raises:
        ValidationFailure: On an unsupported format
    """
    fmt = _check_format(fmt)
    items = []
    for template in templates:
        item = {"name": template.name, "category": template.category, "content": template.content}
        description = template_description(template.content)
        if description:
            item["description"] = description
        items.append(item)

    if fmt != "csv":
        return _dump(items, fmt)
    return _csv(
        ["Name", "Category", "Description", "Content"],
        ([i["name"], i["category"], i.get("description", ""), i["content"]] for i in items),
    )


def export_config(config: Dict[str, Any], fmt: str) -> str:
    """Render a masked configuration payload ({"config": ..., "env": ...}).

    CSV flattens it to one Section,Key,Value row per leaf.

    Raises:
        ValidationFailure: On an unsupported format
    """
    fmt = _check_format(fmt)
    if fmt == "json":
        return json.dumps(config, indent=2, ensure_ascii=False)
    if fmt == "jsonl":
        return json.dumps(config, ensure_ascii=False)

    rows = []
    for branch, values in config.get("config", {}).items():
        for key, value in values.items():
            rows.append([branch, key, value])
    for key, value in config.get("env", {}).items():
        rows.append(["env", key, value])
    return _csv(["Section", "Key", "Value"], rows)
