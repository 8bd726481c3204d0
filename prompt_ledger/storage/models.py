"""
Data models for storage layer.

Defines templates, usage records and the ledger query structure.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.errors import ValidationFailure


@dataclass(frozen=True)
class Template:
    """A prompt template addressed by (category, name)."""
    category: str
    name: str
    content: str


@dataclass(frozen=True)
class TemplateSummary:
    """Listing entry for a template."""
    category: str
    name: str
    preview: str
    variables: List[str] = field(default_factory=list)


class StatusFilter(Enum):
    """Outcome filter for ledger queries."""
    ALL = "all"
    SUCCESS = "success"
    ERROR = "error"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 string or datetime into an aware UTC datetime.

    Raises:
        ValidationFailure: If the value is not a timestamp
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailure(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValidationFailure(f"Invalid timestamp: {value!r}")


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of a single model invocation.

    Appended once per completed call. A failed call carries a non-empty
    error message; a successful call carries none.
    """
    timestamp: datetime
    model: str
    tokens: int = 0
    cost: float = 0.0
    duration_ms: int = 0
    success: bool = True
    prompt_ref: Optional[str] = None
    error: Optional[str] = None
    input: Optional[str] = None
    response: Optional[str] = None

    def __post_init__(self):
        """Validate record fields and normalize the timestamp to UTC."""
        if not isinstance(self.timestamp, datetime):
            raise ValidationFailure("timestamp must be a datetime")
        object.__setattr__(self, "timestamp", _as_utc(self.timestamp))
        if not isinstance(self.model, str) or not self.model.strip():
            raise ValidationFailure("model is required and cannot be empty")
        if isinstance(self.tokens, bool) or not isinstance(self.tokens, int) or self.tokens < 0:
            raise ValidationFailure("tokens must be a non-negative integer")
        if isinstance(self.cost, bool) or not isinstance(self.cost, (int, float)) or self.cost < 0:
            raise ValidationFailure("cost must be a non-negative number")
        if (isinstance(self.duration_ms, bool) or not isinstance(self.duration_ms, int)
                or self.duration_ms < 0):
            raise ValidationFailure("duration_ms must be a non-negative integer")
        if not isinstance(self.success, bool):
            raise ValidationFailure("success must be a boolean")
        for label, value in (
            ("prompt_ref", self.prompt_ref),
            ("error", self.error),
            ("input", self.input),
            ("response", self.response),
        ):
            if value is not None and not isinstance(value, str):
                raise ValidationFailure(f"{label} must be a string or None")
        if self.success and self.error is not None:
            raise ValidationFailure("a successful record cannot carry an error")
        if not self.success and not self.error:
            raise ValidationFailure("a failed record requires an error message")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "UsageRecord":
        """Build a record from a boundary payload.

        Accepts the camelCase keys used on the wire. Missing tokens and
        cost default to 0; anything malformed is rejected.

        Raises:
            ValidationFailure: If the payload does not describe a valid record
        """
        if not isinstance(payload, dict):
            raise ValidationFailure("usage record payload must be a mapping")

        known = {
            "timestamp", "model", "promptRef", "tokens", "cost",
            "durationMs", "success", "error", "input", "response",
        }
        unknown = set(payload) - known
        if unknown:
            raise ValidationFailure(f"Unknown usage record keys: {sorted(unknown)}")

        if "timestamp" not in payload:
            raise ValidationFailure("Missing required 'timestamp'")
        if "model" not in payload:
            raise ValidationFailure("Missing required 'model'")

        error = payload.get("error")
        success = payload.get("success", error is None)

        tokens = payload.get("tokens")
        cost = payload.get("cost")
        duration = payload.get("durationMs")
        return cls(
            timestamp=parse_timestamp(payload["timestamp"]),
            model=payload["model"],
            prompt_ref=payload.get("promptRef"),
            tokens=0 if tokens is None else tokens,
            cost=0.0 if cost is None else cost,
            duration_ms=0 if duration is None else duration,
            success=success,
            error=error,
            input=payload.get("input"),
            response=payload.get("response"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the boundary schema, omitting absent optional fields."""
        data: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "model": self.model,
            "tokens": self.tokens,
            "cost": self.cost,
            "durationMs": self.duration_ms,
            "success": self.success,
        }
        for key, value in (
            ("promptRef", self.prompt_ref),
            ("error", self.error),
            ("input", self.input),
            ("response", self.response),
        ):
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class LedgerQuery:
    """Filter and bound for ledger queries."""
    search: Optional[str] = None
    status: StatusFilter = StatusFilter.ALL
    limit: int = 50

    def __post_init__(self):
        """Coerce the status filter and validate the limit."""
        status = self.status
        if not isinstance(status, StatusFilter):
            try:
                status = StatusFilter(str(status).lower())
            except ValueError:
                valid = [s.value for s in StatusFilter]
                raise ValidationFailure(f"status must be one of: {valid}")
            object.__setattr__(self, "status", status)
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise ValidationFailure("limit must be a positive integer")

    def matches(self, record: UsageRecord) -> bool:
        """Check whether a record passes the status and free-text filters."""
        if self.status is StatusFilter.SUCCESS and not record.success:
            return False
        if self.status is StatusFilter.ERROR and record.success:
            return False
        if self.search:
            needle = self.search.lower()
            haystacks = (record.prompt_ref, record.model, record.input)
            return any(h is not None and needle in h.lower() for h in haystacks)
        return True
