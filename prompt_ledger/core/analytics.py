"""
Analytics aggregation over the usage ledger.

Snapshots are recomputed from the full record set on every request and
never persisted. All functions are pure: they depend only on their
arguments and are stable under reordering of the records.

Calendar days and hours are UTC.
"""

import csv
import io
import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from ..storage.models import UsageRecord
from .errors import ValidationFailure

DEFAULT_WINDOW_DAYS = 7

PERIOD_DAYS = {
    "today": 1,
    "1d": 1,
    "week": 7,
    "7d": 7,
    "month": 30,
    "30d": 30,
    "year": 365,
    "365d": 365,
}


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Derived summary of the ledger's current contents."""
    total_calls: int
    total_tokens: int
    total_cost: float
    success_rate: int
    model_usage: Dict[str, int]
    calls_per_day: List[int]
    days: List[str] = field(default_factory=list)
    successful_calls: int = 0
    failed_calls: int = 0
    avg_duration_ms: int = 0
    last_updated: Optional[str] = None

    def to_dict(self) -> Dict:
        """Serialize using the camelCase keys of the dashboard payload."""
        return {
            "totalCalls": self.total_calls,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
            "successRate": self.success_rate,
            "modelUsage": dict(self.model_usage),
            "callsPerDay": list(self.calls_per_day),
            "days": list(self.days),
            "successfulCalls": self.successful_calls,
            "failedCalls": self.failed_calls,
            "avgDurationMs": self.avg_duration_ms,
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True)
class ModelStats:
    """Per-model aggregate."""
    calls: int
    tokens: int
    cost: float
    avg_duration_ms: int

    def to_dict(self) -> Dict:
        return {
            "calls": self.calls,
            "tokens": self.tokens,
            "cost": self.cost,
            "avgDurationMs": self.avg_duration_ms,
        }


@dataclass(frozen=True)
class ProviderStats:
    """Per-provider aggregate; success_rate is a percentage."""
    calls: int
    tokens: int
    cost: float
    success_rate: int

    def to_dict(self) -> Dict:
        return {
            "calls": self.calls,
            "tokens": self.tokens,
            "cost": self.cost,
            "successRate": self.success_rate,
        }


def _sum_cost(records: Iterable[UsageRecord]) -> float:
    # Decimal over the string form so 0.01 + 0.02 == 0.03
    total = sum((Decimal(str(r.cost or 0)) for r in records), Decimal("0"))
    return float(total)


def _percentage(part: int, whole: int) -> int:
    if whole == 0:
        return 0
    value = Decimal(100 * part) / Decimal(whole)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _mean(values: List[int]) -> int:
    if not values:
        return 0
    value = Decimal(sum(values)) / Decimal(len(values))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _utc_day(record: UsageRecord) -> date:
    return record.timestamp.astimezone(timezone.utc).date()


def summarize(
    records: Iterable[UsageRecord],
    window_days: int = DEFAULT_WINDOW_DAYS,
    today: Optional[date] = None,
) -> AnalyticsSnapshot:
    """Compute the analytics snapshot for a set of usage records.

    Args:
        records: Usage records in any order
        window_days: Number of trailing UTC calendar days in callsPerDay,
            today included
        today: Last day of the window (defaults to the current UTC date)

    Returns:
        AnalyticsSnapshot; callsPerDay runs oldest to newest

    Raises:
        ValidationFailure: If window_days is not a positive integer
    """
    if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days < 1:
        raise ValidationFailure("window_days must be a positive integer")

    records = list(records)
    today = today or datetime.now(timezone.utc).date()

    total_calls = len(records)
    successful = sum(1 for r in records if r.success)

    days = [today - timedelta(days=offset) for offset in range(window_days - 1, -1, -1)]
    per_day = Counter(_utc_day(r) for r in records)

    last_updated = None
    if records:
        last_updated = max(r.timestamp for r in records).isoformat()

    return AnalyticsSnapshot(
        total_calls=total_calls,
        total_tokens=sum(r.tokens or 0 for r in records),
        total_cost=_sum_cost(records),
        success_rate=_percentage(successful, total_calls),
        model_usage=dict(sorted(Counter(r.model for r in records).items())),
        calls_per_day=[per_day.get(day, 0) for day in days],
        days=[day.isoformat() for day in days],
        successful_calls=successful,
        failed_calls=total_calls - successful,
        avg_duration_ms=_mean([r.duration_ms for r in records]),
        last_updated=last_updated,
    )


def provider_for_model(model: str) -> str:
    """Derive the hosting provider from a model identifier."""
    if "gpt" in model or "o1" in model:
        return "OpenAI"
    if "claude" in model:
        return "Anthropic"
    if "/" in model:
        return "OpenRouter"
    return "Unknown"


def model_breakdown(records: Iterable[UsageRecord]) -> Dict[str, ModelStats]:
    """Calls, tokens, cost and mean duration per model, busiest first."""
    grouped: Dict[str, List[UsageRecord]] = {}
    for record in records:
        grouped.setdefault(record.model, []).append(record)

    stats = {
        model: ModelStats(
            calls=len(items),
            tokens=sum(r.tokens for r in items),
            cost=_sum_cost(items),
            avg_duration_ms=_mean([r.duration_ms for r in items]),
        )
        for model, items in grouped.items()
    }
    return dict(sorted(stats.items(), key=lambda kv: (-kv[1].calls, kv[0])))


def provider_breakdown(records: Iterable[UsageRecord]) -> Dict[str, ProviderStats]:
    """Calls, tokens, cost and success rate per provider, busiest first."""
    grouped: Dict[str, List[UsageRecord]] = {}
    for record in records:
        grouped.setdefault(provider_for_model(record.model), []).append(record)

    stats = {
        provider: ProviderStats(
            calls=len(items),
            tokens=sum(r.tokens for r in items),
            cost=_sum_cost(items),
            success_rate=_percentage(sum(1 for r in items if r.success), len(items)),
        )
        for provider, items in grouped.items()
    }
    return dict(sorted(stats.items(), key=lambda kv: (-kv[1].calls, kv[0])))


def hourly_distribution(records: Iterable[UsageRecord]) -> List[int]:
    """Call counts for each UTC hour of the day (24 entries)."""
    counts = [0] * 24
    for record in records:
        counts[record.timestamp.astimezone(timezone.utc).hour] += 1
    return counts


def period_to_days(period: str) -> Optional[int]:
    """Translate a period label into a number of days.

    Returns None when the label is not understood, meaning no cutoff.
    """
    label = period.strip().lower()
    if label in PERIOD_DAYS:
        return PERIOD_DAYS[label]
    try:
        return int(label)
    except ValueError:
        return None


def filter_records(
    records: Iterable[UsageRecord],
    period: Optional[str] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[UsageRecord]:
    """Filter records by trailing period, provider and model.

    Provider and model are case-insensitive substring matches.
    """
    filtered = list(records)

    if period:
        days = period_to_days(period)
        if days is not None:
            now = now or datetime.now(timezone.utc)
            if now.tzinfo is None:
                now = now.replace(tzinfo=timezone.utc)
            cutoff = now - timedelta(days=days)
            filtered = [r for r in filtered if r.timestamp >= cutoff]

    if provider:
        needle = provider.lower()
        filtered = [r for r in filtered if needle in provider_for_model(r.model).lower()]

    if model:
        needle = model.lower()
        filtered = [r for r in filtered if needle in r.model.lower()]

    return filtered


def export_snapshot(
    snapshot: AnalyticsSnapshot,
    models: Dict[str, ModelStats],
    providers: Dict[str, ProviderStats],
    fmt: str,
) -> str:
    """Render a snapshot and its breakdowns as JSON or CSV text.

    Raises:
        ValidationFailure: If fmt is neither 'json' nor 'csv'
    """
    fmt = fmt.lower()
    if fmt == "json":
        payload = snapshot.to_dict()
        payload["modelStats"] = {name: stats.to_dict() for name, stats in models.items()}
        payload["providerStats"] = {name: stats.to_dict() for name, stats in providers.items()}
        return json.dumps(payload, indent=2)

    if fmt == "csv":
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["Type", "Name", "Calls", "Tokens", "Cost", "Success_Rate", "Avg_Duration"])
        for name, stats in providers.items():
            writer.writerow([
                "Provider", name, stats.calls, stats.tokens,
                f"{stats.cost:.4f}", f"{stats.success_rate}%", "",
            ])
        for name, stats in models.items():
            writer.writerow([
                "Model", name, stats.calls, stats.tokens,
                f"{stats.cost:.4f}", "", stats.avg_duration_ms,
            ])
        return buffer.getvalue()

    raise ValidationFailure(f"Unsupported export format: {fmt}. Use 'json' or 'csv'")
