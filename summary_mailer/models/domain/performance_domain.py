"""
Domain models for metric performance aggregation.

The metrics source returns loosely shaped JSON; these dataclasses hold the
fields aggregation needs plus the raw payloads used as narrative context
for text generation.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

TargetRule = Literal["gte", "lte", "within_range"]

UNGROUPED = "Ungrouped"


@dataclass(slots=True)
class DataPoint:
    actual: Any = None
    target: Any = None


@dataclass(slots=True)
class MetricSeries:
    """One named metric with its per-period values (period key -> point)."""

    id: str
    name: str
    rule: TargetRule | None
    points: dict[str, DataPoint]

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> "MetricSeries":
        monthly = raw.get("monthlyData")
        if not isinstance(monthly, dict):
            monthly = {}
        points = {
            str(period): DataPoint(actual=value.get("actual"), target=value.get("target"))
            for period, value in monthly.items()
            if isinstance(value, dict)
        }
        rule = raw.get("targetMeetingRule")
        return cls(
            id=str(raw.get("id", "")),
            name=str(raw.get("name", "")),
            rule=rule if rule in ("gte", "lte", "within_range") else None,
            points=points,
        )


@dataclass(slots=True)
class Entity:
    """A metric owner (a "bowler") with its group label."""

    id: str
    group: str
    metrics: list[MetricSeries]
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> "Entity":
        group = str(raw.get("group") or "").strip() or UNGROUPED
        raw_metrics = raw.get("metrics")
        metrics = [
            MetricSeries.from_payload(metric)
            for metric in (raw_metrics if isinstance(raw_metrics, list) else [])
            if isinstance(metric, dict)
        ]
        return cls(id=str(raw.get("id", "")), group=group, metrics=metrics, raw={**raw, "group": group})


@dataclass(slots=True)
class RemediationCase:
    """An improvement case (an "A3") that can be linked to metrics."""

    id: str
    status: str
    linked_metric_ids: list[str]
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status.strip().lower() == "completed"

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> "RemediationCase":
        linked = raw.get("linkedMetricIds")
        if not isinstance(linked, list):
            linked = []
        return cls(
            id=str(raw.get("id", "")),
            status=str(raw.get("status") or ""),
            linked_metric_ids=[str(metric_id) for metric_id in linked],
            raw=raw,
        )


@dataclass(slots=True)
class OwnerData:
    """Everything the metrics source knows about one owner."""

    entities: list[Entity] = field(default_factory=list)
    cases: list[RemediationCase] = field(default_factory=list)
    dashboard_settings: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "OwnerData":
        raw_entities = payload.get("bowlers", payload.get("entities"))
        raw_cases = payload.get("a3Cases", payload.get("cases"))
        settings = payload.get("dashboardSettings")
        return cls(
            entities=[
                Entity.from_payload(item)
                for item in (raw_entities if isinstance(raw_entities, list) else [])
                if isinstance(item, dict)
            ],
            cases=[
                RemediationCase.from_payload(item)
                for item in (raw_cases if isinstance(raw_cases, list) else [])
                if isinstance(item, dict)
            ],
            dashboard_settings=settings if isinstance(settings, dict) else None,
        )

    @property
    def email_schedule(self) -> Any:
        if not self.dashboard_settings:
            return None
        return self.dashboard_settings.get("emailSchedule")


@dataclass(slots=True)
class PerformanceRow:
    """Aggregated statistics for one (group, metric) pair."""

    group_name: str
    metric_id: str
    metric_name: str
    owner_entity_id: str
    latest_met: bool | None = None
    latest_actual_display: str | None = None
    fail2: bool = False
    fail3: bool = False
    achievement_rate: float | None = None
    linked_case_count: int | None = None  # only computed when at risk

    @property
    def at_risk(self) -> bool:
        return self.fail2 or self.fail3
