"""
Target-violation rules and per-metric performance aggregation.

Everything here is pure: raw entity series in, PerformanceRow list out.
A data point qualifies only when both its actual and target values are
present and non-blank; qualification and chronological ordering of period
keys happen before any statistic is computed.
"""

import re
from collections.abc import Iterable
from typing import Any

from summary_mailer.models.domain.performance_domain import (
    DataPoint,
    Entity,
    MetricSeries,
    PerformanceRow,
    RemediationCase,
    TargetRule,
)

# Leading-number parse: "12.5%" -> 12.5, "abc" -> no match
_NUMBER_PREFIX = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_RANGE = re.compile(r"^[\{\[]?\s*(-?[\d.]+)\s*,\s*(-?[\d.]+)\s*[\}\]]?$")


def parse_number(value: Any) -> float | None:
    """Parse the leading number of a value, or None when there is none."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    match = _NUMBER_PREFIX.match(str(value))
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def parse_range(target: Any) -> tuple[float, float] | None:
    """Parse ``a,b`` / ``{a,b}`` / ``[a,b]`` into (min, max)."""
    match = _RANGE.match(str(target).strip())
    if not match:
        return None
    low, high = parse_number(match.group(1)), parse_number(match.group(2))
    if low is None or high is None:
        return None
    return low, high


def is_violation(rule: TargetRule | None, target: Any, actual: Any) -> bool:
    """
    Whether an actual value misses its target under the given rule.

    Unparseable values are never violations. The default rule is ``gte``.
    """
    if not is_present(actual) or not is_present(target):
        return False

    actual_value = parse_number(actual)
    if actual_value is None:
        return False

    effective_rule = rule or "gte"

    if effective_rule == "within_range":
        bounds = parse_range(target)
        if bounds is None:
            return False
        low, high = bounds
        return actual_value < low or actual_value > high

    target_value = parse_number(target)
    if target_value is None:
        return False

    if effective_rule == "lte":
        return actual_value > target_value
    return actual_value < target_value


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def qualifies(point: DataPoint | None) -> bool:
    return point is not None and is_present(point.actual) and is_present(point.target)


def qualifying_periods(metric: MetricSeries) -> list[str]:
    """Period keys with both values present, oldest first."""
    return sorted(period for period, point in metric.points.items() if qualifies(point))


def count_linked_cases(metric_id: str, cases: Iterable[RemediationCase]) -> int:
    return sum(1 for case in cases if metric_id in case.linked_metric_ids)


def _display(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _consecutive_failures(violations: list[bool], window: int) -> bool:
    return len(violations) >= window and all(violations[-window:])


def build_row(
    group_name: str, entity: Entity, metric: MetricSeries, cases: list[RemediationCase]
) -> PerformanceRow:
    """Compute statistics for a single metric. The metric must have qualifying points."""
    periods = qualifying_periods(metric)
    violations = [
        is_violation(metric.rule, metric.points[period].target, metric.points[period].actual)
        for period in periods
    ]

    row = PerformanceRow(
        group_name=group_name,
        metric_id=metric.id,
        metric_name=metric.name,
        owner_entity_id=entity.id,
    )
    if not periods:
        return row

    latest = metric.points[periods[-1]]
    row.latest_met = not violations[-1]
    row.latest_actual_display = _display(latest.actual)
    row.fail2 = _consecutive_failures(violations, 2)
    row.fail3 = _consecutive_failures(violations, 3)
    row.achievement_rate = violations.count(False) / len(violations) * 100

    if row.at_risk:
        row.linked_case_count = count_linked_cases(metric.id, cases)

    return row


def aggregate(
    entities: list[Entity], cases: list[RemediationCase] | None = None
) -> list[PerformanceRow]:
    """
    Aggregate every metric with at least one qualifying point.

    Groups come out sorted by name; metrics keep their source order
    within a group.
    """
    cases = cases or []
    group_to_metrics: dict[str, list[tuple[Entity, MetricSeries]]] = {}

    for entity in entities:
        for metric in entity.metrics:
            if not qualifying_periods(metric):
                continue
            group_to_metrics.setdefault(entity.group, []).append((entity, metric))

    rows: list[PerformanceRow] = []
    for group_name in sorted(group_to_metrics):
        for entity, metric in group_to_metrics[group_name]:
            rows.append(build_row(group_name, entity, metric, cases))

    return rows
