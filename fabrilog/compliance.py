"""Operator compliance metrics and bonus classification.

A day's compliance is the *sum* of the line percentages recorded that day
(produced / target * 100 per product), so multi-product days can exceed
100%.  Only records where the operator acted in the primary role count
towards the percentage; assistant records only mark the day as worked.
Sundays are never working days.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Iterable, Sequence

from fabrilog.dates import count_working_days, is_sunday
from fabrilog.models import ProductionRecord, User
from fabrilog.targets import line_percentage, resolve_target, to_pct100

POSITIVE_THRESHOLD = 80.0
NEUTRAL_THRESHOLD = 50.0
EXPECTED_WORKING_DAYS = 24
WEEKLY_LOOKBACK_DAYS = 14
WEEKLY_DAYS = 7


class BonusTier(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


def classify_bonus(percentage: float) -> BonusTier:
    """Return the bonus tier for ``percentage``; boundaries go to the higher tier."""

    if percentage >= POSITIVE_THRESHOLD:
        return BonusTier.POSITIVE
    if percentage >= NEUTRAL_THRESHOLD:
        return BonusTier.NEUTRAL
    return BonusTier.NEGATIVE


@dataclass(frozen=True)
class ProductMetric:
    name: str
    produced: float
    target: float
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "produced": self.produced,
            "target": self.target,
            "percentage": round(self.percentage, 2),
        }


@dataclass(frozen=True)
class DailyMetric:
    date: date
    percentage: float
    produced: float
    target: float
    tier: BonusTier
    is_operator: bool
    products: tuple[ProductMetric, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "percentage": round(self.percentage, 2),
            "produced": self.produced,
            "target": self.target,
            "tier": self.tier.value,
            "is_operator": self.is_operator,
            "products": [product.to_dict() for product in self.products],
        }


@dataclass(frozen=True)
class OperatorMetricsSummary:
    operator_id: Any
    operator_name: str
    average_by_worked_days: float
    average_by_expected_days: float
    working_days: int
    days_with_production: int
    assistant_days: int
    positive_days: int
    neutral_days: int
    negative_days: int
    daily: tuple[DailyMetric, ...] = field(default_factory=tuple)

    @property
    def tier(self) -> BonusTier:
        return classify_bonus(self.average_by_worked_days)

    def to_dict(self, include_daily: bool = True) -> dict[str, Any]:
        payload = {
            "operator_id": self.operator_id,
            "operator_name": self.operator_name,
            "average_by_worked_days": round(self.average_by_worked_days, 2),
            "average_by_expected_days": round(self.average_by_expected_days, 2),
            "tier": self.tier.value,
            "working_days": self.working_days,
            "days_with_production": self.days_with_production,
            "assistant_days": self.assistant_days,
            "bonus_days": {
                BonusTier.POSITIVE.value: self.positive_days,
                BonusTier.NEUTRAL.value: self.neutral_days,
                BonusTier.NEGATIVE.value: self.negative_days,
            },
        }
        if include_daily:
            payload["daily"] = [metric.to_dict() for metric in self.daily]
        return payload


def compute_daily_metrics(records: Iterable[ProductionRecord]) -> list[DailyMetric]:
    """Return one :class:`DailyMetric` per non-Sunday date in ``records``.

    ``records`` are expected to belong to a single operator.  Days on which
    the operator only assisted are returned with ``is_operator=False`` and a
    zero percentage.
    """

    by_date: dict[date, list[ProductionRecord]] = defaultdict(list)
    for record in records:
        by_date[record.date].append(record)

    metrics: list[DailyMetric] = []
    for day in sorted(by_date):
        if is_sunday(day):
            continue
        day_records = by_date[day]
        is_operator = any(not record.is_assistant for record in day_records)

        percentage = 0.0
        produced = 0.0
        target_total = 0.0
        products: list[ProductMetric] = []
        for record in day_records:
            if record.is_assistant:
                continue
            for detail in record.details:
                target = resolve_target(detail.product, record.shift)
                line_pct = line_percentage(detail.produced, target)
                percentage += line_pct
                produced += detail.produced
                target_total += target
                if detail.product is not None:
                    products.append(
                        ProductMetric(
                            name=detail.product.name,
                            produced=detail.produced,
                            target=target,
                            percentage=line_pct,
                        )
                    )

        metrics.append(
            DailyMetric(
                date=day,
                percentage=percentage,
                produced=produced,
                target=target_total,
                tier=classify_bonus(percentage),
                is_operator=is_operator,
                products=tuple(products),
            )
        )
    return metrics


def _operator_days(daily: Iterable[DailyMetric]) -> list[DailyMetric]:
    return [metric for metric in daily if metric.is_operator]


def monthly_average_by_worked_days(daily: Iterable[DailyMetric]) -> float:
    """Mean daily percentage over the days worked in the primary role."""

    worked = _operator_days(daily)
    if not worked:
        return 0.0
    return sum(metric.percentage for metric in worked) / len(worked)


def monthly_average_by_expected_days(
    daily: Iterable[DailyMetric],
    expected_days: int = EXPECTED_WORKING_DAYS,
) -> float:
    """Sum of daily percentages divided by a fixed expected day count.

    This is the operator-facing monthly card rollup; it differs from
    :func:`monthly_average_by_worked_days` on purpose.
    """

    if expected_days <= 0:
        return 0.0
    return sum(metric.percentage for metric in _operator_days(daily)) / expected_days


def summarize_operator(
    operator: User,
    records: Iterable[ProductionRecord],
    start: date,
    end: date,
) -> OperatorMetricsSummary:
    own_records = [
        record
        for record in records
        if record.operator_id == operator.id and start <= record.date <= end
    ]
    daily = compute_daily_metrics(own_records)
    worked = _operator_days(daily)
    tiers = defaultdict(int)
    for metric in worked:
        tiers[metric.tier] += 1

    return OperatorMetricsSummary(
        operator_id=operator.id,
        operator_name=operator.name,
        average_by_worked_days=monthly_average_by_worked_days(daily),
        average_by_expected_days=monthly_average_by_expected_days(daily),
        working_days=count_working_days(start, end),
        days_with_production=len(worked),
        assistant_days=sum(1 for metric in daily if not metric.is_operator),
        positive_days=tiers[BonusTier.POSITIVE],
        neutral_days=tiers[BonusTier.NEUTRAL],
        negative_days=tiers[BonusTier.NEGATIVE],
        daily=tuple(daily),
    )


def consolidated_report(
    operators: Iterable[User],
    records: Sequence[ProductionRecord],
    start: date,
    end: date,
    operator_ids: Iterable[Any] | None = None,
) -> list[OperatorMetricsSummary]:
    """Summaries for every operator with at least one production day.

    Results are sorted by ``average_by_worked_days`` descending.
    """

    wanted = None if operator_ids is None else {str(value) for value in operator_ids}
    summaries = []
    for operator in operators:
        if wanted is not None and str(operator.id) not in wanted:
            continue
        summary = summarize_operator(operator, records, start, end)
        if summary.days_with_production > 0:
            summaries.append(summary)
    summaries.sort(key=lambda item: item.average_by_worked_days, reverse=True)
    return summaries


def weekly_window(today: date) -> tuple[date, date]:
    return today - timedelta(days=WEEKLY_LOOKBACK_DAYS), today


def weekly_metrics(records: Iterable[ProductionRecord], today: date) -> list[DailyMetric]:
    """Return the last seven primary-role days within the weekly lookback."""

    start, end = weekly_window(today)
    in_window = [record for record in records if start <= record.date <= end]
    return _operator_days(compute_daily_metrics(in_window))[-WEEKLY_DAYS:]


def today_metrics(records: Iterable[ProductionRecord], today: date) -> DailyMetric | None:
    metrics = compute_daily_metrics(record for record in records if record.date == today)
    return metrics[0] if metrics else None


def dashboard_average(records: Iterable[ProductionRecord], start: date, end: date) -> float:
    """Average compliance shown on the dashboard card.

    Stored detail percentages are averaged per day; the daily means are
    summed and divided by the Monday to Saturday day count of the range.
    """

    by_day: dict[date, list[float]] = defaultdict(list)
    for record in records:
        if not start <= record.date <= end:
            continue
        for detail in record.details:
            by_day[record.date].append(to_pct100(detail.stored_percentage))

    expected = count_working_days(start, end)
    if expected <= 0:
        return 0.0
    total = sum(sum(values) / len(values) for values in by_day.values() if values)
    return total / expected
