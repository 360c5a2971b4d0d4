import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fabrilog.compliance import (
    BonusTier,
    classify_bonus,
    compute_daily_metrics,
    consolidated_report,
    dashboard_average,
    monthly_average_by_expected_days,
    monthly_average_by_worked_days,
    summarize_operator,
    today_metrics,
    weekly_metrics,
)
from fabrilog.models import Machine, Product, ProductionDetail, ProductionRecord, User

EIGHT_HOUR_SHIFT = "6:00am - 2:00pm"

JUAN = User(id="u-1", name="Juan Pérez", cedula="1001", role="operario")
ANA = User(id="u-2", name="Ana Gómez", cedula="1002", role="operario")
LUZ = User(id="u-3", name="Luz Ruiz", cedula="1003", role="operario")

LIGHTS = Product(id="p-1", name="Luces LED", target_8h=100)
GARLAND = Product(id="p-2", name="Guirnalda", target_8h=200)
MACHINE = Machine(id="m-1", name="Monterrey 1", category="Monterrey")


def _record(record_id, operator, day, *lines, is_assistant=False, stored=None):
    details = tuple(
        ProductionDetail(id=f"{record_id}-{index}", product=product, produced=produced,
                         stored_percentage=stored)
        for index, (product, produced) in enumerate(lines)
    )
    return ProductionRecord(
        id=record_id,
        date=day,
        shift=EIGHT_HOUR_SHIFT,
        operator_id=operator.id,
        machine=MACHINE,
        operator=operator,
        is_assistant=is_assistant,
        details=details,
    )


@pytest.mark.parametrize(
    "percentage, expected",
    [
        (120, BonusTier.POSITIVE),
        (80, BonusTier.POSITIVE),
        (79.99, BonusTier.NEUTRAL),
        (50, BonusTier.NEUTRAL),
        (49.99, BonusTier.NEGATIVE),
        (0, BonusTier.NEGATIVE),
    ],
)
def test_classify_bonus_boundaries(percentage, expected):
    assert classify_bonus(percentage) is expected


def test_single_day_over_target_is_positive():
    records = [_record("r-1", JUAN, date(2024, 3, 4), (LIGHTS, 120))]

    daily = compute_daily_metrics(records)

    assert len(daily) == 1
    assert daily[0].percentage == pytest.approx(120.0)
    assert daily[0].tier is BonusTier.POSITIVE
    assert daily[0].products[0].target == 100


def test_daily_percentage_sums_product_lines():
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), (LIGHTS, 60)),
        _record("r-2", JUAN, date(2024, 3, 4), (GARLAND, 100)),
    ]

    daily = compute_daily_metrics(records)

    assert len(daily) == 1
    assert daily[0].percentage == pytest.approx(110.0)
    assert daily[0].produced == 160


def test_sunday_records_are_ignored():
    records = [
        _record("r-1", JUAN, date(2024, 3, 3), (LIGHTS, 100)),
        _record("r-2", JUAN, date(2024, 3, 4), (LIGHTS, 50)),
    ]

    daily = compute_daily_metrics(records)

    assert [metric.date for metric in daily] == [date(2024, 3, 4)]
    assert monthly_average_by_worked_days(daily) == pytest.approx(50.0)


def test_assistant_days_do_not_count_towards_percentage():
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), (LIGHTS, 100)),
        _record("r-2", JUAN, date(2024, 3, 5), (LIGHTS, 100), is_assistant=True),
    ]

    summary = summarize_operator(JUAN, records, date(2024, 3, 1), date(2024, 3, 31))

    assert summary.days_with_production == 1
    assert summary.assistant_days == 1
    assert summary.average_by_worked_days == pytest.approx(100.0)
    assert summary.working_days == 26


def test_operator_without_production_averages_zero():
    summary = summarize_operator(JUAN, [], date(2024, 3, 1), date(2024, 3, 31))

    assert summary.average_by_worked_days == 0
    assert summary.average_by_expected_days == 0
    assert summary.days_with_production == 0
    assert summary.tier is BonusTier.NEGATIVE


def test_expected_days_rollup_divides_by_twenty_four():
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), (LIGHTS, 120)),
        _record("r-2", JUAN, date(2024, 3, 5), (LIGHTS, 120)),
    ]
    daily = compute_daily_metrics(records)

    assert monthly_average_by_worked_days(daily) == pytest.approx(120.0)
    assert monthly_average_by_expected_days(daily) == pytest.approx(10.0)


def test_tier_counts_follow_daily_percentages():
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), (LIGHTS, 90)),
        _record("r-2", JUAN, date(2024, 3, 5), (LIGHTS, 60)),
        _record("r-3", JUAN, date(2024, 3, 6), (LIGHTS, 10)),
    ]

    summary = summarize_operator(JUAN, records, date(2024, 3, 1), date(2024, 3, 31))

    assert (summary.positive_days, summary.neutral_days, summary.negative_days) == (1, 1, 1)
    payload = summary.to_dict()
    assert payload["bonus_days"] == {"positive": 1, "neutral": 1, "negative": 1}
    assert len(payload["daily"]) == 3


def test_consolidated_report_sorts_and_skips_idle_operators():
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), (LIGHTS, 60)),
        _record("r-2", ANA, date(2024, 3, 4), (LIGHTS, 95)),
    ]

    summaries = consolidated_report(
        [JUAN, ANA, LUZ], records, date(2024, 3, 1), date(2024, 3, 31)
    )

    assert [summary.operator_name for summary in summaries] == ["Ana Gómez", "Juan Pérez"]


def test_consolidated_report_limits_to_requested_operators():
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), (LIGHTS, 60)),
        _record("r-2", ANA, date(2024, 3, 4), (LIGHTS, 95)),
    ]

    summaries = consolidated_report(
        [JUAN, ANA], records, date(2024, 3, 1), date(2024, 3, 31), operator_ids=["u-1"]
    )

    assert [summary.operator_id for summary in summaries] == ["u-1"]


def test_weekly_metrics_keep_last_seven_primary_days():
    today = date(2024, 3, 16)
    days = [date(2024, 3, day) for day in (2, 4, 5, 6, 7, 8, 9, 11, 12)]
    records = [
        _record(f"r-{index}", JUAN, day, (LIGHTS, 80)) for index, day in enumerate(days)
    ]
    records.append(_record("r-x", JUAN, date(2024, 3, 13), (LIGHTS, 80), is_assistant=True))

    weekly = weekly_metrics(records, today)

    assert len(weekly) == 7
    assert weekly[-1].date == date(2024, 3, 12)
    assert all(metric.is_operator for metric in weekly)


def test_today_metrics_returns_none_without_records():
    day = date(2024, 3, 4)
    assert today_metrics([], day) is None

    metric = today_metrics([_record("r-1", JUAN, day, (LIGHTS, 40))], day)
    assert metric.percentage == pytest.approx(40.0)
    assert metric.tier is BonusTier.NEGATIVE


def test_dashboard_average_uses_working_day_count():
    # Monday to Saturday: six working days.
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), (LIGHTS, 0), stored=0.9),
        _record("r-2", ANA, date(2024, 3, 4), (LIGHTS, 0), stored=70),
        _record("r-3", JUAN, date(2024, 3, 5), (LIGHTS, 0), stored=100),
    ]

    average = dashboard_average(records, date(2024, 3, 4), date(2024, 3, 9))

    assert average == pytest.approx((80 + 100) / 6)
