import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fabrilog.errors import EmptyResultError
from fabrilog.models import Machine, Product, ProductionDetail, ProductionRecord, User
from fabrilog.reports import (
    AREA_FOUR_HEADS,
    AREA_MONTERREY,
    AREA_TYING,
    NO_ASSISTANT,
    NO_CATEGORY,
    NO_MACHINE,
    NO_SHIFT,
    NOT_AVAILABLE,
    area_for_machine,
    build_machine_report,
    build_production_report,
    build_summary_report,
    group_rows_by_machine,
)

SHIFT = "6:00am - 2:00pm"

JUAN = User(id="u-1", name="Juan Pérez", role="operario")
ANA = User(id="u-2", name="Ana Gómez", role="operario")
PEDRO = User(id="u-3", name="Pedro Díaz", role="operario")

MONTERREY = Machine(id="m-1", name="Monterrey 1", category="Monterrey")
FOUR_HEADS = Machine(id="m-2", name="4 Cabezas A", category="Cabezas")
TYING = Machine(id="m-3", name="Amarradora 2", category="Amarradoras")

LIGHTS = Product(id="p-1", name="Luces LED", target_8h=100)
UNTARGETED = Product(id="p-2", name="Muestra")


def _record(record_id, operator, day, machine, *lines, is_assistant=False, assistants=()):
    details = tuple(
        ProductionDetail(id=f"{record_id}-{index}", product=product, produced=produced,
                         stored_percentage=stored, observations=note)
        for index, (product, produced, stored, note) in enumerate(lines)
    )
    record = ProductionRecord(
        id=record_id,
        date=day,
        shift=SHIFT,
        operator_id=operator.id if operator else None,
        machine=machine,
        operator=operator,
        is_assistant=is_assistant,
        details=details,
    )
    return record.with_assistants(assistants)


def test_machine_report_single_day_round_trip():
    day = date(2024, 3, 4)
    records = [
        _record("r-1", JUAN, day, MONTERREY, (LIGHTS, 120, None, ""), assistants=[("u-2", "Ana Gómez")])
    ]

    buckets = build_machine_report(records, [JUAN], day, day)

    assert [bucket.name for bucket in buckets] == ["Monterrey"]
    (row,) = buckets[0].rows
    assert row.day == day
    assert row.shift == SHIFT
    assert row.operator == "Juan Pérez"
    assert row.assistant == "Ana Gómez"
    assert row.machine == "Monterrey 1"
    assert row.product == "Luces LED"
    assert row.produced == 120
    assert row.percentage == pytest.approx(120.0)


def test_machine_report_fills_idle_days_with_placeholders():
    records = [_record("r-1", JUAN, date(2024, 3, 5), MONTERREY, (LIGHTS, 50, None, ""))]

    buckets = build_machine_report(records, [JUAN, ANA], date(2024, 3, 4), date(2024, 3, 6))

    rows = buckets[0].rows
    assert [row.day.day for row in rows] == [4, 5, 6]
    placeholder = rows[0]
    assert placeholder.shift == NO_SHIFT
    assert placeholder.assistant == NO_ASSISTANT
    assert placeholder.produced == 0
    assert placeholder.percentage == 0
    assert rows[1].assistant == NO_ASSISTANT
    # Ana worked nowhere in the range, so she gets no placeholder rows.
    assert {row.operator for row in rows} == {"Juan Pérez"}


def test_machine_report_sorts_buckets_and_rows():
    day = date(2024, 3, 4)
    records = [
        _record("r-1", JUAN, day, TYING, (LIGHTS, 10, None, "")),
        _record("r-2", ANA, day, TYING, (LIGHTS, 20, None, "")),
        _record("r-3", JUAN, day, MONTERREY, (LIGHTS, 30, None, "")),
    ]

    buckets = build_machine_report(records, [JUAN, ANA], day, day)

    assert [bucket.name for bucket in buckets] == ["Amarradoras", "Monterrey"]
    assert [row.operator for row in buckets[0].rows] == ["Ana Gómez", "Juan Pérez"]


def test_machine_report_uses_stored_percentage_without_target():
    day = date(2024, 3, 4)
    records = [_record("r-1", JUAN, day, None, (UNTARGETED, 15, 42.5, ""))]

    buckets = build_machine_report(records, [JUAN], day, day)

    assert buckets[0].name == NO_CATEGORY
    row = buckets[0].rows[0]
    assert row.machine == NOT_AVAILABLE
    assert row.percentage == pytest.approx(42.5)


def test_machine_report_includes_inactive_operators_found_in_records():
    day = date(2024, 3, 4)
    records = [_record("r-1", PEDRO, day, MONTERREY, (LIGHTS, 100, None, ""))]

    buckets = build_machine_report(records, [JUAN], day, day)

    assert buckets[0].rows[0].operator == "Pedro Díaz"


def test_machine_report_category_filter():
    day = date(2024, 3, 4)
    records = [
        _record("r-1", JUAN, day, TYING, (LIGHTS, 10, None, "")),
        _record("r-2", ANA, day, MONTERREY, (LIGHTS, 20, None, "")),
    ]

    buckets = build_machine_report(records, [JUAN, ANA], day, day, category="Monterrey")

    assert [bucket.name for bucket in buckets] == ["Monterrey"]
    with pytest.raises(EmptyResultError):
        build_machine_report(records, [JUAN, ANA], day, day, category="Otra")


def test_machine_report_without_records_raises():
    with pytest.raises(EmptyResultError):
        build_machine_report([], [JUAN], date(2024, 3, 4), date(2024, 3, 4))


def test_group_rows_by_machine():
    day = date(2024, 3, 4)
    records = [
        _record("r-1", JUAN, day, TYING, (LIGHTS, 10, None, "")),
        _record("r-2", ANA, day, MONTERREY, (LIGHTS, 20, None, "")),
    ]
    buckets = build_machine_report(records, [JUAN, ANA], day, day)

    grouped = group_rows_by_machine(row for bucket in buckets for row in bucket.rows)

    assert [bucket.name for bucket in grouped] == ["Amarradora 2", "Monterrey 1"]


def test_group_rows_by_machine_keeps_date_then_operator_order():
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), TYING, (LIGHTS, 10, None, "")),
        _record("r-2", ANA, date(2024, 3, 5), MONTERREY, (LIGHTS, 20, None, "")),
    ]
    buckets = build_machine_report(records, [JUAN, ANA], date(2024, 3, 4), date(2024, 3, 5))

    grouped = group_rows_by_machine(row for bucket in buckets for row in bucket.rows)

    idle = next(bucket for bucket in grouped if bucket.name == NO_MACHINE)
    assert [(row.day, row.operator) for row in idle.rows] == [
        (date(2024, 3, 4), "Ana Gómez"),
        (date(2024, 3, 5), "Juan Pérez"),
    ]
    for bucket in grouped:
        keys = [(row.day, row.operator.casefold()) for row in bucket.rows]
        assert keys == sorted(keys)


@pytest.mark.parametrize(
    "name, area",
    [
        ("4 Cabezas A", AREA_FOUR_HEADS),
        ("Cabezal doble", AREA_FOUR_HEADS),
        ("Amarradora 2", AREA_TYING),
        ("Monterrey 1", AREA_MONTERREY),
        (None, AREA_MONTERREY),
    ],
)
def test_area_for_machine(name, area):
    assert area_for_machine(name) == area


def test_production_report_rows_and_areas():
    day = date(2024, 3, 4)
    records = [
        _record("r-1", JUAN, day, MONTERREY, (LIGHTS, 60, None, "ok"), (LIGHTS, 30, None, "")),
        _record("r-2", ANA, day, TYING, (LIGHTS, 50, None, ""), is_assistant=True),
        _record("r-3", ANA, day, FOUR_HEADS),
    ]

    report = build_production_report(records)

    assert [bucket.name for bucket in report.areas] == [AREA_MONTERREY, AREA_FOUR_HEADS, AREA_TYING]
    assert len(report.data) == 4
    first = report.areas[0].rows[0]
    assert first.role == "Operario Principal"
    assert first.festoon_target == 100
    assert first.percentage == pytest.approx(60.0)
    assert first.daily_percentage == pytest.approx(90.0)
    assert first.observations == "ok"
    assert len(first.values()) == 17

    empty = report.areas[1].rows[0]
    assert empty.reference == "Sin productos"
    assert empty.observations == "Sin detalles de producción"

    assistant = report.areas[2].rows[0]
    assert assistant.role == "Asistente"
    assert assistant.daily_percentage == 0


def test_production_report_area_filter_keeps_full_data_sheet():
    day = date(2024, 3, 4)
    records = [
        _record("r-1", JUAN, day, MONTERREY, (LIGHTS, 60, None, "")),
        _record("r-2", ANA, day, TYING, (LIGHTS, 50, None, "")),
    ]

    report = build_production_report(records, [AREA_TYING])

    assert [bucket.name for bucket in report.areas] == [AREA_TYING]
    assert len(report.data) == 2


def test_summary_report_operator_and_assistant_blocks():
    start, end = date(2024, 3, 4), date(2024, 3, 9)
    records = [
        _record("r-1", JUAN, date(2024, 3, 4), MONTERREY, (LIGHTS, 80, None, "falla"),
                assistants=[("u-2", "Ana Gómez")]),
        _record("r-2", JUAN, date(2024, 3, 5), MONTERREY, (LIGHTS, 100, None, "falla")),
        _record("r-3", PEDRO, date(2024, 3, 4), TYING, (LIGHTS, 60, None, ""),
                assistants=[("u-2", "Ana Gómez")]),
    ]

    report = build_summary_report(records, [JUAN, ANA, PEDRO], start, end)

    assert report.categories == ["Amarradoras", "Monterrey"]
    names = [employee.name for employee in report.employees]
    assert names == ["Ana Gómez", "Juan Pérez", "Pedro Díaz"]

    juan = report.employees[1]
    assert juan.days_to_work == 6
    block = juan.block("Monterrey")
    assert block.operator.days == 2
    assert block.operator.percentage == pytest.approx(90.0)
    assert block.operator.observations == "falla"
    assert block.assistant.days == 0
    assert juan.block("Amarradoras") is None

    ana = report.employees[0]
    assert ana.block("Monterrey").assistant.percentage == pytest.approx(80.0)
    assert ana.block("Amarradoras").assistant.percentage == pytest.approx(60.0)
    assert ana.block("Monterrey").operator.days == 0


def test_summary_assistant_days_are_split_across_machines():
    day = date(2024, 3, 4)
    second = Machine(id="m-9", name="Monterrey 2", category="Monterrey")
    records = [
        _record("r-1", JUAN, day, MONTERREY, (LIGHTS, 80, None, ""), assistants=[("u-2", "Ana")]),
        _record("r-2", PEDRO, day, second, (LIGHTS, 100, None, ""), assistants=[("u-2", "Ana")]),
    ]

    report = build_summary_report(records, [ANA], day, day)

    block = report.employees[0].block("Monterrey").assistant
    assert block.days == 1
    assert block.percentage == pytest.approx(90.0)
    assert [machine.name for machine in block.machines] == ["Monterrey 1", "Monterrey 2"]


def test_summary_without_records_raises():
    with pytest.raises(EmptyResultError):
        build_summary_report([], [JUAN], date(2024, 3, 4), date(2024, 3, 4))
