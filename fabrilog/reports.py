"""Group production records into the rows behind the spreadsheet exports.

Three reports are built here:

* the machine report, one bucket per machine category with zero-filled
  placeholder rows for idle days;
* the area production report, the flat 17 column layout bucketed into the
  plant areas plus a consolidated sheet;
* the payroll summary, one row per employee with operator and assistant
  blocks per category.

All functions work on already fetched :class:`ProductionRecord` objects and
raise :class:`EmptyResultError` instead of producing an empty document.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Sequence

from fabrilog.dates import count_working_days, format_display_date, iter_dates
from fabrilog.errors import EmptyResultError
from fabrilog.models import ProductionDetail, ProductionRecord, User
from fabrilog.targets import line_percentage, resolve_target, shift_label

NO_CATEGORY = "Sin Categoría"
NO_SHIFT = "Sin turno"
NO_ASSISTANT = "Sin asistente"
NO_MACHINE = "Sin máquina"
NO_PRODUCT = "Sin producto"
NOT_AVAILABLE = "N/A"

AREA_MONTERREY = "MONTERREY"
AREA_FOUR_HEADS = "4 CABEZAS"
AREA_TYING = "AMARRADORAS"
AREAS = (AREA_MONTERREY, AREA_FOUR_HEADS, AREA_TYING)

ROLE_PRIMARY_LABEL = "Operario Principal"
ROLE_ASSISTANT_LABEL = "Asistente"


def _sort_key(text: str | None) -> str:
    return (text or "").casefold()


def report_percentage(detail: ProductionDetail, shift: str | None) -> tuple[float, float]:
    """Return ``(target, percentage)`` for a detail line on a report.

    Reports recompute the percentage from the configured target; when no
    target is configured they show the percentage stored with the record.
    """

    target = resolve_target(detail.product, shift)
    if target > 0:
        return target, line_percentage(detail.produced, target)
    return 0.0, detail.stored_percentage or 0.0


@dataclass(frozen=True)
class MachineReportRow:
    day: date
    shift: str
    operator: str
    assistant: str
    machine: str
    product: str
    produced: float
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": format_display_date(self.day),
            "shift": self.shift,
            "operator": self.operator,
            "assistant": self.assistant,
            "machine": self.machine,
            "product": self.product,
            "produced": self.produced,
            "percentage": round(self.percentage, 2),
        }


@dataclass
class Bucket:
    """Named group of report rows, rendered as one worksheet."""

    name: str
    rows: list = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "rows": [row.to_dict() for row in self.rows]}


def _ensure_records(records: Sequence[ProductionRecord]) -> None:
    if not records:
        raise EmptyResultError()


def _operator_roster(
    operators: Iterable[User], records: Sequence[ProductionRecord]
) -> list[User]:
    """Active operators plus anyone who submitted a record in the range."""

    roster: dict[str, User] = {str(user.id): user for user in operators}
    for record in records:
        key = str(record.operator_id)
        if record.operator_id is None or key in roster:
            continue
        roster[key] = record.operator or User(id=record.operator_id, name=NOT_AVAILABLE)
    return list(roster.values())


def build_machine_report(
    records: Sequence[ProductionRecord],
    operators: Iterable[User],
    start: date,
    end: date,
    category: str | None = None,
) -> list[Bucket]:
    """Return per-category buckets of :class:`MachineReportRow`.

    Every calendar day in the range is visited for every operator.  Days on
    which an operator has no primary record produce a ``Sin turno``
    placeholder row in each category the operator worked in during the
    range.  Buckets are sorted by name; rows by date then operator name.
    """

    _ensure_records(records)

    primary: dict[tuple[str, date], list[ProductionRecord]] = defaultdict(list)
    categories_by_operator: dict[str, set[str]] = defaultdict(set)
    for record in records:
        if record.is_assistant or not start <= record.date <= end:
            continue
        key = str(record.operator_id)
        primary[(key, record.date)].append(record)
        categories_by_operator[key].add(record.category or NO_CATEGORY)

    buckets: dict[str, list[MachineReportRow]] = defaultdict(list)
    for operator in _operator_roster(operators, records):
        key = str(operator.id)
        operator_categories = categories_by_operator.get(key)
        if not operator_categories:
            continue
        for day in iter_dates(start, end):
            day_records = primary.get((key, day))
            if not day_records:
                for name in operator_categories:
                    buckets[name].append(
                        MachineReportRow(
                            day=day,
                            shift=NO_SHIFT,
                            operator=operator.name,
                            assistant=NO_ASSISTANT,
                            machine=NO_MACHINE,
                            product=NO_PRODUCT,
                            produced=0,
                            percentage=0,
                        )
                    )
                continue

            for record in day_records:
                rows = buckets[record.category or NO_CATEGORY]
                assistant = ", ".join(record.assistant_names) or NO_ASSISTANT
                machine = record.machine_name or NOT_AVAILABLE
                if not record.details:
                    rows.append(
                        MachineReportRow(
                            day=day,
                            shift=shift_label(record.shift),
                            operator=operator.name,
                            assistant=assistant,
                            machine=machine,
                            product=NO_PRODUCT,
                            produced=0,
                            percentage=0,
                        )
                    )
                    continue
                for detail in record.details:
                    _, percentage = report_percentage(detail, record.shift)
                    rows.append(
                        MachineReportRow(
                            day=day,
                            shift=shift_label(record.shift),
                            operator=operator.name,
                            assistant=assistant,
                            machine=machine,
                            product=detail.product.name if detail.product else NOT_AVAILABLE,
                            produced=detail.produced,
                            percentage=percentage,
                        )
                    )

    result = []
    for name in sorted(buckets, key=_sort_key):
        if category and name != category:
            continue
        rows = sorted(buckets[name], key=lambda row: (row.day, _sort_key(row.operator)))
        if rows:
            result.append(Bucket(name=name, rows=rows))
    if not result:
        raise EmptyResultError()
    return result


def group_rows_by_machine(rows: Iterable[MachineReportRow]) -> list[Bucket]:
    """Regroup machine report rows into one bucket per machine."""

    grouped: dict[str, list[MachineReportRow]] = defaultdict(list)
    for row in rows:
        grouped[row.machine or NOT_AVAILABLE].append(row)
    return [
        Bucket(
            name=name,
            rows=sorted(grouped[name], key=lambda row: (row.day, _sort_key(row.operator))),
        )
        for name in sorted(grouped, key=_sort_key)
    ]


# ---------------------------------------------------------------------------
# Area production report


@dataclass(frozen=True)
class ProductionRow:
    day: date
    shift: str
    operator: str
    role: str
    machine: str
    reference: str
    quantity: float = 0
    quantity_in_festoons: float = 0
    festoon_target: float = 0
    percentage: float = 0
    daily_percentage: float = 0
    wire_weight_kg: float = 0
    wire_waste_kg: float = 0
    wire_gauge: str = NOT_AVAILABLE
    pvc_waste: float = 0
    tape_weight: float = 0
    observations: str = ""

    def values(self) -> list[Any]:
        return [
            self.day,
            self.shift,
            self.operator,
            self.role,
            self.machine,
            self.reference,
            self.quantity,
            self.quantity_in_festoons,
            self.festoon_target,
            self.percentage,
            self.daily_percentage,
            self.wire_weight_kg,
            self.wire_waste_kg,
            self.wire_gauge,
            self.pvc_waste,
            self.tape_weight,
            self.observations,
        ]


@dataclass
class ProductionReport:
    areas: list[Bucket]
    data: list[ProductionRow]


def area_for_machine(machine_name: str | None) -> str:
    name = (machine_name or "").lower()
    if "4" in name or "cabeza" in name:
        return AREA_FOUR_HEADS
    if "amarr" in name:
        return AREA_TYING
    return AREA_MONTERREY


def _daily_sums(records: Sequence[ProductionRecord]) -> dict[tuple[str, date], float]:
    sums: dict[tuple[str, date], float] = defaultdict(float)
    for record in records:
        if record.is_assistant:
            continue
        key = (str(record.operator_id), record.date)
        for detail in record.details:
            sums[key] += report_percentage(detail, record.shift)[1]
    return sums


def flatten_production_rows(records: Sequence[ProductionRecord]) -> list[ProductionRow]:
    """Return one row per detail line, or a placeholder for empty records."""

    sums = _daily_sums(records)
    rows: list[ProductionRow] = []
    ordered = sorted(records, key=lambda record: (record.date, record.shift))
    for record in ordered:
        common = {
            "day": record.date,
            "shift": shift_label(record.shift),
            "operator": record.operator_name or NOT_AVAILABLE,
            "role": ROLE_ASSISTANT_LABEL if record.is_assistant else ROLE_PRIMARY_LABEL,
            "machine": record.machine_name or NOT_AVAILABLE,
        }
        if not record.details:
            rows.append(
                ProductionRow(
                    reference="Sin productos",
                    observations="Sin detalles de producción",
                    **common,
                )
            )
            continue

        daily = 0.0 if record.is_assistant else sums[(str(record.operator_id), record.date)]
        for detail in record.details:
            target, percentage = report_percentage(detail, record.shift)
            rows.append(
                ProductionRow(
                    reference=detail.product.name if detail.product else NOT_AVAILABLE,
                    quantity=detail.produced,
                    quantity_in_festoons=detail.produced,
                    festoon_target=target,
                    percentage=percentage,
                    daily_percentage=daily,
                    observations=detail.observations,
                    **common,
                )
            )
    return rows


def build_production_report(
    records: Sequence[ProductionRecord],
    areas: Iterable[str] | None = None,
) -> ProductionReport:
    """Bucket flattened rows by plant area; ``areas`` limits the area sheets."""

    _ensure_records(records)
    rows = flatten_production_rows(records)
    wanted = set(areas) if areas else None

    by_area: dict[str, list[ProductionRow]] = {name: [] for name in AREAS}
    for row in rows:
        by_area[area_for_machine(row.machine)].append(row)

    buckets = [
        Bucket(name=name, rows=by_area[name])
        for name in AREAS
        if wanted is None or name in wanted
    ]
    return ProductionReport(areas=buckets, data=rows)


# ---------------------------------------------------------------------------
# Payroll summary


@dataclass(frozen=True)
class MachineSummary:
    name: str
    percentage: float
    days: int
    observations: str


@dataclass(frozen=True)
class BlockData:
    percentage: float = 0.0
    days: int = 0
    observations: str = ""
    machines: tuple[MachineSummary, ...] = ()


@dataclass(frozen=True)
class CategoryBlock:
    category: str
    operator: BlockData
    assistant: BlockData


@dataclass(frozen=True)
class EmployeeSummary:
    id: Any
    name: str
    days_to_work: int
    blocks: tuple[CategoryBlock, ...] = ()

    def block(self, category: str) -> CategoryBlock | None:
        for block in self.blocks:
            if block.category == category:
                return block
        return None


@dataclass
class SummaryReport:
    categories: list[str]
    employees: list[EmployeeSummary]


def _join_observations(values: Iterable[str]) -> str:
    seen: list[str] = []
    for value in values:
        text = (value or "").strip()
        if text and text not in seen:
            seen.append(text)
    return " | ".join(seen)


def _machine_breakdown(records: Sequence[ProductionRecord]) -> tuple[MachineSummary, ...]:
    sums: dict[str, dict[date, float]] = defaultdict(dict)
    notes: dict[str, list[str]] = defaultdict(list)
    for record in records:
        if not record.details:
            continue
        name = record.machine_name or NO_MACHINE
        day_sums = sums[name]
        day_sums.setdefault(record.date, 0.0)
        for detail in record.details:
            day_sums[record.date] += report_percentage(detail, record.shift)[1]
            notes[name].append(detail.observations)

    machines = []
    for name in sorted(sums, key=_sort_key):
        day_sums = sums[name]
        average = sum(day_sums.values()) / len(day_sums) if day_sums else 0.0
        machines.append(
            MachineSummary(
                name=name,
                percentage=round(average, 1),
                days=len(day_sums),
                observations=_join_observations(notes[name]),
            )
        )
    return tuple(machines)


def build_block(records: Sequence[ProductionRecord], as_assistant: bool) -> BlockData:
    """Aggregate one employee's records for a category block.

    Operator blocks average the daily percentage sums.  Assistant blocks
    first divide each day's sum by the number of machines assisted that day.
    """

    day_sums: dict[date, float] = {}
    day_machines: dict[date, set[str]] = defaultdict(set)
    notes: list[str] = []
    for record in records:
        if not record.details:
            continue
        day_sums.setdefault(record.date, 0.0)
        day_machines[record.date].add(record.machine_name or NO_MACHINE)
        for detail in record.details:
            day_sums[record.date] += report_percentage(detail, record.shift)[1]
            notes.append(detail.observations)

    if not day_sums:
        return BlockData()

    if as_assistant:
        total = sum(value / (len(day_machines[day]) or 1) for day, value in day_sums.items())
    else:
        total = sum(day_sums.values())

    return BlockData(
        percentage=round(total / len(day_sums), 1),
        days=len(day_sums),
        observations=_join_observations(notes),
        machines=_machine_breakdown(records),
    )


def build_summary_report(
    records: Sequence[ProductionRecord],
    employees: Iterable[User],
    start: date,
    end: date,
) -> SummaryReport:
    """Return the payroll summary for every active employee."""

    _ensure_records(records)
    categories = sorted(
        {record.category for record in records if record.category}, key=_sort_key
    )
    days_to_work = count_working_days(start, end)

    summaries = []
    for employee in sorted(employees, key=lambda user: _sort_key(user.name)):
        key = str(employee.id)
        as_operator = [
            record
            for record in records
            if str(record.operator_id) == key and not record.is_assistant
        ]
        as_assistant = [
            record
            for record in records
            if key in {str(value) for value in record.assistant_ids}
            or (str(record.operator_id) == key and record.is_assistant)
        ]

        blocks = []
        for category in categories:
            operator_block = build_block(
                [record for record in as_operator if record.category == category], False
            )
            assistant_block = build_block(
                [record for record in as_assistant if record.category == category], True
            )
            if operator_block.days or assistant_block.days:
                blocks.append(CategoryBlock(category, operator_block, assistant_block))

        summaries.append(
            EmployeeSummary(
                id=employee.id,
                name=employee.name,
                days_to_work=days_to_work,
                blocks=tuple(blocks),
            )
        )
    return SummaryReport(categories=categories, employees=summaries)
