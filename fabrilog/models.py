"""Typed records built from Supabase rows.

PostgREST join results arrive as loosely shaped nested dictionaries.  The
``from_row`` constructors below map configured column names back to logical
names, check the nested shapes and return frozen dataclasses so the metrics
and report code never has to guess whether a relation is a dict, a list or
missing.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Iterable, Mapping

from config.supabase_schema import from_supabase_row
from fabrilog.dates import parse_date
from fabrilog.errors import CollaboratorError

ROLE_OPERATOR = "operario"
ROLE_ADMIN = "admin"
ROLE_CLERK = "escribano"


def _safe_number(value) -> float | None:
    """Return ``value`` as a float when possible, otherwise ``None``."""

    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if text.endswith("%"):
            text = text[:-1]
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None

    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _relation(row: Mapping[str, Any], key: str, owner: str) -> Mapping[str, Any] | None:
    """Return an embedded one-to-one relation or ``None``.

    PostgREST returns a dict for many-to-one embeds but some views return a
    single-element list; both are accepted.
    """

    value = row.get(key)
    if value is None:
        return None
    if isinstance(value, list):
        if not value:
            return None
        value = value[0]
    if not isinstance(value, Mapping):
        raise CollaboratorError(f"{owner} has a malformed '{key}' relation.")
    return value


@dataclass(frozen=True)
class Product:
    id: Any
    name: str
    product_type: str | None = None
    category: str | None = None
    target: float | None = None
    target_8h: float | None = None
    target_10h: float | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Product":
        data = from_supabase_row("products", row)
        return cls(
            id=data.get("id"),
            name=_text(data.get("name")),
            product_type=data.get("product_type") or None,
            category=data.get("category") or None,
            target=_safe_number(data.get("target")),
            target_8h=_safe_number(data.get("target_8h")),
            target_10h=_safe_number(data.get("target_10h")),
        )


@dataclass(frozen=True)
class Machine:
    id: Any
    name: str
    category: str | None = None
    active: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Machine":
        data = from_supabase_row("machines", row)
        active = data.get("active")
        return cls(
            id=data.get("id"),
            name=_text(data.get("name")),
            category=_text(data.get("category")) or None,
            active=True if active is None else bool(active),
        )


@dataclass(frozen=True)
class User:
    id: Any
    name: str
    cedula: str = ""
    role: str | None = None
    active: bool = True

    @property
    def is_operator(self) -> bool:
        return self.role == ROLE_OPERATOR

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        data = from_supabase_row("users", row)
        active = data.get("active")
        return cls(
            id=data.get("id"),
            name=_text(data.get("name")),
            cedula=_text(data.get("cedula")),
            role=_text(data.get("role")).lower() or None,
            active=True if active is None else bool(active),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cedula": self.cedula,
            "role": self.role,
            "active": self.active,
        }


@dataclass(frozen=True)
class ProductionDetail:
    id: Any = None
    product: Product | None = None
    produced: float = 0.0
    stored_percentage: float | None = None
    observations: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProductionDetail":
        if not isinstance(row, Mapping):
            raise CollaboratorError("Production detail rows must be objects.")
        data = from_supabase_row("production_details", row)
        product_row = _relation(data, "product", "Production detail")
        return cls(
            id=data.get("id"),
            product=Product.from_row(product_row) if product_row else None,
            produced=_safe_number(data.get("produced")) or 0.0,
            stored_percentage=_safe_number(data.get("percentage")),
            observations=_text(data.get("observations")),
        )


@dataclass(frozen=True)
class ProductionRecord:
    """One shift submission by an operator on one machine."""

    id: Any
    date: date
    shift: str = ""
    operator_id: Any = None
    machine: Machine | None = None
    operator: User | None = None
    is_assistant: bool = False
    details: tuple[ProductionDetail, ...] = ()
    assistant_ids: tuple[Any, ...] = ()
    assistant_names: tuple[str, ...] = ()
    sequence_id: Any = None
    registered_at: str | None = None

    @property
    def category(self) -> str | None:
        return self.machine.category if self.machine else None

    @property
    def machine_name(self) -> str | None:
        return self.machine.name if self.machine else None

    @property
    def operator_name(self) -> str | None:
        return self.operator.name if self.operator else None

    def with_assistants(self, assistants: Iterable[tuple[Any, str]]) -> "ProductionRecord":
        pairs = list(assistants)
        return replace(
            self,
            assistant_ids=tuple(assistant_id for assistant_id, _ in pairs),
            assistant_names=tuple(name for _, name in pairs if name),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProductionRecord":
        if not isinstance(row, Mapping):
            raise CollaboratorError("Production record rows must be objects.")
        data = from_supabase_row("production_records", row)

        record_id = data.get("id")
        if record_id in (None, ""):
            raise CollaboratorError("Production record is missing its id.")
        record_date = parse_date(data.get("date"))
        if record_date is None:
            raise CollaboratorError(f"Production record {record_id} has no valid date.")

        machine_row = _relation(data, "machine", f"Record {record_id}")
        operator_row = _relation(data, "operator", f"Record {record_id}")
        raw_details = data.get("details") or []
        if isinstance(raw_details, Mapping):
            raw_details = [raw_details]
        if not isinstance(raw_details, list):
            raise CollaboratorError(f"Record {record_id} has malformed detail lines.")

        operator = User.from_row(operator_row) if operator_row else None
        operator_id = data.get("operator_id")
        if operator_id is None and operator is not None:
            operator_id = operator.id

        return cls(
            id=record_id,
            date=record_date,
            shift=_text(data.get("shift")),
            operator_id=operator_id,
            machine=Machine.from_row(machine_row) if machine_row else None,
            operator=operator,
            is_assistant=bool(data.get("is_assistant")),
            details=tuple(ProductionDetail.from_row(item) for item in raw_details),
            sequence_id=data.get("sequence_id"),
            registered_at=data.get("registered_at"),
        )


def records_from_rows(rows: Iterable[Mapping[str, Any]] | None) -> list[ProductionRecord]:
    """Build :class:`ProductionRecord` objects for every row in ``rows``."""

    return [ProductionRecord.from_row(row) for row in rows or []]


@dataclass(frozen=True)
class ComplianceLookup:
    """Row returned by the compliance-by-cedula procedure."""

    name: str
    cedula: str
    start: date | None
    end: date | None
    percentage: float
    working_days: int
    days_with_production: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ComplianceLookup":
        if not isinstance(row, Mapping):
            raise CollaboratorError("Compliance lookup rows must be objects.")
        return cls(
            name=_text(row.get("nombre")),
            cedula=_text(row.get("cedula")),
            start=parse_date(row.get("fecha_inicio_periodo")),
            end=parse_date(row.get("fecha_fin_periodo")),
            percentage=_safe_number(row.get("porcentaje_cumplimiento")) or 0.0,
            working_days=int(_safe_number(row.get("dias_laborales")) or 0),
            days_with_production=int(_safe_number(row.get("dias_con_produccion")) or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "cedula": self.cedula,
            "start_date": self.start.isoformat() if self.start else None,
            "end_date": self.end.isoformat() if self.end else None,
            "percentage": round(self.percentage, 2),
            "working_days": self.working_days,
            "days_with_production": self.days_with_production,
        }
