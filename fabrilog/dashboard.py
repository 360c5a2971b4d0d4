"""Dashboard snapshot assembled from counts and recent production."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from fabrilog import db
from fabrilog.compliance import dashboard_average
from fabrilog.errors import CollaboratorError
from fabrilog.models import ProductionRecord, records_from_rows
from fabrilog.reports import NOT_AVAILABLE
from fabrilog.targets import shift_label, to_pct100

RECENT_LIMIT = 18


def _unwrap(result: tuple[Any, str | None]):
    data, error = result
    if error:
        raise CollaboratorError(error)
    return data


@dataclass
class DashboardSnapshot:
    start: date
    end: date
    total_records: int = 0
    average_compliance: float = 0.0
    active_machines: int = 0
    active_users: int = 0
    records_today: int = 0
    production_today: float = 0.0
    recent: list[ProductionRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
            "total_records": self.total_records,
            "average_compliance": round(self.average_compliance, 2),
            "active_machines": self.active_machines,
            "active_users": self.active_users,
            "records_today": self.records_today,
            "production_today": self.production_today,
            "recent": [_recent_entry(record) for record in self.recent],
        }


def _recent_entry(record: ProductionRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "date": record.date.isoformat(),
        "shift": shift_label(record.shift),
        "machine": record.machine_name or NOT_AVAILABLE,
        "operator": record.operator_name or NOT_AVAILABLE,
        "is_assistant": record.is_assistant,
        "products": [
            {
                "name": detail.product.name if detail.product else NOT_AVAILABLE,
                "produced": detail.produced,
                "percentage": round(to_pct100(detail.stored_percentage), 2),
            }
            for detail in record.details
        ],
    }


def report_timezone():
    """Return the timezone used to decide what "today" is.

    Prefers the configured ``LOCAL_TIMEZONE`` (defaulting to America/Bogota)
    and falls back to UTC if the zone cannot be loaded.
    """

    tz_name = current_app.config.get("LOCAL_TIMEZONE") or "America/Bogota"
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        current_app.logger.warning(
            "Timezone %s unavailable; falling back to UTC", tz_name
        )
    except Exception as exc:  # pragma: no cover - unexpected zoneinfo failures
        current_app.logger.warning(
            "Error loading timezone %s: %s; falling back to UTC", tz_name, exc
        )
    return timezone.utc


def local_today() -> date:
    return datetime.now(report_timezone()).date()


def load_dashboard(start: date, end: date, today: date) -> DashboardSnapshot:
    """Fetch everything the dashboard shows for ``start``..``end``.

    Raises:
        CollaboratorError: when any database call fails.
    """

    total = _unwrap(db.count_rows("production_records"))
    machines = _unwrap(db.count_rows("machines", {"active": True}))
    users = _unwrap(db.count_rows("users", {"active": True}))
    in_range = records_from_rows(_unwrap(db.fetch_production_records(start, end)))
    todays = [record for record in in_range if record.date == today]
    if not start <= today <= end:
        todays = records_from_rows(_unwrap(db.fetch_production_records(today, today)))
    recent = records_from_rows(_unwrap(db.fetch_recent_records(RECENT_LIMIT)))

    return DashboardSnapshot(
        start=start,
        end=end,
        total_records=total or 0,
        average_compliance=dashboard_average(in_range, start, end),
        active_machines=machines or 0,
        active_users=users or 0,
        records_today=len(todays),
        production_today=sum(
            detail.produced for record in todays for detail in record.details
        ),
        recent=recent,
    )
