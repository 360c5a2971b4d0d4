from datetime import date, datetime
from typing import Any, Iterable, Tuple

from flask import current_app

from config.supabase_schema import (
    column_name,
    relation_name,
    rpc_name,
    select_columns,
    table_name,
    to_supabase_payload,
)

PAGE_SIZE = 1000
IN_CHUNK_SIZE = 1000


def _ensure_supabase_client() -> Tuple[Any, str | None]:
    """Return the configured Supabase client or an explanatory error.

    Returns:
        tuple: (client, error). When Supabase is unavailable the client will be
        ``None`` and ``error`` will contain a message explaining the failure.
    """

    supabase = current_app.config.get("SUPABASE")
    if not supabase or not hasattr(supabase, "table"):
        return None, (
            "Supabase client is not configured. Set SUPABASE_URL and SUPABASE_"
            "SERVICE_KEY to enable database access."
        )
    return supabase, None


def _normalize_date_for_query(value: date | datetime | str | None) -> str | None:
    """Return an ISO formatted date string for Supabase filters."""

    if not value:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _record_select() -> str:
    """PostgREST select for records with machine, operator and detail joins."""

    product = "{}({})".format(
        relation_name("production_details", "product"),
        select_columns(
            "products", "id", "name", "category", "product_type", "target", "target_8h", "target_10h"
        ),
    )
    details = "{}({},{})".format(
        relation_name("production_records", "details"),
        select_columns(
            "production_details", "id", "product_id", "produced", "percentage", "observations"
        ),
        product,
    )
    machine = "{}({})".format(
        relation_name("production_records", "machine"),
        select_columns("machines", "id", "name", "category"),
    )
    operator = "{}({})".format(
        relation_name("production_records", "operator"),
        select_columns("users", "id", "name", "cedula", "role"),
    )
    base = select_columns(
        "production_records",
        "id",
        "date",
        "shift",
        "machine_id",
        "operator_id",
        "is_assistant",
        "registered_at",
        "sequence_id",
    )
    return ",".join([base, machine, operator, details])


def _fetch_paginated_rows(query_factory, page_size: int = PAGE_SIZE) -> list[dict]:
    """Run ``query_factory()`` page by page until a short page is returned.

    Supabase caps responses to 1,000 rows by default, so the filtered query
    is rebuilt for every page with a new ``range``.
    """

    if page_size <= 0:
        raise ValueError("page_size must be greater than zero")

    rows: list[dict] = []
    offset = 0
    while True:
        response = query_factory().range(offset, offset + page_size - 1).execute()
        batch = response.data or []
        rows.extend(batch)
        if len(batch) < page_size:
            break
        offset += page_size
    return rows


def fetch_production_records(
    start_date: date | datetime | str | None = None,
    end_date: date | datetime | str | None = None,
    operator_id: Any = None,
) -> tuple[list[dict] | None, str | None]:
    """Return production records with their joins for a date range.

    Rows are ordered by date, shift and id and optionally limited to one
    operator.  Both roles are returned; callers filter assistant rows.
    """

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    start_value = _normalize_date_for_query(start_date)
    end_value = _normalize_date_for_query(end_date)
    date_column = column_name("production_records", "date")
    select = _record_select()

    def build_query():
        query = supabase.table(table_name("production_records")).select(select)
        if start_value:
            query = query.gte(date_column, start_value)
        if end_value:
            query = query.lte(date_column, end_value)
        if operator_id is not None:
            query = query.eq(column_name("production_records", "operator_id"), operator_id)
        # id breaks ties so pages stay disjoint
        return (
            query.order(date_column)
            .order(column_name("production_records", "shift"))
            .order(column_name("production_records", "id"))
        )

    try:
        return _fetch_paginated_rows(build_query), None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch production records: {exc}"


def fetch_record(record_id: Any) -> tuple[dict | None, str | None]:
    """Return a single production record with its joins."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = (
            supabase.table(table_name("production_records"))
            .select(_record_select())
            .eq(column_name("production_records", "id"), record_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch production record: {exc}"

    rows = response.data or []
    return (rows[0] if rows else None), None


def fetch_recent_records(limit: int = 18) -> tuple[list[dict] | None, str | None]:
    """Return the most recently registered records for the dashboard."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = (
            supabase.table(table_name("production_records"))
            .select(_record_select())
            .order(column_name("production_records", "registered_at"), desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or [], None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch recent records: {exc}"


def fetch_active_users(role: str | None = None) -> tuple[list[dict] | None, str | None]:
    """Return active users ordered by name, optionally for a single role.

    ``password_hash`` is never selected here.
    """

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        query = (
            supabase.table(table_name("users"))
            .select(select_columns("users", "id", "name", "cedula", "role", "active"))
            .eq(column_name("users", "active"), True)
        )
        if role:
            query = query.eq(column_name("users", "role"), role)
        response = query.order(column_name("users", "name")).execute()
        return response.data or [], None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch users: {exc}"


def fetch_user(user_id: Any) -> tuple[dict | None, str | None]:
    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = (
            supabase.table(table_name("users"))
            .select(select_columns("users", "id", "name", "cedula", "role", "active"))
            .eq(column_name("users", "id"), user_id)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch user: {exc}"

    rows = response.data or []
    return (rows[0] if rows else None), None


def _chunks(values: list, size: int) -> Iterable[list]:
    for index in range(0, len(values), size):
        yield values[index : index + size]


def fetch_assistants(
    record_ids: Iterable[Any],
) -> tuple[dict[str, list[tuple[Any, str]]] | None, str | None]:
    """Return ``{record_id: [(assistant_id, name), ...]}`` for ``record_ids``.

    Ids are sent in chunks so large ranges do not overflow the ``in``
    filter.
    """

    ids = [value for value in dict.fromkeys(record_ids) if value is not None]
    if not ids:
        return {}, None

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    record_column = column_name("record_assistants", "record_id")
    assistant_column = column_name("record_assistants", "assistant_id")
    select = "{},{},{}({})".format(
        record_column,
        assistant_column,
        relation_name("record_assistants", "assistant"),
        select_columns("users", "name"),
    )
    name_column = column_name("users", "name")

    assistants: dict[str, list[tuple[Any, str]]] = {}
    try:
        for chunk in _chunks(ids, IN_CHUNK_SIZE):
            response = (
                supabase.table(table_name("record_assistants"))
                .select(select)
                .in_(record_column, chunk)
                .execute()
            )
            for row in response.data or []:
                user = row.get("assistant") or {}
                if isinstance(user, list):
                    user = user[0] if user else {}
                name = user.get(name_column) or "N/A"
                assistants.setdefault(str(row.get(record_column)), []).append(
                    (row.get(assistant_column), name)
                )
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch record assistants: {exc}"
    return assistants, None


def fetch_user_for_auth(cedula: str) -> tuple[dict | None, str | None]:
    """Return the credential row for ``cedula`` through the auth procedure."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = supabase.rpc(rpc_name("user_for_auth"), {"p_cedula": cedula}).execute()
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to look up user: {exc}"

    data = response.data
    if isinstance(data, list):
        data = data[0] if data else None
    return data or None, None


def update_password_hash(user_id: Any, password_hash: str) -> tuple[list[dict] | None, str | None]:
    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        payload = to_supabase_payload("users", {"password_hash": password_hash})
        response = (
            supabase.table(table_name("users"))
            .update(payload)
            .eq(column_name("users", "id"), user_id)
            .execute()
        )
        return response.data, None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to update password: {exc}"


def lookup_compliance_by_cedula(
    cedula: str,
    start_date: date | datetime | str,
    end_date: date | datetime | str,
) -> tuple[list[dict] | None, str | None]:
    """Call the compliance-by-cedula procedure for a date range."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    params = {
        "cedula_operario": cedula,
        "fecha_inicio": _normalize_date_for_query(start_date),
        "fecha_fin": _normalize_date_for_query(end_date),
    }
    try:
        response = supabase.rpc(rpc_name("compliance_by_cedula"), params).execute()
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to look up compliance: {exc}"

    data = response.data
    if isinstance(data, dict):
        data = [data]
    return data or [], None


def count_rows(
    table: str, filters: dict[str, Any] | None = None
) -> tuple[int | None, str | None]:
    """Return the exact number of rows in ``table`` matching ``filters``.

    ``filters`` maps logical column names to values compared with ``eq``.
    """

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        query = supabase.table(table_name(table)).select(
            column_name(table, "id"), count="exact"
        )
        for key, value in (filters or {}).items():
            query = query.eq(column_name(table, key), value)
        response = query.execute()
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to count {table}: {exc}"

    count = getattr(response, "count", None)
    if count is None:
        count = len(response.data or [])
    return count, None
