"""Centralised Supabase table, column and RPC configuration.

The application reads from a handful of Supabase/PostgREST tables whose
identifiers are in Spanish (``registros_produccion``, ``detalle_produccion``
and so on).  Code refers to tables, columns and embedded relations through
logical English identifiers; this module maps them to the deployed names so
that a deployment can rename objects without touching application logic.
When a mapping for a particular table or column is not present the helper
functions fall back to the identifier supplied by the caller.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping


@dataclass(frozen=True)
class SupabaseTable:
    """Configuration for a Supabase table."""

    name: str
    columns: Mapping[str, str] = field(default_factory=dict)
    relations: Mapping[str, str] = field(default_factory=dict)


# Default table and column mappings. These act as fallbacks if no environment
# overrides are supplied.
_DEFAULT_SUPABASE_SCHEMA: Dict[str, SupabaseTable] = {
    "users": SupabaseTable(
        name="usuarios",
        columns={
            "id": "id",
            "name": "nombre",
            "cedula": "cedula",
            "role": "tipo_usuario",
            "active": "activo",
            "password_hash": "password_hash",
            "created_at": "fecha_creacion",
        },
    ),
    "machines": SupabaseTable(
        name="maquinas",
        columns={
            "id": "id",
            "name": "nombre",
            "category": "categoria",
            "description": "descripcion",
            "active": "activa",
        },
    ),
    "products": SupabaseTable(
        name="productos",
        columns={
            "id": "id",
            "name": "nombre",
            "category": "categoria",
            "product_type": "tipo_producto",
            "design_id": "diseno_id",
            "target": "tope",
            "target_8h": "tope_jornada_8h",
            "target_10h": "tope_jornada_10h",
            "active": "activo",
        },
    ),
    "production_records": SupabaseTable(
        name="registros_produccion",
        columns={
            "id": "id",
            "date": "fecha",
            "shift": "turno",
            "machine_id": "maquina_id",
            "operator_id": "operario_id",
            "is_assistant": "es_asistente",
            "registered_at": "fecha_registro",
            "sequence_id": "id_consecutivo",
        },
        relations={
            "machine": "maquinas!fk_registros_produccion_maquina",
            "operator": "usuarios!fk_registros_produccion_operario",
            "details": "detalle_produccion!fk_detalle_produccion_registro",
        },
    ),
    "production_details": SupabaseTable(
        name="detalle_produccion",
        columns={
            "id": "id",
            "record_id": "registro_id",
            "product_id": "producto_id",
            "produced": "produccion_real",
            "percentage": "porcentaje_cumplimiento",
            "observations": "observaciones",
        },
        relations={
            "product": "productos!fk_detalle_produccion_producto",
        },
    ),
    "record_assistants": SupabaseTable(
        name="registro_asistentes",
        columns={
            "id": "id",
            "record_id": "registro_id",
            "assistant_id": "asistente_id",
        },
        relations={
            "assistant": "usuarios!fk_registro_asistentes_asistente",
        },
    ),
}


# Remote procedures exposed by the database.
_DEFAULT_SUPABASE_RPCS: Dict[str, str] = {
    "user_for_auth": "get_user_for_auth",
    "compliance_by_cedula": "consultar_cumplimiento_operario",
}


def _normalise_columns(columns: Any) -> Dict[str, str]:
    """Return a string-to-string column mapping from ``columns``."""

    if not isinstance(columns, Mapping):
        return {}
    return {
        str(logical): str(actual)
        for logical, actual in columns.items()
        if isinstance(logical, str) and isinstance(actual, str)
    }


def _load_schema_from_env() -> Dict[str, SupabaseTable]:
    """Build the Supabase schema from environment overrides."""

    schema = dict(_DEFAULT_SUPABASE_SCHEMA)

    raw_schema = os.getenv("SUPABASE_SCHEMA_JSON")
    if not raw_schema:
        return schema

    try:
        parsed = json.loads(raw_schema)
    except json.JSONDecodeError:
        return schema

    if not isinstance(parsed, Mapping):
        return schema

    for identifier, entry in parsed.items():
        if not isinstance(identifier, str) or not isinstance(entry, Mapping):
            continue

        name = entry.get("name")
        if not isinstance(name, str) or not name:
            continue

        default = _DEFAULT_SUPABASE_SCHEMA.get(identifier)
        columns = dict(default.columns) if default else {}
        columns.update(_normalise_columns(entry.get("columns", {})))
        relations = dict(default.relations) if default else {}
        relations.update(_normalise_columns(entry.get("relations", {})))
        schema[identifier] = SupabaseTable(
            name=name, columns=columns, relations=relations
        )

    return schema


SUPABASE_SCHEMA: Dict[str, SupabaseTable] = _load_schema_from_env()


def table_name(identifier: str) -> str:
    """Return the configured Supabase table name for ``identifier``."""

    table = SUPABASE_SCHEMA.get(identifier)
    if table:
        return table.name
    return identifier


def column_name(table_identifier: str, column_identifier: str) -> str:
    """Return the configured column name for ``table_identifier``."""

    table = SUPABASE_SCHEMA.get(table_identifier)
    if table and column_identifier in table.columns:
        return table.columns[column_identifier]
    return column_identifier


def table_columns(table_identifier: str) -> Mapping[str, str]:
    """Return the configured column mapping for ``table_identifier``."""

    table = SUPABASE_SCHEMA.get(table_identifier)
    if table:
        return table.columns
    return {}


def relation_name(table_identifier: str, relation_identifier: str) -> str:
    """Return the PostgREST embed expression for a relation of a table.

    The expression is aliased with the logical relation identifier so that
    embedded rows come back keyed by ``relation_identifier``.
    """

    table = SUPABASE_SCHEMA.get(table_identifier)
    target = relation_identifier
    if table and relation_identifier in table.relations:
        target = table.relations[relation_identifier]
    return f"{relation_identifier}:{target}"


def select_columns(table_identifier: str, *logical: str) -> str:
    """Return a comma separated list of actual column names."""

    return ",".join(column_name(table_identifier, name) for name in logical)


def rpc_name(identifier: str) -> str:
    """Return the configured name of a database remote procedure."""

    return _DEFAULT_SUPABASE_RPCS.get(identifier, identifier)


def to_supabase_payload(
    table_identifier: str, payload: Mapping[str, Any]
) -> Dict[str, Any]:
    """Return ``payload`` with keys mapped to Supabase column names."""

    columns = table_columns(table_identifier)
    if not columns:
        return dict(payload)
    return {columns.get(key, key): value for key, value in payload.items()}


def from_supabase_row(
    table_identifier: str, row: Mapping[str, Any] | None
) -> Dict[str, Any]:
    """Return ``row`` with Supabase column names mapped to logical names.

    Keys without a configured mapping (for example embedded relations) are
    kept as they are.
    """

    if not row:
        return {}
    reverse = {actual: logical for logical, actual in table_columns(table_identifier).items()}
    return {reverse.get(key, key): value for key, value in row.items()}
