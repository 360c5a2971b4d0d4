"""openpyxl serialisation of the production reports."""
from __future__ import annotations

import io
import re
from datetime import date
from typing import Iterable, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.page import PageMargins
from openpyxl.worksheet.properties import PageSetupProperties

from fabrilog.dates import compact_date
from fabrilog.reports import (
    Bucket,
    MachineReportRow,
    ProductionReport,
    ProductionRow,
    SummaryReport,
)

SHEET_TITLE_LIMIT = 31
DATA_SHEET_TITLE = "DATA"
SUMMARY_SHEET_TITLE = "Resumen Producción"

MACHINE_HEADERS = (
    "Fecha",
    "Turno",
    "Operario",
    "Asistente",
    "Máquina",
    "Producto",
    "Producido",
    "% Cumplimiento",
)
MACHINE_WIDTHS = (12, 15, 20, 25, 20, 25, 12, 15)

PRODUCTION_HEADERS = (
    "FECHA",
    "TURNO",
    "OPERARIO",
    "SECCIONADOR, CORTADOR, PEINADOR",
    "MÁQUINA",
    "REFERENCIA",
    "CANTIDAD",
    "CANTIDAD EN FESTONES",
    "META EN FESTONES",
    "% PORCENTAJE DE CUMPLIMIENTO",
    "SUMA % DE CUMPLIMIENTO",
    "PESO ALAMBRE (KG)",
    "DESPERDICIO ALAMBRE (KG)",
    "CALIBRE DEL ALAMBRE",
    "DESPERDICIO PVC RIPIO",
    "PESO CINTA",
    "OBSERVACIONES",
)
PRODUCTION_WIDTHS = (12, 18, 20, 25, 15, 20, 12, 18, 18, 20, 22, 18, 22, 20, 20, 15, 20)
PRODUCTION_NUMBER_COLUMNS = (6, 7, 8, 11, 12, 14, 15)
PRODUCTION_PERCENT_COLUMNS = (9, 10)

SUMMARY_FIXED_HEADERS = ("NOMBRE", "DIAS X LABORAR", "DIAS REAL LABORADOS", "BONO TOTAL")
SUMMARY_FIXED_WIDTHS = (25, 15, 18, 12)
SUMMARY_BLOCK_WIDTHS = (8, 8, 30)
SUMMARY_BLOCK_SUBHEADERS = ("%", "DÍAS", "OBSERVACIONES")

DATE_FORMAT = "dd/mm/yyyy"
NUMBER_FORMAT = "0.00"
PERCENT_FORMAT = "0.00%"
SHORT_PERCENT_FORMAT = "0.0%"

MACHINE_HEADER_COLOR = "366092"
PRODUCTION_HEADER_COLOR = "4472C4"
DATA_BORDER_COLOR = "D0D0D0"

_THIN_BLACK = Side(style="thin", color="000000")
_THIN_GREY = Side(style="thin", color=DATA_BORDER_COLOR)
HEADER_BORDER = Border(left=_THIN_BLACK, right=_THIN_BLACK, top=_THIN_BLACK, bottom=_THIN_BLACK)
DATA_BORDER = Border(left=_THIN_GREY, right=_THIN_GREY, top=_THIN_GREY, bottom=_THIN_GREY)
CENTER = Alignment(horizontal="center", vertical="center", wrap_text=True)

_FORBIDDEN_TITLE_CHARS = re.compile(r"[\[\]:*?/\\]")


def _header_style(color: str) -> dict:
    return {
        "font": Font(bold=True, color="FFFFFF"),
        "fill": PatternFill(start_color=color, end_color=color, fill_type="solid"),
        "alignment": CENTER,
        "border": HEADER_BORDER,
    }


def _apply(cell, style: dict) -> None:
    for attribute, value in style.items():
        setattr(cell, attribute, value)


def sheet_title(name: str | None, used: set[str]) -> str:
    """Return a valid, unique worksheet title for ``name``.

    Characters the format forbids are replaced, titles are cut to 31
    characters, and clashes get a numeric suffix.  ``used`` is updated.
    """

    base = _FORBIDDEN_TITLE_CHARS.sub("-", (name or "").strip()).strip("'") or "Hoja"
    title = base[:SHEET_TITLE_LIMIT]
    counter = 2
    while title.casefold() in used:
        suffix = f" ({counter})"
        title = base[: SHEET_TITLE_LIMIT - len(suffix)] + suffix
        counter += 1
    used.add(title.casefold())
    return title


def configure_print(worksheet, header_rows: int = 1) -> None:
    """Landscape letter pages, fit to width, repeated header rows."""

    worksheet.page_setup.orientation = "landscape"
    worksheet.page_setup.paperSize = worksheet.PAPERSIZE_LETTER
    worksheet.page_setup.fitToWidth = 1
    worksheet.page_setup.fitToHeight = 0
    worksheet.sheet_properties.pageSetUpPr = PageSetupProperties(fitToPage=True)
    worksheet.page_margins = PageMargins(
        left=0.25, right=0.25, top=0.25, bottom=0.25, header=0.3, footer=0.3
    )
    worksheet.print_title_rows = f"1:{header_rows}"


def _set_widths(worksheet, widths: Iterable[int]) -> None:
    for index, width in enumerate(widths, start=1):
        worksheet.column_dimensions[get_column_letter(index)].width = width


def _write_header(worksheet, headers: Sequence[str], color: str) -> None:
    style = _header_style(color)
    worksheet.append(list(headers))
    for cell in worksheet[1]:
        _apply(cell, style)


def _save(workbook: Workbook) -> bytes:
    for worksheet in workbook.worksheets:
        configure_print(worksheet)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Machine report


def _machine_sheet(workbook: Workbook, title: str, rows: Sequence[MachineReportRow]) -> None:
    worksheet = workbook.create_sheet(title)
    _write_header(worksheet, MACHINE_HEADERS, MACHINE_HEADER_COLOR)
    _set_widths(worksheet, MACHINE_WIDTHS)
    for row in rows:
        worksheet.append(
            [
                row.day,
                row.shift,
                row.operator,
                row.assistant,
                row.machine,
                row.product,
                row.produced,
                (row.percentage or 0) / 100,
            ]
        )
        for cell in worksheet[worksheet.max_row]:
            cell.border = DATA_BORDER
        worksheet.cell(row=worksheet.max_row, column=1).number_format = DATE_FORMAT
        worksheet.cell(row=worksheet.max_row, column=8).number_format = PERCENT_FORMAT


def machine_report_workbook(buckets: Sequence[Bucket]) -> bytes:
    """One sheet per bucket plus a consolidated ``DATA`` sheet."""

    workbook = Workbook()
    workbook.remove(workbook.active)
    used: set[str] = {DATA_SHEET_TITLE.casefold()}
    all_rows: list[MachineReportRow] = []
    for bucket in buckets:
        if not bucket.rows:
            continue
        _machine_sheet(workbook, sheet_title(bucket.name, used), bucket.rows)
        all_rows.extend(bucket.rows)
    _machine_sheet(workbook, DATA_SHEET_TITLE, all_rows)
    return _save(workbook)


# ---------------------------------------------------------------------------
# Area production report


def _production_sheet(workbook: Workbook, title: str, rows: Sequence[ProductionRow]) -> None:
    worksheet = workbook.create_sheet(title)
    _write_header(worksheet, PRODUCTION_HEADERS, PRODUCTION_HEADER_COLOR)
    _set_widths(worksheet, PRODUCTION_WIDTHS)

    for row in rows:
        values = row.values()
        for index in PRODUCTION_PERCENT_COLUMNS:
            values[index] = (values[index] or 0) / 100
        worksheet.append(values)
        cells = worksheet[worksheet.max_row]
        for index, cell in enumerate(cells):
            cell.border = DATA_BORDER
            if index == 0:
                cell.number_format = DATE_FORMAT
            elif index in PRODUCTION_NUMBER_COLUMNS:
                cell.number_format = NUMBER_FORMAT
            elif index in PRODUCTION_PERCENT_COLUMNS:
                cell.number_format = PERCENT_FORMAT

    last_column = get_column_letter(len(PRODUCTION_HEADERS))
    worksheet.auto_filter.ref = f"A1:{last_column}{worksheet.max_row}"
    worksheet.freeze_panes = "A2"


def production_report_workbook(report: ProductionReport) -> bytes:
    """Area sheets in fixed order followed by the ``DATA`` sheet."""

    workbook = Workbook()
    workbook.remove(workbook.active)
    used: set[str] = {DATA_SHEET_TITLE.casefold()}
    for bucket in report.areas:
        _production_sheet(workbook, sheet_title(bucket.name, used), bucket.rows)
    _production_sheet(workbook, DATA_SHEET_TITLE, report.data)
    return _save(workbook)


# ---------------------------------------------------------------------------
# Payroll summary


def _block_columns(index: int) -> tuple[int, int, int, int]:
    """Return the 1-based operator/assistant percent and day columns."""

    operator_pct = len(SUMMARY_FIXED_HEADERS) + 1 + 6 * index
    operator_days = operator_pct + 1
    assistant_pct = operator_pct + 3
    assistant_days = assistant_pct + 1
    return operator_pct, operator_days, assistant_pct, assistant_days


def summary_report_workbook(report: SummaryReport) -> bytes:
    """Single sheet with merged category headers and live bonus formulas."""

    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = SUMMARY_SHEET_TITLE

    top = list(SUMMARY_FIXED_HEADERS)
    sub = [""] * len(SUMMARY_FIXED_HEADERS)
    for category in report.categories:
        top.extend([f"OP. {category.upper()}", "", ""])
        sub.extend(SUMMARY_BLOCK_SUBHEADERS)
        top.extend([f"AYU. {category.upper()}", "", ""])
        sub.extend(SUMMARY_BLOCK_SUBHEADERS)
    worksheet.append(top)
    worksheet.append(sub)

    for column in range(1, len(SUMMARY_FIXED_HEADERS) + 1):
        worksheet.merge_cells(start_row=1, start_column=column, end_row=2, end_column=column)
    for index in range(len(report.categories)):
        operator_pct, _, assistant_pct, _ = _block_columns(index)
        worksheet.merge_cells(
            start_row=1, start_column=operator_pct, end_row=1, end_column=operator_pct + 2
        )
        worksheet.merge_cells(
            start_row=1, start_column=assistant_pct, end_row=1, end_column=assistant_pct + 2
        )

    for row_index, employee in enumerate(report.employees, start=3):
        values: list = [employee.name, employee.days_to_work, None, None]
        for category in report.categories:
            block = employee.block(category)
            if block is None:
                values.extend([0, 0, "", 0, 0, ""])
                continue
            values.extend(
                [
                    block.operator.percentage,
                    block.operator.days,
                    block.operator.observations,
                    block.assistant.percentage,
                    block.assistant.days,
                    block.assistant.observations,
                ]
            )
        worksheet.append(values)

        day_cells = []
        terms = []
        for index in range(len(report.categories)):
            operator_pct, operator_days, assistant_pct, assistant_days = _block_columns(index)
            op_pct = f"{get_column_letter(operator_pct)}{row_index}"
            op_days = f"{get_column_letter(operator_days)}{row_index}"
            ayu_pct = f"{get_column_letter(assistant_pct)}{row_index}"
            ayu_days = f"{get_column_letter(assistant_days)}{row_index}"
            day_cells.extend([op_days, ayu_days])
            terms.extend([f"N({op_pct})*N({op_days})", f"N({ayu_pct})*N({ayu_days})"])

        days_cell = worksheet.cell(row=row_index, column=3)
        if day_cells:
            days_cell.value = "=SUM({})".format(",".join(f"N({cell})" for cell in day_cells))
        else:
            days_cell.value = 0
        days_cell.number_format = "0"

        bonus_cell = worksheet.cell(row=row_index, column=4)
        numerator = "({})".format("+".join(terms)) if terms else "0"
        bonus_cell.value = f"=IF(N(B{row_index})>0,{numerator}/N(B{row_index})/100,0)"
        bonus_cell.number_format = SHORT_PERCENT_FORMAT

    widths = list(SUMMARY_FIXED_WIDTHS)
    for _ in report.categories:
        widths.extend(SUMMARY_BLOCK_WIDTHS * 2)
    _set_widths(worksheet, widths)

    header_font = Font(bold=True)
    for row in worksheet.iter_rows(min_row=1, max_row=worksheet.max_row, max_col=len(widths)):
        for cell in row:
            cell.alignment = CENTER
            cell.border = HEADER_BORDER
            if cell.row <= 2:
                cell.font = header_font

    configure_print(worksheet, header_rows=2)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Filenames


def production_filename(start: date, end: date) -> str:
    return f"PRODUCCION_{compact_date(start)}_{compact_date(end)}.xlsx"


def machine_report_filename(start: date, end: date) -> str:
    return f"reporte_produccion_maquinas_{start.isoformat()}_{end.isoformat()}.xlsx"


def summary_filename(start: date, end: date) -> str:
    return f"RESUMEN_{compact_date(start)}_{compact_date(end)}.xlsx"
