import io
import sys
from datetime import date, datetime
from pathlib import Path

import pytest
from openpyxl import load_workbook

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fabrilog.models import Machine, Product, ProductionDetail, ProductionRecord, User
from fabrilog.reports import (
    Bucket,
    MachineReportRow,
    build_production_report,
    build_summary_report,
)
from fabrilog.spreadsheets import (
    machine_report_filename,
    machine_report_workbook,
    production_filename,
    production_report_workbook,
    sheet_title,
    summary_filename,
    summary_report_workbook,
)

SHIFT = "6:00am - 2:00pm"
JUAN = User(id="u-1", name="Juan Pérez", role="operario")
ANA = User(id="u-2", name="Ana Gómez", role="operario")
MONTERREY = Machine(id="m-1", name="Monterrey 1", category="Monterrey")
TYING = Machine(id="m-3", name="Amarradora 2", category="Amarradoras")
LIGHTS = Product(id="p-1", name="Luces LED", target_8h=100)


def _record(record_id, operator, day, machine, produced, assistants=()):
    record = ProductionRecord(
        id=record_id,
        date=day,
        shift=SHIFT,
        operator_id=operator.id,
        machine=machine,
        operator=operator,
        details=(ProductionDetail(id=f"{record_id}-0", product=LIGHTS, produced=produced),),
    )
    return record.with_assistants(assistants)


def _row(day, operator="Juan Pérez", percentage=85.0):
    return MachineReportRow(
        day=day,
        shift=SHIFT,
        operator=operator,
        assistant="Sin asistente",
        machine="Monterrey 1",
        product="Luces LED",
        produced=85,
        percentage=percentage,
    )


def _assert_print_layout(sheet, header_rows=1):
    assert sheet.page_setup.orientation == "landscape"
    assert sheet.page_setup.fitToWidth == 1
    assert sheet.page_margins.left == pytest.approx(0.25)
    assert sheet.page_margins.top == pytest.approx(0.25)
    assert str(sheet.print_title_rows).replace("$", "") == f"1:{header_rows}"


def test_sheet_title_sanitises_truncates_and_deduplicates():
    used = set()
    assert sheet_title("Línea 1/2: [A]", used) == "Línea 1-2- -A-"
    long_name = "Categoría con un nombre demasiado largo para Excel"
    first = sheet_title(long_name, used)
    second = sheet_title(long_name, used)
    assert len(first) == 31
    assert len(second) == 31
    assert second.endswith(" (2)")
    assert first != second
    assert sheet_title("", used) == "Hoja"


def test_machine_report_workbook_layout():
    buckets = [
        Bucket(name="Monterrey", rows=[_row(date(2024, 3, 4))]),
        Bucket(name="Amarradoras", rows=[_row(date(2024, 3, 5), percentage=50.0)]),
    ]

    workbook = load_workbook(io.BytesIO(machine_report_workbook(buckets)))

    assert workbook.sheetnames == ["Monterrey", "Amarradoras", "DATA"]
    sheet = workbook["Monterrey"]
    assert [cell.value for cell in sheet[1]] == [
        "Fecha", "Turno", "Operario", "Asistente", "Máquina", "Producto", "Producido", "% Cumplimiento",
    ]
    assert sheet["A2"].value == datetime(2024, 3, 4)
    assert sheet["A2"].number_format == "dd/mm/yyyy"
    assert sheet["H2"].value == pytest.approx(0.85)
    assert sheet["H2"].number_format == "0.00%"
    assert sheet["A1"].fill.start_color.rgb.endswith("366092")
    assert workbook["DATA"].max_row == 3
    for worksheet in workbook.worksheets:
        _assert_print_layout(worksheet)


def test_production_report_workbook_layout():
    day = date(2024, 3, 4)
    report = build_production_report(
        [
            _record("r-1", JUAN, day, MONTERREY, 60),
            _record("r-2", ANA, day, TYING, 90),
        ]
    )

    workbook = load_workbook(io.BytesIO(production_report_workbook(report)))

    assert workbook.sheetnames == ["MONTERREY", "4 CABEZAS", "AMARRADORAS", "DATA"]
    sheet = workbook["MONTERREY"]
    header = [cell.value for cell in sheet[1]]
    assert len(header) == 17
    assert header[8] == "META EN FESTONES"
    assert sheet.freeze_panes == "A2"
    assert sheet.auto_filter.ref == "A1:Q2"
    assert sheet["I2"].value == 100
    assert sheet["J2"].value == pytest.approx(0.6)
    assert sheet["J2"].number_format == "0.00%"
    assert sheet["G2"].number_format == "0.00"
    assert workbook["4 CABEZAS"].max_row == 1
    assert workbook["DATA"].max_row == 3
    for worksheet in workbook.worksheets:
        _assert_print_layout(worksheet)


def test_summary_report_workbook_formulas():
    start, end = date(2024, 3, 4), date(2024, 3, 9)
    report = build_summary_report(
        [
            _record("r-1", JUAN, date(2024, 3, 4), MONTERREY, 80, assistants=[("u-2", "Ana Gómez")]),
            _record("r-2", JUAN, date(2024, 3, 5), MONTERREY, 100),
        ],
        [ANA, JUAN],
        start,
        end,
    )

    workbook = load_workbook(io.BytesIO(summary_report_workbook(report)))

    assert workbook.sheetnames == ["Resumen Producción"]
    sheet = workbook["Resumen Producción"]
    assert sheet["A1"].value == "NOMBRE"
    assert sheet["E1"].value == "OP. MONTERREY"
    assert sheet["H1"].value == "AYU. MONTERREY"
    assert sheet["E2"].value == "%"
    assert "E1:G1" in {str(merged) for merged in sheet.merged_cells.ranges}
    _assert_print_layout(sheet, header_rows=2)

    juan_row = 4
    assert sheet[f"A{juan_row}"].value == "Juan Pérez"
    assert sheet[f"B{juan_row}"].value == 6
    assert sheet[f"E{juan_row}"].value == pytest.approx(90.0)
    assert sheet[f"F{juan_row}"].value == 2
    assert sheet[f"C{juan_row}"].value == f"=SUM(N(F{juan_row}),N(I{juan_row}))"
    assert sheet[f"D{juan_row}"].value == (
        f"=IF(N(B{juan_row})>0,(N(E{juan_row})*N(F{juan_row})+N(H{juan_row})*N(I{juan_row}))"
        f"/N(B{juan_row})/100,0)"
    )
    assert sheet[f"D{juan_row}"].number_format == "0.0%"


def test_filenames():
    start, end = date(2024, 3, 1), date(2024, 3, 31)
    assert production_filename(start, end) == "PRODUCCION_20240301_20240331.xlsx"
    assert summary_filename(start, end) == "RESUMEN_20240301_20240331.xlsx"
    assert machine_report_filename(start, end) == (
        "reporte_produccion_maquinas_2024-03-01_2024-03-31.xlsx"
    )
