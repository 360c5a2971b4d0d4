from flask import (
    Blueprint,
    abort,
    current_app,
    jsonify,
    render_template,
    request,
    send_file,
)
from datetime import datetime
import io
import re
import unicodedata

from fabrilog.compliance import (
    consolidated_report,
    summarize_operator,
    today_metrics,
    weekly_metrics,
    weekly_window,
)
from fabrilog.dashboard import load_dashboard, local_today, report_timezone
from fabrilog.dates import format_display_date, month_range, parse_date, validate_range
from fabrilog.db import (
    fetch_active_users,
    fetch_assistants,
    fetch_production_records,
    fetch_record,
    fetch_user,
    lookup_compliance_by_cedula,
)
from fabrilog.errors import CollaboratorError, EmptyResultError, ValidationError
from fabrilog.main.pdf_utils import PdfGenerationError, render_html_to_pdf
from fabrilog.models import (
    ROLE_OPERATOR,
    ComplianceLookup,
    ProductionRecord,
    User,
    records_from_rows,
)
from fabrilog.reports import (
    AREAS,
    NOT_AVAILABLE,
    build_machine_report,
    build_production_report,
    build_summary_report,
    group_rows_by_machine,
    report_percentage,
)
from fabrilog.session import admin_required, current_user, login_required, staff_required
from fabrilog.spreadsheets import (
    machine_report_filename,
    machine_report_workbook,
    production_filename,
    production_report_workbook,
    summary_filename,
    summary_report_workbook,
)
from fabrilog.targets import shift_label

main_bp = Blueprint('main', __name__)

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
COLLABORATOR_FAILURE_MESSAGE = 'The database could not be reached. Try again later.'


@main_bp.errorhandler(ValidationError)
def _handle_validation_error(exc):
    return jsonify({'message': str(exc)}), 400


@main_bp.errorhandler(EmptyResultError)
def _handle_empty_result(exc):
    return jsonify({'message': str(exc)}), 404


@main_bp.errorhandler(CollaboratorError)
def _handle_collaborator_error(exc):
    current_app.logger.error("Collaborator call failed on %s: %s", request.path, exc)
    return jsonify({'message': COLLABORATOR_FAILURE_MESSAGE}), 502


def _today():
    return local_today()


def _unwrap(result):
    data, error = result
    if error:
        raise CollaboratorError(error)
    return data


def _requested_range(default_to_month: bool = False):
    """Return the validated ``start_date``/``end_date`` query arguments."""

    start_raw = request.args.get('start_date')
    end_raw = request.args.get('end_date')
    if default_to_month and not start_raw and not end_raw:
        return month_range(_today())

    start = parse_date(start_raw)
    end = parse_date(end_raw)
    if start_raw and start is None or end_raw and end is None:
        raise ValidationError('Dates must use the YYYY-MM-DD format.')
    return validate_range(start, end)


def _load_records(start, end, operator_id=None, with_assistants=False) -> list[ProductionRecord]:
    records = records_from_rows(_unwrap(fetch_production_records(start, end, operator_id)))
    if with_assistants and records:
        assistants = _unwrap(fetch_assistants(record.id for record in records))
        records = [
            record.with_assistants(assistants.get(str(record.id), []))
            for record in records
        ]
    return records


def _load_users(role=None) -> list[User]:
    return [User.from_row(row) for row in _unwrap(fetch_active_users(role))]


def _load_operator(user_id) -> User:
    row = _unwrap(fetch_user(user_id))
    if not row:
        abort(404, description="Operator not found")
    return User.from_row(row)


def _xlsx_response(content: bytes, filename: str):
    return send_file(
        io.BytesIO(content),
        mimetype=XLSX_MIMETYPE,
        download_name=filename,
        as_attachment=True,
    )


def _slugify(value: str) -> str:
    text = unicodedata.normalize('NFKD', value or '').encode('ascii', 'ignore').decode('ascii')
    text = re.sub(r'[^a-zA-Z0-9]+', '_', text).strip('_').lower()
    return text or 'maquina'


# ---------------------------------------------------------------------------
# Dashboard


@main_bp.route('/home')
@login_required
def home():
    start, end = month_range(_today())
    return render_template(
        'home.html',
        user=current_user(),
        start_date=start.isoformat(),
        end_date=end.isoformat(),
    )


@main_bp.route('/api/dashboard')
@login_required
def dashboard_data():
    start, end = _requested_range(default_to_month=True)
    snapshot = load_dashboard(start, end, _today())
    return jsonify(snapshot.to_dict())


# ---------------------------------------------------------------------------
# Operator metrics


@main_bp.route('/metrics')
@admin_required
def metrics_page():
    start, end = month_range(_today())
    return render_template(
        'metrics.html',
        user=current_user(),
        start_date=start.isoformat(),
        end_date=end.isoformat(),
    )


@main_bp.route('/api/metrics/operators')
@admin_required
def operators_metrics():
    start, end = _requested_range(default_to_month=True)
    operator_ids = request.args.getlist('operator_id') or None
    operators = _load_users(ROLE_OPERATOR)
    records = _load_records(start, end)
    summaries = consolidated_report(operators, records, start, end, operator_ids)
    return jsonify(
        {
            'start_date': start.isoformat(),
            'end_date': end.isoformat(),
            'operators': [summary.to_dict(include_daily=False) for summary in summaries],
        }
    )


@main_bp.route('/api/metrics/operators/<operator_id>')
@admin_required
def operator_metrics(operator_id):
    start, end = _requested_range(default_to_month=True)
    operator = _load_operator(operator_id)
    records = _load_records(start, end, operator_id=operator.id)
    summary = summarize_operator(operator, records, start, end)
    payload = summary.to_dict()
    payload.update({'start_date': start.isoformat(), 'end_date': end.isoformat()})
    return jsonify(payload)


@main_bp.route('/api/metrics/operators/<operator_id>/weekly')
@admin_required
def operator_weekly_metrics(operator_id):
    operator = _load_operator(operator_id)
    start, end = weekly_window(_today())
    records = _load_records(start, end, operator_id=operator.id)
    return jsonify(
        {
            'operator_id': operator.id,
            'operator_name': operator.name,
            'days': [metric.to_dict() for metric in weekly_metrics(records, end)],
        }
    )


@main_bp.route('/api/metrics/operators/<operator_id>/today')
@admin_required
def operator_today_metrics(operator_id):
    operator = _load_operator(operator_id)
    today = _today()
    metric = today_metrics(_load_records(today, today, operator_id=operator.id), today)
    return jsonify(
        {
            'operator_id': operator.id,
            'operator_name': operator.name,
            'today': metric.to_dict() if metric else None,
        }
    )


# ---------------------------------------------------------------------------
# Public compliance lookup


@main_bp.route('/compliance')
def compliance_page():
    start, end = month_range(_today())
    return render_template(
        'compliance.html',
        start_date=start.isoformat(),
        end_date=end.isoformat(),
    )


@main_bp.route('/api/compliance')
def compliance_lookup():
    cedula = (request.args.get('cedula') or '').strip()
    if not cedula:
        raise ValidationError('A cédula is required.')
    start, end = _requested_range()
    rows = _unwrap(lookup_compliance_by_cedula(cedula, start, end))
    results = [ComplianceLookup.from_row(row) for row in rows]
    if not results:
        raise EmptyResultError('No compliance data found for that cédula in the selected range.')
    return jsonify({'results': [result.to_dict() for result in results]})


# ---------------------------------------------------------------------------
# Spreadsheet reports


def _machine_buckets():
    start, end = _requested_range()
    category = (request.args.get('category') or '').strip() or None
    records = _load_records(start, end, with_assistants=True)
    buckets = build_machine_report(records, _load_users(), start, end, category)
    if request.args.get('group') == 'machine':
        buckets = group_rows_by_machine(row for bucket in buckets for row in bucket.rows)
    return start, end, buckets


@main_bp.route('/api/reports/machines')
@admin_required
def machine_report_preview():
    start, end, buckets = _machine_buckets()
    return jsonify(
        {
            'start_date': start.isoformat(),
            'end_date': end.isoformat(),
            'buckets': [bucket.to_dict() for bucket in buckets],
        }
    )


@main_bp.route('/reports/machines/export')
@admin_required
def export_machine_report():
    start, end, buckets = _machine_buckets()
    content = machine_report_workbook(buckets)
    current_app.logger.info("Machine report exported for %s..%s", start, end)
    return _xlsx_response(content, machine_report_filename(start, end))


@main_bp.route('/reports/production/export')
@admin_required
def export_production_report():
    start, end = _requested_range()
    areas = [
        area.strip().upper()
        for value in request.args.getlist('area')
        for area in value.split(',')
        if area.strip()
    ]
    unknown = sorted(set(areas) - set(AREAS))
    if unknown:
        raise ValidationError(f"Unknown area(s): {', '.join(unknown)}")

    records = _load_records(start, end)
    report = build_production_report(records, areas or None)
    content = production_report_workbook(report)
    current_app.logger.info("Production report exported for %s..%s", start, end)
    return _xlsx_response(content, production_filename(start, end))


@main_bp.route('/reports/summary/export')
@admin_required
def export_summary_report():
    start, end = _requested_range()
    records = _load_records(start, end, with_assistants=True)
    report = build_summary_report(records, _load_users(), start, end)
    content = summary_report_workbook(report)
    current_app.logger.info("Summary report exported for %s..%s", start, end)
    return _xlsx_response(content, summary_filename(start, end))


# ---------------------------------------------------------------------------
# Registration PDF


@main_bp.route('/records/<record_id>/pdf')
@staff_required
def record_pdf(record_id):
    row = _unwrap(fetch_record(record_id))
    if not row:
        abort(404, description="Production record not found")
    record = ProductionRecord.from_row(row)
    assistants = _unwrap(fetch_assistants([record.id]))
    record = record.with_assistants(assistants.get(str(record.id), []))

    lines = []
    for detail in record.details:
        target, percentage = report_percentage(detail, record.shift)
        lines.append(
            {
                'product': detail.product.name if detail.product else NOT_AVAILABLE,
                'produced': detail.produced,
                'target': target,
                'percentage': percentage,
                'observations': detail.observations,
            }
        )

    html = render_template(
        'report/registration.html',
        record=record,
        date=format_display_date(record.date),
        shift=shift_label(record.shift),
        machine=record.machine_name or NOT_AVAILABLE,
        operator=record.operator_name or NOT_AVAILABLE,
        assistants=', '.join(record.assistant_names),
        lines=lines,
        total_percentage=sum(line['percentage'] for line in lines),
        generated_at=datetime.now(report_timezone()).strftime('%d/%m/%Y %H:%M'),
    )
    try:
        pdf = render_html_to_pdf(html, base_url=request.url_root)
    except PdfGenerationError as exc:
        return jsonify({'message': str(exc)}), 503

    filename = f"registro_{_slugify(record.machine_name or '')}_{record.date.isoformat()}.pdf"
    return send_file(
        io.BytesIO(pdf),
        mimetype='application/pdf',
        download_name=filename,
        as_attachment=True,
    )
