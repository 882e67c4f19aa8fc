from flask import Blueprint, current_app, jsonify, request, send_file
from flask_login import current_user, login_required

from fitout_app.api import (
    json_error,
    register_error_handlers,
    request_payload,
    require_staff,
    require_timesheet_access,
)
from fitout_app.case_writes import (
    CaseWriteError,
    append_daily_log,
    update_installment_schedule,
    update_project_health,
)
from fitout_app.documents import get_document_store
from fitout_app.timesheets import (
    export_case_timesheet,
    export_organization_timesheet,
    export_raw_time_entries,
    export_timesheet_summary,
    export_user_timesheet,
)
from utils.excel_utils import XLSX_MIMETYPE, workbook_to_stream
from utils.field_utils import clean_str, parse_date_field


staff_bp = Blueprint("staff", __name__)
register_error_handlers(staff_bp)


@staff_bp.route("/api/staff/cases/<case_id>/daily-logs", methods=["POST"])
@login_required
def post_daily_log(case_id):
    require_staff()
    data = request_payload(request)
    entry = append_daily_log(
        get_document_store(),
        case_id,
        date=data.get("date"),
        work_description=data.get("workDescription"),
        completion_percent=data.get("completionPercent"),
        manpower_count=data.get("manpowerCount"),
        photos=data.get("photos"),
        blocker=data.get("blocker"),
        added_by=current_user.uid,
    )
    return jsonify({"success": True, "log_id": entry["id"]}), 201


@staff_bp.route("/api/staff/cases/<case_id>/installments", methods=["PUT"])
@login_required
def put_installments(case_id):
    require_staff()
    data = request_payload(request)
    installments = data.get("installments")
    if not isinstance(installments, list):
        raise CaseWriteError("Installments must be a list.")
    cleaned = update_installment_schedule(get_document_store(), case_id, installments)
    return jsonify({"success": True, "count": len(cleaned)})


@staff_bp.route("/api/staff/cases/<case_id>/health", methods=["PUT"])
@login_required
def put_health(case_id):
    require_staff()
    data = request_payload(request)
    update_project_health(
        get_document_store(),
        case_id,
        status=data.get("status"),
        risk_level=data.get("riskLevel"),
        completion_percentage=data.get("completionPercentage"),
        total_budget=data.get("totalBudget"),
    )
    return jsonify({"success": True})


def _date_range():
    start, start_error = parse_date_field(request.args.get("start"), "Start date")
    end, end_error = parse_date_field(request.args.get("end"), "End date")
    errors = [e for e in (start_error, end_error) if e]
    if not errors and (start is None or end is None):
        errors.append("Start and end dates are required.")
    if not errors and start > end:
        errors.append("Start date must be on or before the end date.")
    if errors:
        raise CaseWriteError(errors)
    return start.isoformat(), end.isoformat()


def _required_arg(name, label):
    value = clean_str(request.args.get(name))
    if not value:
        raise CaseWriteError(f"{label} is required.")
    return value


@staff_bp.route("/api/staff/timesheets/<kind>")
@login_required
def download_timesheet(kind):
    require_timesheet_access()
    start, end = _date_range()
    store = get_document_store()
    page_size = current_app.config["TIMESHEET_PAGE_SIZE"]

    if kind == "user":
        export = export_user_timesheet(
            store,
            _required_arg("user_id", "User"),
            clean_str(request.args.get("name")) or "User",
            start,
            end,
            page_size=page_size,
        )
    elif kind == "case":
        export = export_case_timesheet(
            store,
            _required_arg("case_id", "Project"),
            clean_str(request.args.get("name")) or "Project",
            start,
            end,
            page_size=page_size,
        )
    elif kind == "organization":
        export = export_organization_timesheet(
            store,
            _required_arg("organization_id", "Organization"),
            clean_str(request.args.get("name")),
            start,
            end,
            page_size=page_size,
        )
    elif kind == "raw":
        export = export_raw_time_entries(store, start, end, page_size=page_size)
    elif kind == "summary":
        export = export_timesheet_summary(
            store,
            start,
            end,
            clean_str(request.args.get("organization_id")) or None,
            page_size=page_size,
        )
    else:
        return json_error("Unknown timesheet export.", 404)

    current_app.logger.info(
        "%s exported %s (%s rows)", current_user.username, export.filename, export.row_count
    )
    return send_file(
        workbook_to_stream(export.workbook),
        as_attachment=True,
        download_name=export.filename,
        mimetype=XLSX_MIMETYPE,
    )
