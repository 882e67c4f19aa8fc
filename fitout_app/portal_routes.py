import json
import queue
from dataclasses import asdict

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    stream_with_context,
)
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from fitout_app.api import (
    actor_name,
    ensure_case_access,
    json_error,
    register_error_handlers,
    request_payload,
)
from fitout_app.case_writes import respond_to_approval, send_chat_message, submit_payment
from fitout_app.client_case import NOT_FOUND_MESSAGE, ClientCaseWatcher
from fitout_app.client_project import client_project_to_dict, json_ready
from fitout_app.documents import CASES_COLLECTION, get_document_store
from fitout_app.models import User
from fitout_app.progress import gantt_layout, portal_summary
from utils.field_utils import clean_str


portal_bp = Blueprint("portal", __name__)
register_error_handlers(portal_bp)


def _state_payload(state):
    return {
        "project": client_project_to_dict(state.project),
        "loading": state.loading,
        "error": state.error,
    }


def _state_status(state):
    if state.project is not None or state.error is None:
        return 200
    if state.error == NOT_FOUND_MESSAGE:
        return 404
    if not getattr(get_document_store(), "enabled", True):
        return 503
    return 502


def _read_case_once(case_id):
    watcher = ClientCaseWatcher(get_document_store())
    try:
        watcher.watch(case_id)
        return watcher.state
    finally:
        watcher.close()


# Session -------------------------------------------------------------------


@portal_bp.route("/api/session", methods=["POST"])
def create_session():
    data = request_payload(request)
    username = clean_str(data.get("username"))
    password = data.get("password") or ""

    user = User.query.filter_by(username=username).first() if username else None
    if not user or not user.is_active or not user.verify_password(password):
        current_app.logger.info("Rejected login for %r", username)
        return json_error("Invalid username or password.", 401)

    login_user(user)
    return jsonify(
        {
            "success": True,
            "user": {
                "uid": user.uid,
                "name": user.display_name,
                "role": user.normalized_role,
            },
        }
    )


@portal_bp.route("/api/session", methods=["DELETE"])
@login_required
def delete_session():
    logout_user()
    return jsonify({"success": True})


@portal_bp.route("/api/csrf-token")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


# Projection ------------------------------------------------------------------


@portal_bp.route("/api/portal/cases/<case_id>")
@login_required
def case_projection(case_id):
    ensure_case_access(case_id)
    state = _read_case_once(case_id)
    return jsonify(_state_payload(state)), _state_status(state)


@portal_bp.route("/api/portal/my-case")
@login_required
def my_case():
    matches = get_document_store().query(
        CASES_COLLECTION, [("clientUid", "==", current_user.uid)], limit=1
    )
    if not matches:
        return json_error("No project is linked to this account.", 404)
    state = _read_case_once(matches[0].doc_id)
    return jsonify(_state_payload(state)), _state_status(state)


@portal_bp.route("/api/portal/cases/<case_id>/summary")
@login_required
def case_summary(case_id):
    ensure_case_access(case_id)
    state = _read_case_once(case_id)
    if state.project is None:
        return jsonify(_state_payload(state)), _state_status(state)

    project = state.project
    summary = portal_summary(project)
    layout = gantt_layout(project.stages, project.payment_milestones)
    payload = _state_payload(state)
    payload["summary"] = json_ready(asdict(summary))
    payload["gantt"] = json_ready(asdict(layout))
    return jsonify(payload)


def _sse_event(state):
    body = json.dumps(_state_payload(state))
    return f"event: project\ndata: {body}\n\n"


@portal_bp.route("/api/portal/cases/<case_id>/stream")
@login_required
def case_stream(case_id):
    """Push one ``project`` event per projection until the client goes away."""
    ensure_case_access(case_id)
    heartbeat = current_app.config["PORTAL_STREAM_HEARTBEAT_SECONDS"]
    updates = queue.Queue()
    watcher = ClientCaseWatcher(get_document_store())
    watcher.add_listener(updates.put)

    def generate():
        try:
            watcher.watch(case_id)
            while True:
                try:
                    state = updates.get(timeout=heartbeat)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse_event(state)
                if state.project is None and not state.loading:
                    break
        finally:
            watcher.close()

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# Client writes -----------------------------------------------------------------


@portal_bp.route("/api/portal/cases/<case_id>/chat", methods=["POST"])
@login_required
def post_chat_message(case_id):
    ensure_case_access(case_id)
    data = request_payload(request)
    entry = send_chat_message(
        get_document_store(),
        case_id,
        sender_id=current_user.uid,
        sender_name=actor_name(),
        role=current_user.normalized_role,
        message=data.get("message"),
        message_type=data.get("type") or "text",
        attachments=data.get("attachments"),
        file_name=data.get("fileName"),
    )
    return jsonify({"success": True, "message_id": entry["id"]}), 201


def _respond(case_id, approval_id, approve):
    ensure_case_access(case_id)
    data = request_payload(request)
    approval = respond_to_approval(
        get_document_store(),
        case_id,
        approval_id,
        actor_id=current_user.uid,
        approve=approve,
        notes=data.get("notes"),
        reason=data.get("reason"),
    )
    return jsonify({"success": True, "status": approval["status"]})


@portal_bp.route(
    "/api/portal/cases/<case_id>/approvals/<approval_id>/approve", methods=["POST"]
)
@login_required
def approve_request(case_id, approval_id):
    return _respond(case_id, approval_id, True)


@portal_bp.route(
    "/api/portal/cases/<case_id>/approvals/<approval_id>/reject", methods=["POST"]
)
@login_required
def reject_request(case_id, approval_id):
    return _respond(case_id, approval_id, False)


@portal_bp.route("/api/portal/cases/<case_id>/payments", methods=["POST"])
@login_required
def post_payment(case_id):
    ensure_case_access(case_id)
    data = request_payload(request)
    entry = submit_payment(
        get_document_store(),
        case_id,
        amount=data.get("amount"),
        method=data.get("method"),
        value=data.get("value"),
        submitted_by=current_user.uid,
    )
    return jsonify({"success": True, "payment_id": entry["id"], "status": entry["status"]}), 201
