"""Helpers shared by the JSON blueprints."""

from flask import abort, current_app, jsonify
from flask_login import current_user

from fitout_app import login_manager
from fitout_app.case_writes import ApprovalNotFoundError, CaseWriteError
from fitout_app.documents import (
    CASES_COLLECTION,
    DocumentNotFoundError,
    DocumentStoreDisabledError,
    DocumentStoreError,
    get_document_store,
)
from fitout_app.timesheets import NoTimeEntriesError


def json_error(message, status):
    return jsonify({"success": False, "message": message}), status


@login_manager.unauthorized_handler
def _unauthorized():
    return json_error("Login required.", 401)


def register_error_handlers(blueprint):
    @blueprint.errorhandler(403)
    def _forbidden(exc):
        return json_error("You do not have access to this resource.", 403)

    @blueprint.errorhandler(CaseWriteError)
    def _invalid_request(exc):
        return json_error(str(exc), 400)

    @blueprint.errorhandler(ApprovalNotFoundError)
    @blueprint.errorhandler(NoTimeEntriesError)
    def _missing_item(exc):
        return json_error(str(exc), 404)

    @blueprint.errorhandler(DocumentNotFoundError)
    def _missing_document(exc):
        return json_error("Project not found.", 404)

    @blueprint.errorhandler(DocumentStoreDisabledError)
    def _store_disabled(exc):
        return json_error(str(exc), 503)

    @blueprint.errorhandler(DocumentStoreError)
    def _store_failure(exc):
        current_app.logger.exception("Document store failure: %s", exc)
        return json_error("The project store is unavailable. Please try again.", 500)


def request_payload(request):
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise CaseWriteError("Invalid payload.")
    return data


def require_staff():
    if current_user.is_client:
        abort(403)


def require_timesheet_access():
    if not current_user.can_export_timesheets:
        abort(403)


def ensure_case_access(case_id):
    """Clients only reach the case whose ``clientUid`` is theirs."""
    if not current_user.is_client:
        return
    snapshot = get_document_store().get(CASES_COLLECTION, case_id)
    if not snapshot.exists or snapshot.get("clientUid") != current_user.uid:
        raise DocumentNotFoundError(CASES_COLLECTION, case_id)


def actor_name():
    return current_user.display_name
