"""Single-write helpers for the case document.

Every helper validates its input, then performs exactly one store call. The
portal sees the result through its case subscription; nothing here patches
a projection locally.
"""

import datetime
import uuid
from typing import Any, Dict, List, Optional

from flask import current_app

from fitout_app.client_project import APPROVAL_STATUSES, INSTALLMENT_STATUSES, PAID_STATUS
from fitout_app.documents import CASES_COLLECTION, SERVER_TIMESTAMP, DocumentNotFoundError
from utils.field_utils import (
    clean_str,
    parse_date_field,
    parse_float_field,
    parse_int_field,
)


CHAT_MESSAGE_TYPES = ("text", "image", "file")
PAYMENT_METHODS = ("UTR", "Screenshot")
HEALTH_STATUSES = ("On Track", "Minor Delay", "At Risk")
RISK_LEVELS = ("Low", "Medium", "High")


class ApprovalNotFoundError(LookupError):
    """Raised when a case has no approval with the requested id."""


class CaseWriteError(ValueError):
    """Raised when a write request fails validation."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(" ".join(self.errors))


def _new_id():
    return uuid.uuid4().hex


def _as_utc_midnight(day: datetime.date) -> datetime.datetime:
    return datetime.datetime(day.year, day.month, day.day, tzinfo=datetime.timezone.utc)


def _percent(value, label, errors):
    parsed, error = parse_float_field(value, label)
    if error:
        errors.append(error)
        return None
    if parsed is None:
        return 0
    if parsed < 0 or parsed > 100:
        errors.append(f"{label} must be between 0 and 100.")
        return None
    return parsed


def _text_list(value, label, errors):
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    elif not isinstance(value, (list, tuple)):
        errors.append(f"{label} must be a list.")
        return []
    return [clean_str(item) for item in value if clean_str(item)]


def send_chat_message(
    store,
    case_id: str,
    *,
    sender_id: str,
    sender_name: str,
    role: str,
    message: str,
    message_type: str = "text",
    attachments: Optional[List[str]] = None,
    file_name: Optional[str] = None,
) -> Dict[str, Any]:
    errors = []
    text = clean_str(message)
    attachments = _text_list(attachments, "Attachments", errors)
    message_type = clean_str(message_type).lower() or "text"

    if not text and not attachments and not errors:
        errors.append("Message cannot be empty.")
    if message_type not in CHAT_MESSAGE_TYPES:
        errors.append("Unsupported message type.")
    if errors:
        raise CaseWriteError(errors)

    entry = {
        "id": _new_id(),
        "senderId": clean_str(sender_id),
        "senderName": clean_str(sender_name),
        "role": clean_str(role),
        "message": text,
        "type": message_type,
        "timestamp": SERVER_TIMESTAMP,
        "attachments": attachments,
    }
    if file_name:
        entry["fileName"] = clean_str(file_name)

    store.array_append(CASES_COLLECTION, case_id, "chat", entry)
    return entry


def append_daily_log(
    store,
    case_id: str,
    *,
    date,
    work_description: str,
    completion_percent=0,
    manpower_count=0,
    photos: Optional[List[str]] = None,
    blocker: Optional[str] = None,
    added_by: Optional[str] = None,
) -> Dict[str, Any]:
    errors = []

    if isinstance(date, datetime.datetime):
        log_date = date.date()
    elif isinstance(date, datetime.date):
        log_date = date
    else:
        log_date, error = parse_date_field(date, "Date")
        if error:
            errors.append(error)
    if log_date is None and not errors:
        errors.append("Date is required.")

    description = clean_str(work_description)
    if not description:
        errors.append("Work description is required.")

    percent = _percent(completion_percent, "Completion percent", errors)

    manpower, error = parse_int_field(manpower_count, "Manpower count")
    if error:
        errors.append(error)
    elif manpower is not None and manpower < 0:
        errors.append("Manpower count cannot be negative.")

    photo_urls = _text_list(photos, "Photos", errors)

    if errors:
        raise CaseWriteError(errors)

    entry = {
        "id": _new_id(),
        "date": _as_utc_midnight(log_date),
        "workDescription": description,
        "completionPercent": percent,
        "manpowerCount": manpower or 0,
        "photos": photo_urls,
        "addedBy": clean_str(added_by) or None,
        "createdAt": SERVER_TIMESTAMP,
    }
    if clean_str(blocker):
        entry["blocker"] = clean_str(blocker)

    store.array_append(CASES_COLLECTION, case_id, "dailyLogs", entry)
    return entry


def update_installment_schedule(store, case_id: str, installments) -> List[Dict[str, Any]]:
    """Replace the installment schedule and recompute the pending total."""
    errors = []
    cleaned = []
    for position, item in enumerate(installments or [], start=1):
        if not isinstance(item, dict):
            errors.append(f"Installment {position} is not an object.")
            continue
        name = clean_str(item.get("milestoneName"))
        if not name:
            errors.append(f"Installment {position}: milestone name is required.")

        amount, error = parse_float_field(item.get("amount"), f"Installment {position} amount")
        if error:
            errors.append(error)
        elif amount is not None and amount < 0:
            errors.append(f"Installment {position} amount cannot be negative.")

        percentage = _percent(item.get("percentage"), f"Installment {position} percentage", errors)

        status = clean_str(item.get("status")) or "Pending"
        if status not in INSTALLMENT_STATUSES:
            errors.append(
                f"Installment {position} status must be one of {', '.join(INSTALLMENT_STATUSES)}."
            )

        due_date, error = parse_date_field(item.get("dueDate"), f"Installment {position} due date")
        if error:
            errors.append(error)

        entry = {
            "id": clean_str(item.get("id")) or _new_id(),
            "milestoneName": name,
            "percentage": percentage or 0,
            "amount": amount or 0,
            "status": status,
            "dueDate": _as_utc_midnight(due_date) if due_date else None,
            "paidAt": item.get("paidAt"),
        }
        if status == PAID_STATUS and not entry["paidAt"]:
            entry["paidAt"] = SERVER_TIMESTAMP
        cleaned.append(entry)

    if errors:
        raise CaseWriteError(errors)

    total_pending = sum(entry["amount"] for entry in cleaned if entry["status"] != PAID_STATUS)
    store.update(
        CASES_COLLECTION,
        case_id,
        {
            "financial.installmentSchedule": cleaned,
            "financial.totalPending": total_pending,
        },
    )
    return cleaned


def respond_to_approval(
    store,
    case_id: str,
    approval_id: str,
    *,
    actor_id: str,
    approve: bool,
    notes: Optional[str] = None,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Approve or reject one approval by rewriting the approvals array."""
    reason = clean_str(reason)
    if not approve and not reason:
        raise CaseWriteError("A reason is required to request changes.")

    snapshot = store.get(CASES_COLLECTION, case_id)
    if not snapshot.exists:
        raise DocumentNotFoundError(CASES_COLLECTION, case_id)

    approvals = [dict(a) for a in (snapshot.get("approvals") or []) if isinstance(a, dict)]
    target = next((a for a in approvals if a.get("id") == approval_id), None)
    if target is None:
        raise ApprovalNotFoundError(f"Approval {approval_id} not found.")
    if target.get("status") not in (None, APPROVAL_STATUSES[0]):
        current_app.logger.info(
            "Approval %s on case %s re-answered (was %s)", approval_id, case_id, target.get("status")
        )

    action = {
        "action": "APPROVE" if approve else "REJECT",
        "timestamp": SERVER_TIMESTAMP,
        "actor": clean_str(actor_id),
    }
    target["status"] = "approved" if approve else "rejected"
    target["resolvedBy"] = clean_str(actor_id)
    target["resolvedAt"] = SERVER_TIMESTAMP
    if approve:
        payload = dict(target.get("payload") or {})
        payload["notes"] = clean_str(notes)
        target["payload"] = payload
    else:
        target["rejectionReason"] = reason
        action["reason"] = reason
    target["clientAction"] = action

    store.update(CASES_COLLECTION, case_id, {"approvals": approvals})
    return target


def submit_payment(
    store,
    case_id: str,
    *,
    amount,
    method: str,
    value: str,
    submitted_by: str,
) -> Dict[str, Any]:
    errors = []
    parsed_amount, error = parse_float_field(amount, "Amount")
    if error:
        errors.append(error)
    elif parsed_amount is None or parsed_amount <= 0:
        errors.append("Amount must be greater than zero.")
    method = clean_str(method)
    if method not in PAYMENT_METHODS:
        errors.append("Payment method must be UTR or Screenshot.")
    value = clean_str(value)
    if not value:
        errors.append("A UTR number or receipt link is required.")
    if errors:
        raise CaseWriteError(errors)

    entry = {
        "id": _new_id(),
        "amount": parsed_amount,
        "method": method,
        "utr": value if method == "UTR" else "",
        "receiptUrl": value if method == "Screenshot" else "",
        "submittedAt": SERVER_TIMESTAMP,
        "submittedBy": clean_str(submitted_by) or "CLIENT",
        "verified": False,
        "status": "pending_verification",
    }
    store.array_append(CASES_COLLECTION, case_id, "payments", entry)
    return entry


def update_project_health(
    store,
    case_id: str,
    *,
    status: str,
    risk_level: str,
    completion_percentage=0,
    total_budget=None,
) -> Dict[str, Any]:
    errors = []
    status = clean_str(status)
    if status not in HEALTH_STATUSES:
        errors.append(f"Health status must be one of {', '.join(HEALTH_STATUSES)}.")
    risk_level = clean_str(risk_level)
    if risk_level not in RISK_LEVELS:
        errors.append(f"Risk level must be one of {', '.join(RISK_LEVELS)}.")
    completion = _percent(completion_percentage, "Completion percentage", errors)

    budget = None
    if total_budget is not None and clean_str(total_budget) != "":
        budget, error = parse_float_field(total_budget, "Total budget")
        if error:
            errors.append(error)
        elif budget < 0:
            errors.append("Total budget cannot be negative.")
    if errors:
        raise CaseWriteError(errors)

    updates = {
        "health.status": status,
        "health.riskLevel": risk_level,
        "health.completionPercentage": completion,
        "health.lastUpdated": SERVER_TIMESTAMP,
    }
    if budget is not None:
        updates["financial.totalBudget"] = budget
    store.update(CASES_COLLECTION, case_id, updates)
    return updates
