"""Client portal projection of a case document.

``RawCase`` is the versioned, typed reading of a ``cases`` document and
``raw_case_to_client_project`` turns it into the read-only ``ClientProject``
the portal renders. The mapping is pure: it never touches the store and the
only ambient input is ``now``.
"""

import datetime
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from fitout_app.timestamps import TimestampLike, days_between, to_datetime, utcnow


CASE_SCHEMA_VERSION = 1

PAID_STATUS = "Paid"
INSTALLMENT_STATUSES = ("Pending", "Paid", "Overdue")
PHASE_STATUSES = ("pending", "in_progress", "delayed", "completed")
APPROVAL_STATUSES = ("pending", "approved", "rejected")

STAGE_STATUS_MAP = {
    "completed": "completed",
    "in_progress": "in-progress",
}
REQUEST_STATUS_MAP = {
    "pending": "open",
    "approved": "resolved",
}
HEALTH_STATUS_MAP = {
    "on track": "on-track",
    "minor delay": "minor-delay",
    "at risk": "at-risk",
}
DOCUMENT_CATEGORY_MAP = {
    "2d": "Drawing",
    "3d": "Drawing",
    "recce": "Drawing",
    "quotation": "Contract",
    "boq": "Contract",
}

# Order matters: steps are emitted in this sequence.
LEAD_JOURNEY_MILESTONES = (
    ("callInitiated", "Inquiry Initiated"),
    ("siteVisitScheduled", "Site Visit Scheduled"),
    ("siteVisitCompleted", "Site Visit Completed"),
)

DEFAULT_RESPONSIBLE_ROLE = "engineer"
DEFAULT_PROJECT_TYPE = "Office Interior"
DEFAULT_CONSULTANT_ID = "admin"
DEFAULT_CONSULTANT_NAME = "Relationship Manager"


class CaseSchemaError(ValueError):
    """Raised when a case document declares a schema this code cannot read."""


def _as_dict(value) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def _as_number(value, default=0):
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        if not math.isfinite(parsed):
            return default
        return int(parsed) if parsed.is_integer() else parsed
    return default


def _as_text(value, default="") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    return str(value)


def _as_text_list(value) -> List[str]:
    return [_as_text(item) for item in _as_list(value) if item is not None]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# Source shapes ----------------------------------------------------------------


@dataclass
class RawInstallment:
    id: str
    milestone_name: str
    percentage: float
    amount: float
    status: str
    due_date: TimestampLike = None
    paid_at: TimestampLike = None

    @classmethod
    def from_dict(cls, data, index):
        data = _as_dict(data)
        return cls(
            id=_as_text(data.get("id"), default=str(index + 1)),
            milestone_name=_as_text(data.get("milestoneName")),
            percentage=_as_number(data.get("percentage")),
            amount=_as_number(data.get("amount")),
            status=_as_text(data.get("status"), default="Pending"),
            due_date=data.get("dueDate"),
            paid_at=data.get("paidAt"),
        )


@dataclass
class RawPhase:
    name: str
    status: str
    start_date: TimestampLike = None
    end_date: TimestampLike = None
    completion_percent: float = 0

    @classmethod
    def from_dict(cls, data):
        data = _as_dict(data)
        return cls(
            name=_as_text(data.get("name")),
            status=_as_text(data.get("status"), default="pending"),
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            completion_percent=_as_number(data.get("completionPercent")),
        )


@dataclass
class RawExecutionPlan:
    start_date: TimestampLike = None
    end_date: TimestampLike = None
    phases: List[RawPhase] = field(default_factory=list)
    days: List[TimestampLike] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data):
        data = _as_dict(data)
        return cls(
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            phases=[RawPhase.from_dict(phase) for phase in _as_list(data.get("phases"))],
            days=[_as_dict(day).get("date") for day in _as_list(data.get("days"))],
        )


@dataclass
class RawDailyLog:
    id: str
    date: TimestampLike
    work_description: str
    completion_percent: float
    manpower_count: int
    photos: List[str] = field(default_factory=list)
    blocker: Optional[str] = None

    @classmethod
    def from_dict(cls, data, index):
        data = _as_dict(data)
        blocker = data.get("blocker")
        return cls(
            id=_as_text(data.get("id"), default=f"log-{index + 1}"),
            date=data.get("date"),
            work_description=_as_text(data.get("workDescription")),
            completion_percent=_as_number(data.get("completionPercent")),
            manpower_count=int(_as_number(data.get("manpowerCount"))),
            photos=_as_text_list(data.get("photos")),
            blocker=_as_text(blocker) if blocker else None,
        )


@dataclass
class RawChatMessage:
    id: str
    sender_id: str
    sender_name: str
    role: str
    message: str
    type: str = "text"
    timestamp: TimestampLike = None
    attachments: List[str] = field(default_factory=list)
    file_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data, index):
        data = _as_dict(data)
        return cls(
            id=_as_text(data.get("id"), default=f"msg-{index + 1}"),
            sender_id=_as_text(data.get("senderId")),
            sender_name=_as_text(data.get("senderName")),
            role=_as_text(data.get("role")),
            message=_as_text(data.get("message", data.get("content"))),
            type=_as_text(data.get("type"), default="text"),
            timestamp=data.get("timestamp"),
            attachments=_as_text_list(data.get("attachments")),
            file_name=data.get("fileName") or None,
        )


@dataclass
class RawApproval:
    id: str
    type: str
    status: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: TimestampLike = None

    @classmethod
    def from_dict(cls, data, index):
        data = _as_dict(data)
        return cls(
            id=_as_text(data.get("id"), default=f"approval-{index + 1}"),
            type=_as_text(data.get("type")),
            status=_as_text(data.get("status"), default="pending"),
            payload=_as_dict(data.get("payload")),
            created_at=data.get("createdAt"),
        )


@dataclass
class RawHealth:
    status: str = ""
    risk_level: str = ""
    completion_percentage: float = 0
    days_remaining: Optional[float] = None

    @classmethod
    def from_dict(cls, data):
        data = _as_dict(data)
        return cls(
            status=_as_text(data.get("status")),
            risk_level=_as_text(data.get("riskLevel")),
            completion_percentage=_as_number(data.get("completionPercentage")),
            days_remaining=_as_number(data.get("daysRemaining"), default=None),
        )


@dataclass
class RawDocument:
    id: str
    file_name: str
    type: str
    file_url: str
    uploaded_at: TimestampLike = None
    uploaded_by: Optional[str] = None
    visible_to_client: bool = False
    approval_status: Optional[str] = None
    remarks: Optional[str] = None

    @classmethod
    def from_dict(cls, data, index):
        data = _as_dict(data)
        return cls(
            id=_as_text(data.get("id"), default=f"doc-{index + 1}"),
            file_name=_as_text(data.get("fileName")),
            type=_as_text(data.get("type")),
            file_url=_as_text(data.get("fileUrl")),
            uploaded_at=data.get("uploadedAt"),
            uploaded_by=data.get("uploadedBy") or None,
            visible_to_client=data.get("visibleToClient") is True,
            approval_status=data.get("approvalStatus") or None,
            remarks=data.get("remarks") or None,
        )


@dataclass
class RawCase:
    id: str
    schema_version: int = CASE_SCHEMA_VERSION
    client_name: str = ""
    client_email: str = ""
    project_name: str = ""
    title: str = ""
    project_type: str = ""
    area: str = ""
    lead_type: Optional[str] = None
    assigned_sales: Optional[str] = None
    total_budget: float = 0
    installments: List[RawInstallment] = field(default_factory=list)
    execution_plan: Optional[RawExecutionPlan] = None
    lead_journey: Dict[str, Any] = field(default_factory=dict)
    daily_logs: List[RawDailyLog] = field(default_factory=list)
    chat: List[RawChatMessage] = field(default_factory=list)
    approvals: List[RawApproval] = field(default_factory=list)
    documents: List[RawDocument] = field(default_factory=list)
    health: RawHealth = field(default_factory=RawHealth)

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "RawCase":
        data = _as_dict(data)
        version = data.get("schemaVersion", CASE_SCHEMA_VERSION)
        if isinstance(version, bool) or not isinstance(version, int):
            version = CASE_SCHEMA_VERSION
        if version > CASE_SCHEMA_VERSION:
            raise CaseSchemaError(
                f"Case {doc_id} uses schema version {version}; "
                f"only versions up to {CASE_SCHEMA_VERSION} are supported."
            )

        financial = _as_dict(data.get("financial"))
        plan = data.get("executionPlan")
        lead_type = data.get("leadType")
        return cls(
            id=doc_id,
            schema_version=version,
            client_name=_as_text(data.get("clientName")),
            client_email=_as_text(data.get("clientEmail")),
            project_name=_as_text(data.get("projectName")),
            title=_as_text(data.get("title")),
            project_type=_as_text(data.get("projectType")),
            area=_as_text(data.get("area")),
            lead_type=lead_type if lead_type in ("SFD", "MFD") else None,
            assigned_sales=data.get("assignedSales") or None,
            total_budget=_as_number(financial.get("totalBudget")),
            installments=[
                RawInstallment.from_dict(item, idx)
                for idx, item in enumerate(_as_list(financial.get("installmentSchedule")))
            ],
            execution_plan=RawExecutionPlan.from_dict(plan) if isinstance(plan, dict) else None,
            lead_journey=_as_dict(data.get("leadJourney")),
            daily_logs=[
                RawDailyLog.from_dict(item, idx)
                for idx, item in enumerate(_as_list(data.get("dailyLogs")))
            ],
            chat=[
                RawChatMessage.from_dict(item, idx)
                for idx, item in enumerate(_as_list(data.get("chat")))
            ],
            approvals=[
                RawApproval.from_dict(item, idx)
                for idx, item in enumerate(_as_list(data.get("approvals")))
            ],
            documents=[
                RawDocument.from_dict(item, idx)
                for idx, item in enumerate(_as_list(data.get("documents")))
            ],
            health=RawHealth.from_dict(data.get("health")),
        )


# Portal shapes ----------------------------------------------------------------


@dataclass
class PaymentMilestone:
    id: str
    stage_name: str
    stage_id: int
    amount: float
    percentage: float
    is_paid: bool
    status: str
    unlocks_stage: int
    paid_at: Optional[datetime.datetime] = None
    due_date: Optional[datetime.datetime] = None
    description: Optional[str] = None


@dataclass
class JourneyStage:
    id: int
    name: str
    description: str
    status: str
    responsible_role: str
    start_date: Optional[datetime.datetime] = None
    expected_end_date: Optional[datetime.datetime] = None
    progress_percent: float = 0


@dataclass
class LeadJourneyStep:
    key: str
    label: str
    status: str
    date: Optional[datetime.datetime] = None


@dataclass
class ClientDailyUpdateItem:
    id: str
    date: Optional[datetime.datetime]
    work_description: str
    completion_percent: float
    manpower_count: int
    photos: List[str] = field(default_factory=list)
    blocker: Optional[str] = None


@dataclass
class ChatMessage:
    id: str
    sender_id: str
    sender_name: str
    role: str
    message: str
    type: str
    timestamp: datetime.datetime
    attachments: List[str] = field(default_factory=list)
    file_name: Optional[str] = None


@dataclass
class ClientRequest:
    id: str
    type: str
    title: str
    description: str
    status: str
    priority: str
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    conversation: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ClientDocument:
    id: str
    name: str
    category: str
    url: str
    date: Optional[datetime.datetime] = None
    size: str = "N/A"
    document_type: Optional[str] = None
    approval_status: Optional[str] = None
    uploaded_by: Optional[str] = None
    remarks: Optional[str] = None


@dataclass
class ActivityItem:
    id: str
    type: str
    title: str
    actor: str
    actor_role: str
    timestamp: Optional[datetime.datetime] = None


@dataclass
class Consultant:
    id: str
    name: str
    phone: str = ""
    email: str = ""


@dataclass
class ClientProject:
    project_id: str
    client_name: str
    client_email: str
    project_name: str
    project_type: str
    area: str
    budget: str
    consultant: Consultant
    start_date: Optional[datetime.datetime]
    expected_completion: Optional[datetime.datetime]
    current_stage_id: int
    stages: List[JourneyStage]
    payment_milestones: List[PaymentMilestone]
    lead_journey_steps: List[LeadJourneyStep]
    daily_updates: List[ClientDailyUpdateItem]
    chat: List[ChatMessage]
    requests: List[ClientRequest]
    documents: List[ClientDocument]
    activities: List[ActivityItem]
    plan_days: List[Optional[datetime.datetime]]
    total_paid: float
    total_budget: float
    budget_utilization_percent: int
    days_remaining: int
    total_duration_days: int
    days_completed: int
    project_health: str
    lead_type: Optional[str] = None
    schema_version: int = CASE_SCHEMA_VERSION


# Mapping ----------------------------------------------------------------------


def _map_milestones(installments: List[RawInstallment]) -> List[PaymentMilestone]:
    milestones = []
    for idx, item in enumerate(installments):
        milestones.append(
            PaymentMilestone(
                id=item.id,
                stage_name=item.milestone_name,
                stage_id=idx + 1,
                amount=item.amount,
                percentage=item.percentage,
                is_paid=item.status == PAID_STATUS,
                status=item.status,
                unlocks_stage=idx + 1,
                paid_at=to_datetime(item.paid_at),
                due_date=to_datetime(item.due_date),
                description=f"{item.percentage}% of project value" if item.percentage else None,
            )
        )
    return milestones


def _map_stages(plan: Optional[RawExecutionPlan]) -> List[JourneyStage]:
    if plan is None:
        return []
    return [
        JourneyStage(
            id=idx + 1,
            name=phase.name,
            description=f"Phase {idx + 1} of execution",
            status=STAGE_STATUS_MAP.get(phase.status, "locked"),
            responsible_role=DEFAULT_RESPONSIBLE_ROLE,
            start_date=to_datetime(phase.start_date),
            expected_end_date=to_datetime(phase.end_date),
            progress_percent=phase.completion_percent,
        )
        for idx, phase in enumerate(plan.phases)
    ]


def _map_lead_journey(lead_journey: Dict[str, Any]) -> List[LeadJourneyStep]:
    steps = []
    for key, label in LEAD_JOURNEY_MILESTONES:
        value = lead_journey.get(key)
        if value is None:
            continue
        steps.append(
            LeadJourneyStep(key=key, label=label, status="completed", date=to_datetime(value))
        )
    return steps


def _map_daily_updates(logs: List[RawDailyLog]) -> List[ClientDailyUpdateItem]:
    return [
        ClientDailyUpdateItem(
            id=log.id,
            date=to_datetime(log.date),
            work_description=log.work_description,
            completion_percent=log.completion_percent,
            manpower_count=log.manpower_count,
            photos=list(log.photos),
            blocker=log.blocker,
        )
        for log in logs
    ]


def _map_chat(messages: List[RawChatMessage], now: datetime.datetime) -> List[ChatMessage]:
    return [
        ChatMessage(
            id=msg.id,
            sender_id=msg.sender_id,
            sender_name=msg.sender_name,
            role=msg.role,
            message=msg.message,
            type=msg.type,
            timestamp=to_datetime(msg.timestamp) or now,
            attachments=list(msg.attachments),
            file_name=msg.file_name,
        )
        for msg in messages
    ]


def _map_requests(approvals: List[RawApproval]) -> List[ClientRequest]:
    requests = []
    for approval in approvals:
        created_at = to_datetime(approval.created_at)
        notes = approval.payload.get("notes")
        requests.append(
            ClientRequest(
                id=approval.id,
                type="approval",
                title=f"Approval Required: {approval.type}",
                description=_as_text(notes) if notes else "Please review this item",
                status=REQUEST_STATUS_MAP.get(approval.status, "in-progress"),
                priority="high",
                created_at=created_at,
                updated_at=created_at,
                conversation=[],
            )
        )
    return requests


def _map_documents(documents: List[RawDocument]) -> List[ClientDocument]:
    return [
        ClientDocument(
            id=doc.id,
            name=doc.file_name,
            category=DOCUMENT_CATEGORY_MAP.get(doc.type.lower(), "Other"),
            url=doc.file_url,
            date=to_datetime(doc.uploaded_at),
            document_type=doc.type or None,
            approval_status=doc.approval_status,
            uploaded_by=doc.uploaded_by,
            remarks=doc.remarks,
        )
        for doc in documents
        if doc.visible_to_client
    ]


def _build_activities(updates, documents) -> List[ActivityItem]:
    activities = [
        ActivityItem(
            id=update.id,
            type="progress",
            title=update.work_description,
            actor="Site Team",
            actor_role="engineer",
            timestamp=update.date,
        )
        for update in updates
    ]
    activities.extend(
        ActivityItem(
            id=doc.id,
            type="upload",
            title=f"Document Uploaded: {doc.name}",
            actor="System",
            actor_role="consultant",
            timestamp=doc.date,
        )
        for doc in documents
    )
    dated = [item for item in activities if item.timestamp is not None]
    undated = [item for item in activities if item.timestamp is None]
    dated.sort(key=lambda item: item.timestamp, reverse=True)
    return dated + undated


def _current_stage_id(stages: List[JourneyStage]) -> int:
    for stage in stages:
        if stage.status == "in-progress":
            return stage.id
    if stages:
        return stages[-1].id
    return 1


def _budget_label(total_budget) -> str:
    if total_budget > 0:
        return f"₹{total_budget / 100000:.2f} Lakhs"
    return "TBD"


def raw_case_to_client_project(
    raw: RawCase, now: Optional[datetime.datetime] = None
) -> ClientProject:
    """Derive the full client portal projection from one case snapshot."""
    now = to_datetime(now) or utcnow()

    milestones = _map_milestones(raw.installments)
    stages = _map_stages(raw.execution_plan)
    daily_updates = _map_daily_updates(raw.daily_logs)
    documents = _map_documents(raw.documents)

    total_paid = sum(m.amount for m in milestones if m.is_paid)
    total_budget = raw.total_budget
    if total_budget > 0:
        budget_utilization_percent = _round_half_up(total_paid / total_budget * 100)
    else:
        budget_utilization_percent = 0

    plan = raw.execution_plan
    start_date = to_datetime(plan.start_date) if plan else None
    end_date = to_datetime(plan.end_date) if plan else None

    if end_date is not None:
        days_remaining = max(0, days_between(now, end_date))
    elif raw.health.days_remaining is not None:
        days_remaining = math.ceil(raw.health.days_remaining)
    else:
        days_remaining = 0

    if start_date is not None and end_date is not None:
        total_duration_days = days_between(start_date, end_date)
    else:
        total_duration_days = 0

    return ClientProject(
        project_id=raw.id,
        client_name=raw.client_name,
        client_email=raw.client_email,
        project_name=raw.project_name or raw.title,
        project_type=raw.project_type or DEFAULT_PROJECT_TYPE,
        area=raw.area or "N/A",
        budget=_budget_label(total_budget),
        consultant=Consultant(
            id=raw.assigned_sales or DEFAULT_CONSULTANT_ID,
            name=DEFAULT_CONSULTANT_NAME,
        ),
        start_date=start_date,
        expected_completion=end_date,
        current_stage_id=_current_stage_id(stages),
        stages=stages,
        payment_milestones=milestones,
        lead_journey_steps=_map_lead_journey(raw.lead_journey),
        daily_updates=daily_updates,
        chat=_map_chat(raw.chat, now),
        requests=_map_requests(raw.approvals),
        documents=documents,
        activities=_build_activities(daily_updates, documents),
        plan_days=[to_datetime(day) for day in plan.days] if plan else [],
        total_paid=total_paid,
        total_budget=total_budget,
        budget_utilization_percent=budget_utilization_percent,
        days_remaining=days_remaining,
        total_duration_days=total_duration_days,
        days_completed=total_duration_days - days_remaining,
        project_health=HEALTH_STATUS_MAP.get(raw.health.status.strip().lower(), "on-track"),
        lead_type=raw.lead_type,
        schema_version=raw.schema_version,
    )


def json_ready(value):
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: json_ready(item) for key, item in value.items()}
    if isinstance(value, list):
        return [json_ready(item) for item in value]
    return value


def client_project_to_dict(project: Optional[ClientProject]) -> Optional[Dict[str, Any]]:
    if project is None:
        return None
    return json_ready(asdict(project))
