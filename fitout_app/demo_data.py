"""Demo users, a fit-out case and a few days of time entries."""

import datetime

from fitout_app import db
from fitout_app.documents import (
    CASES_COLLECTION,
    ORGANIZATIONS_COLLECTION,
    STAFF_USERS_COLLECTION,
    TIME_ENTRIES_COLLECTION,
)
from fitout_app.models import User


DEMO_CASE_ID = "demo-case"
DEMO_ORGANIZATION_ID = "org-demo"

DEMO_USERS = [
    # username, password, name, role
    ("admin", "admin", "Admin", "super_admin"),
    ("site", "site", "Site Engineer", "execution"),
    ("client", "client", "Demo Client", "client"),
]


def _utc(year, month, day, hour=0, minute=0):
    return datetime.datetime(year, month, day, hour, minute, tzinfo=datetime.timezone.utc)


def ensure_demo_users():
    users = {}
    for username, password, name, role in DEMO_USERS:
        user = User.query.filter_by(username=username).first()
        if user is None:
            user = User(username=username, name=name, role=role, organization_id=DEMO_ORGANIZATION_ID)
            user.set_password(password)
            db.session.add(user)
        users[username] = user
    db.session.commit()
    return users


def demo_case(client_uid, today=None):
    today = today or datetime.date.today()
    start = _utc(today.year, today.month, today.day) - datetime.timedelta(days=20)
    end = start + datetime.timedelta(days=60)
    return {
        "schemaVersion": 1,
        "title": "Demo Office Fit-out",
        "clientName": "Demo Client",
        "clientEmail": "client@example.com",
        "clientUid": client_uid,
        "projectType": "Office Interior",
        "area": "3,200 sq ft",
        "leadJourney": {"callInitiated": start - datetime.timedelta(days=14)},
        "financial": {
            "totalBudget": 2500000,
            "installmentSchedule": [
                {"id": "inst-1", "milestoneName": "Booking", "percentage": 10, "amount": 250000,
                 "status": "Paid", "dueDate": start, "paidAt": start},
                {"id": "inst-2", "milestoneName": "Design Sign-off", "percentage": 40, "amount": 1000000,
                 "status": "Pending", "dueDate": start + datetime.timedelta(days=25)},
                {"id": "inst-3", "milestoneName": "Handover", "percentage": 50, "amount": 1250000,
                 "status": "Pending", "dueDate": end},
            ],
        },
        "executionPlan": {
            "startDate": start,
            "endDate": end,
            "phases": [
                {"id": "ph-1", "name": "Civil Work", "startDate": start,
                 "endDate": start + datetime.timedelta(days=20), "status": "completed"},
                {"id": "ph-2", "name": "Carpentry", "startDate": start + datetime.timedelta(days=20),
                 "endDate": start + datetime.timedelta(days=45), "status": "in_progress"},
                {"id": "ph-3", "name": "Finishing", "startDate": start + datetime.timedelta(days=45),
                 "endDate": end, "status": "pending"},
            ],
        },
        "dailyLogs": [
            {"id": "log-1", "date": start + datetime.timedelta(days=19),
             "workDescription": "Partition framing on the east wing", "completionPercent": 35,
             "manpowerCount": 8, "photos": []},
        ],
        "chat": [],
        "approvals": [
            {"id": "apr-1", "type": "design_change", "status": "pending",
             "payload": {"notes": "Reception wall: switch to fluted panels."},
             "createdAt": start + datetime.timedelta(days=18)},
        ],
        "health": {"status": "On Track", "riskLevel": "Low", "completionPercentage": 35},
        "documents": [],
        "payments": [],
    }


def demo_time_entries(user_uid, today=None):
    today = today or datetime.date.today()
    entries = {}
    for offset in (1, 2):
        day = today - datetime.timedelta(days=offset)
        entries[f"{user_uid}_{day.isoformat()}"] = {
            "userId": user_uid,
            "userName": "Site Engineer",
            "date": day.isoformat(),
            "clockIn": _utc(day.year, day.month, day.day, 9, 0),
            "clockOut": _utc(day.year, day.month, day.day, 18, 30),
            "breaks": [
                {"id": "b1", "startTime": _utc(day.year, day.month, day.day, 13, 0),
                 "endTime": _utc(day.year, day.month, day.day, 13, 45)},
            ],
            "activities": [
                {"id": "t1", "name": "Site supervision", "caseId": DEMO_CASE_ID,
                 "caseName": "Demo Office Fit-out", "taskType": "site_visit",
                 "startTime": _utc(day.year, day.month, day.day, 9, 10),
                 "endTime": _utc(day.year, day.month, day.day, 12, 50)},
                {"id": "t2", "name": "Vendor follow-up", "tags": ["procurement"],
                 "startTime": _utc(day.year, day.month, day.day, 14, 30),
                 "endTime": _utc(day.year, day.month, day.day, 17, 0)},
            ],
        }
    return entries


def seed_demo_data(store, today=None):
    """Create demo rows unless the demo case already exists. Returns True when seeded."""
    if store.get(CASES_COLLECTION, DEMO_CASE_ID).exists:
        return False

    users = ensure_demo_users()
    store.set(ORGANIZATIONS_COLLECTION, DEMO_ORGANIZATION_ID, {"name": "Demo Interiors"})
    for user in users.values():
        if not user.is_client:
            store.set(
                STAFF_USERS_COLLECTION,
                user.uid,
                {"name": user.display_name, "role": user.normalized_role,
                 "organizationId": DEMO_ORGANIZATION_ID},
            )
    store.set(CASES_COLLECTION, DEMO_CASE_ID, demo_case(users["client"].uid, today))
    for doc_id, entry in demo_time_entries(users["site"].uid, today).items():
        store.set(TIME_ENTRIES_COLLECTION, doc_id, entry)
    return True
