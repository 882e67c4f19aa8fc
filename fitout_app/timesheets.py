"""Timesheet derivation and workbook exports.

Time entries (one document per user per day) are turned into sessions:
LOGIN for the clocked day, TASK per activity, BREAK per break and UNTRACKED
for gaps longer than fifteen minutes between work sessions. The exports
write those sessions, or a per-user summary, into single-sheet workbooks.
"""

import datetime
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from flask import current_app

from fitout_app.documents import (
    ORGANIZATIONS_COLLECTION,
    STAFF_USERS_COLLECTION,
    TIME_ENTRIES_COLLECTION,
)
from fitout_app.timestamps import to_datetime, utcnow
from utils.excel_utils import build_sheet_workbook
from utils.field_utils import clean_str, sanitize_filename_part


GAP_THRESHOLD_MINUTES = 15
STANDARD_DAY_MINUTES = 8 * 60
OVERTIME_WEIGHT = 1.5

SESSION_LOGIN = "LOGIN"
SESSION_TASK = "TASK"
SESSION_BREAK = "BREAK"
SESSION_UNTRACKED = "UNTRACKED"

SESSION_HEADERS = [
    "Date",
    "User Name",
    "Role",
    "Organization",
    "Case",
    "Task",
    "Task Type",
    "Start Time",
    "End Time",
    "Duration (Minutes)",
    "Session Type",
]
SESSION_COLUMN_WIDTHS = [12, 20, 15, 20, 25, 30, 15, 12, 12, 18, 15]

SUMMARY_HEADERS = [
    "User Name",
    "Role",
    "Organization",
    "Days Worked",
    "Total Login (Hours)",
    "Active Task Time (Hours)",
    "Break Time (Hours)",
    "Untracked Time (Hours)",
    "Overtime (Hours)",
    "Weighted Overtime (Hours)",
    "Productivity %",
]
SUMMARY_COLUMN_WIDTHS = [20, 15, 20, 12, 18, 22, 18, 22, 16, 24, 15]


class NoTimeEntriesError(LookupError):
    """Raised when an export finds nothing to write."""


@dataclass
class StaffUser:
    id: str
    name: str = "Unknown"
    role: str = "N/A"
    organization_id: Optional[str] = None


@dataclass
class DerivedSession:
    user_id: str
    user_name: str
    role: str
    organization_name: str
    date: str
    start_time: datetime.datetime
    end_time: datetime.datetime
    duration_minutes: int
    session_type: str
    case_id: Optional[str] = None
    case_name: Optional[str] = None
    task_id: Optional[str] = None
    task_name: Optional[str] = None
    task_type: Optional[str] = None


@dataclass
class UserSummary:
    user_name: str
    role: str
    organization: str
    days_worked: int = 0
    login_minutes: int = 0
    task_minutes: int = 0
    break_minutes: int = 0
    untracked_minutes: int = 0
    overtime_minutes: int = 0

    @property
    def weighted_overtime_minutes(self) -> float:
        return self.overtime_minutes * OVERTIME_WEIGHT

    @property
    def productivity_percent(self) -> float:
        if self.login_minutes <= 0:
            return 0.0
        return round(self.task_minutes / self.login_minutes * 100, 1)


@dataclass
class TimesheetExport:
    filename: str
    workbook: object
    row_count: int = 0
    sessions: List[DerivedSession] = field(default_factory=list)


def duration_minutes(start: datetime.datetime, end: datetime.datetime) -> int:
    return int(math.floor((end - start).total_seconds() / 60 + 0.5))


def _entry_time(entry, key, owner):
    raw = entry.get(key) if isinstance(entry, dict) else None
    if raw is None:
        return None
    moment = to_datetime(raw)
    if moment is None:
        current_app.logger.warning(
            "Skipping unreadable %s on time entry %s: %r", key, owner, raw
        )
    return moment


def derive_sessions(entry, user: StaffUser, organization_name="N/A", now=None) -> List[DerivedSession]:
    """Turn one time entry into BREAK, TASK and LOGIN sessions sorted by start.

    Open breaks and activities run until clock-out, or until ``now`` when the
    day is still open. An entry without a clock-in yields nothing.
    """
    entry_id = entry.get("id") or entry.get("userId")
    clock_in = _entry_time(entry, "clockIn", entry_id)
    if clock_in is None:
        return []
    clock_out = _entry_time(entry, "clockOut", entry_id)
    day_end = clock_out or to_datetime(now) or utcnow()

    user_name = user.name or entry.get("userName") or "Unknown"
    role = user.role or "N/A"
    base = dict(
        user_id=entry.get("userId") or user.id,
        user_name=user_name,
        role=role,
        organization_name=organization_name,
        date=clean_str(entry.get("date")),
    )

    sessions = []
    for item in entry.get("breaks") or []:
        if not isinstance(item, dict):
            continue
        start = _entry_time(item, "startTime", entry_id)
        end = _entry_time(item, "endTime", entry_id) or day_end
        if start and end > start:
            sessions.append(
                DerivedSession(
                    start_time=start,
                    end_time=end,
                    duration_minutes=duration_minutes(start, end),
                    session_type=SESSION_BREAK,
                    **base,
                )
            )

    for activity in entry.get("activities") or []:
        if not isinstance(activity, dict):
            continue
        start = _entry_time(activity, "startTime", entry_id)
        end = _entry_time(activity, "endTime", entry_id) or day_end
        if not (start and end > start):
            continue
        tags = activity.get("tags") or []
        sessions.append(
            DerivedSession(
                start_time=start,
                end_time=end,
                duration_minutes=duration_minutes(start, end),
                session_type=SESSION_TASK,
                case_id=activity.get("caseId"),
                case_name=activity.get("caseName"),
                task_id=activity.get("id"),
                task_name=activity.get("name"),
                task_type=activity.get("taskType") or (tags[0] if tags else "task"),
                **base,
            )
        )

    if clock_out is not None:
        sessions.append(
            DerivedSession(
                start_time=clock_in,
                end_time=clock_out,
                duration_minutes=duration_minutes(clock_in, clock_out),
                session_type=SESSION_LOGIN,
                **base,
            )
        )

    sessions.sort(key=lambda s: s.start_time)
    return sessions


def insert_untracked_gaps(
    sessions: List[DerivedSession],
    user: StaffUser,
    organization_name: str,
    date: str,
    clock_in: datetime.datetime,
    clock_out: Optional[datetime.datetime],
) -> List[DerivedSession]:
    work_sessions = sorted(
        (s for s in sessions if s.session_type in (SESSION_TASK, SESSION_BREAK)),
        key=lambda s: s.start_time,
    )

    def gap(start, end):
        return DerivedSession(
            user_id=user.id,
            user_name=user.name,
            role=user.role,
            organization_name=organization_name,
            date=date,
            start_time=start,
            end_time=end,
            duration_minutes=duration_minutes(start, end),
            session_type=SESSION_UNTRACKED,
        )

    result = []
    last_end = clock_in
    for session in work_sessions:
        if duration_minutes(last_end, session.start_time) > GAP_THRESHOLD_MINUTES:
            result.append(gap(last_end, session.start_time))
        result.append(session)
        if session.end_time > last_end:
            last_end = session.end_time

    if clock_out is not None and work_sessions:
        if duration_minutes(last_end, clock_out) > GAP_THRESHOLD_MINUTES:
            result.append(gap(last_end, clock_out))

    result.extend(s for s in sessions if s.session_type == SESSION_LOGIN)
    result.sort(key=lambda s: s.start_time)
    return result


def overtime_minutes(login_minutes: int) -> int:
    return max(0, login_minutes - STANDARD_DAY_MINUTES)


def weighted_overtime_minutes(login_minutes: int) -> float:
    return overtime_minutes(login_minutes) * OVERTIME_WEIGHT


# Lookups -------------------------------------------------------------------


def fetch_users(store, user_ids: Iterable[str]) -> Dict[str, StaffUser]:
    users = {}
    for user_id in dict.fromkeys(uid for uid in user_ids if uid):
        snapshot = store.get(STAFF_USERS_COLLECTION, user_id)
        if not snapshot.exists:
            continue
        users[user_id] = StaffUser(
            id=user_id,
            name=snapshot.get("name") or "Unknown",
            role=snapshot.get("role") or "N/A",
            organization_id=snapshot.get("organizationId"),
        )
    return users


def fetch_organization_names(store, organization_ids: Iterable[str]) -> Dict[str, str]:
    names = {}
    for org_id in dict.fromkeys(oid for oid in organization_ids if oid):
        snapshot = store.get(ORGANIZATIONS_COLLECTION, org_id)
        if snapshot.exists:
            names[org_id] = snapshot.get("name") or "Unknown Org"
    return names


def fetch_time_entries(
    store,
    start: str,
    end: str,
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    page_size: int = 200,
) -> List[dict]:
    """Time entries whose ``date`` falls within ``start``..``end`` inclusive."""
    filters = [("date", ">=", start), ("date", "<=", end)]
    if user_id:
        filters.insert(0, ("userId", "==", user_id))
    entries = []
    for snapshot in store.query(TIME_ENTRIES_COLLECTION, filters, page_size=page_size):
        entry = dict(snapshot.data)
        entry["id"] = snapshot.doc_id
        entries.append(entry)

    if organization_id:
        users = fetch_users(store, (e.get("userId") for e in entries))
        entries = [
            e
            for e in entries
            if users.get(e.get("userId")) and users[e.get("userId")].organization_id == organization_id
        ]
    return entries


def _user_for(entry, users: Dict[str, StaffUser]) -> StaffUser:
    user_id = entry.get("userId")
    return users.get(user_id) or StaffUser(id=user_id, name=entry.get("userName") or "Unknown")


def _organization_for(user: StaffUser, org_names: Dict[str, str]) -> str:
    if not user.organization_id:
        return "N/A"
    return org_names.get(user.organization_id, "N/A")


def _sessions_with_gaps(entry, user, organization_name, now=None):
    sessions = derive_sessions(entry, user, organization_name, now=now)
    entry_id = entry.get("id")
    clock_in = _entry_time(entry, "clockIn", entry_id)
    clock_out = _entry_time(entry, "clockOut", entry_id)
    if clock_in and clock_out:
        return insert_untracked_gaps(
            sessions, user, organization_name, clean_str(entry.get("date")), clock_in, clock_out
        )
    return sessions


# Workbooks -----------------------------------------------------------------


def _format_date(moment: datetime.datetime) -> str:
    return moment.strftime("%d/%m/%Y")


def _format_time(moment: datetime.datetime) -> str:
    return moment.strftime("%I:%M %p").lower()


def session_rows(sessions: Iterable[DerivedSession]):
    for s in sessions:
        yield [
            _format_date(s.start_time),
            s.user_name,
            s.role,
            s.organization_name,
            s.case_name or "-",
            s.task_name or "-",
            s.task_type or "-",
            _format_time(s.start_time),
            _format_time(s.end_time),
            s.duration_minutes,
            s.session_type,
        ]


def _session_export(filename, sessions):
    workbook = build_sheet_workbook(
        "Timesheet", SESSION_HEADERS, session_rows(sessions), SESSION_COLUMN_WIDTHS
    )
    current_app.logger.info("Built %s with %s sessions", filename, len(sessions))
    return TimesheetExport(filename=filename, workbook=workbook, row_count=len(sessions), sessions=sessions)


def _users_and_orgs(store, entries):
    users = fetch_users(store, (e.get("userId") for e in entries))
    org_names = fetch_organization_names(store, (u.organization_id for u in users.values()))
    return users, org_names


def export_user_timesheet(store, user_id, user_name, start, end, *, page_size=200, now=None):
    entries = fetch_time_entries(store, start, end, user_id=user_id, page_size=page_size)
    if not entries:
        raise NoTimeEntriesError("No time entries found for this user in the selected date range.")

    users, org_names = _users_and_orgs(store, entries)
    user = users.get(user_id) or StaffUser(id=user_id, name=user_name or "Unknown")
    organization_name = _organization_for(user, org_names)

    sessions = []
    for entry in entries:
        sessions.extend(_sessions_with_gaps(entry, user, organization_name, now=now))

    filename = f"Timesheet_{sanitize_filename_part(user_name)}_{start}_to_{end}.xlsx"
    return _session_export(filename, sessions)


def export_case_timesheet(store, case_id, case_name, start, end, *, page_size=200, now=None):
    entries = [
        entry
        for entry in fetch_time_entries(store, start, end, page_size=page_size)
        if any(
            isinstance(a, dict) and a.get("caseId") == case_id
            for a in entry.get("activities") or []
        )
    ]
    if not entries:
        raise NoTimeEntriesError("No time entries found for this project in the selected date range.")

    users, org_names = _users_and_orgs(store, entries)
    sessions = []
    for entry in entries:
        user = _user_for(entry, users)
        derived = derive_sessions(entry, user, _organization_for(user, org_names), now=now)
        sessions.extend(s for s in derived if s.case_id == case_id)

    filename = f"Timesheet_Project_{sanitize_filename_part(case_name)}_{start}_to_{end}.xlsx"
    return _session_export(filename, sessions)


def export_organization_timesheet(
    store, organization_id, organization_name, start, end, *, page_size=200, now=None
):
    entries = fetch_time_entries(
        store, start, end, organization_id=organization_id, page_size=page_size
    )
    if not entries:
        raise NoTimeEntriesError(
            "No time entries found for this organization in the selected date range."
        )

    if not organization_name:
        organization_name = fetch_organization_names(store, [organization_id]).get(
            organization_id, "N/A"
        )
    users = fetch_users(store, (e.get("userId") for e in entries))
    sessions = []
    for entry in entries:
        sessions.extend(
            _sessions_with_gaps(entry, _user_for(entry, users), organization_name, now=now)
        )

    filename = f"Timesheet_Org_{sanitize_filename_part(organization_name)}_{start}_to_{end}.xlsx"
    return _session_export(filename, sessions)


def export_raw_time_entries(store, start, end, *, page_size=200, now=None):
    entries = fetch_time_entries(store, start, end, page_size=page_size)
    if not entries:
        raise NoTimeEntriesError("No time entries found in the selected date range.")

    users, org_names = _users_and_orgs(store, entries)
    sessions = []
    for entry in entries:
        user = _user_for(entry, users)
        sessions.extend(
            _sessions_with_gaps(entry, user, _organization_for(user, org_names), now=now)
        )

    return _session_export(f"Timesheet_All_{start}_to_{end}.xlsx", sessions)


def summarize_by_user(entries, users, org_names, now=None) -> List[UserSummary]:
    """Aggregate each user's sessions; overtime is counted per clocked day."""
    summaries: Dict[str, UserSummary] = {}
    for entry in entries:
        user = _user_for(entry, users)
        organization_name = _organization_for(user, org_names)
        summary = summaries.get(entry.get("userId"))
        if summary is None:
            summary = UserSummary(user_name=user.name, role=user.role, organization=organization_name)
            summaries[entry.get("userId")] = summary
        summary.days_worked += 1

        for session in _sessions_with_gaps(entry, user, organization_name, now=now):
            if session.session_type == SESSION_LOGIN:
                summary.login_minutes += session.duration_minutes
                summary.overtime_minutes += overtime_minutes(session.duration_minutes)
            elif session.session_type == SESSION_TASK:
                summary.task_minutes += session.duration_minutes
            elif session.session_type == SESSION_BREAK:
                summary.break_minutes += session.duration_minutes
            elif session.session_type == SESSION_UNTRACKED:
                summary.untracked_minutes += session.duration_minutes
    return list(summaries.values())


def _hours(minutes) -> float:
    return round(minutes / 60, 2)


def export_timesheet_summary(store, start, end, organization_id=None, *, page_size=200, now=None):
    entries = fetch_time_entries(
        store, start, end, organization_id=organization_id, page_size=page_size
    )
    if not entries:
        raise NoTimeEntriesError("No time entries found in the selected date range.")

    users, org_names = _users_and_orgs(store, entries)
    summaries = summarize_by_user(entries, users, org_names, now=now)
    rows = [
        [
            s.user_name,
            s.role,
            s.organization,
            s.days_worked,
            _hours(s.login_minutes),
            _hours(s.task_minutes),
            _hours(s.break_minutes),
            _hours(s.untracked_minutes),
            _hours(s.overtime_minutes),
            _hours(s.weighted_overtime_minutes),
            s.productivity_percent,
        ]
        for s in summaries
    ]
    workbook = build_sheet_workbook("Summary", SUMMARY_HEADERS, rows, SUMMARY_COLUMN_WIDTHS)
    filename = f"Timesheet_Summary_{start}_to_{end}.xlsx"
    current_app.logger.info("Built %s for %s users", filename, len(rows))
    return TimesheetExport(filename=filename, workbook=workbook, row_count=len(rows))
