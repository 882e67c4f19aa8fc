"""Read-only derivations the portal widgets draw from a ``ClientProject``."""

import datetime
import math
from dataclasses import dataclass, field
from typing import List, Optional

from fitout_app.client_project import ClientProject, JourneyStage, PaymentMilestone
from fitout_app.timestamps import ONE_DAY, to_datetime, utcnow


EMPTY_WINDOW_LOOKBACK = datetime.timedelta(days=5)
EMPTY_WINDOW_LOOKAHEAD = datetime.timedelta(days=30)
MIN_BAR_WIDTH_PERCENT = 2
EMPTY_RANGE_BAR_WIDTH_PERCENT = 10


def _clamp(value, low, high):
    return max(low, min(high, value))


@dataclass
class GanttBar:
    stage_id: int
    name: str
    status: str
    left_percent: float
    width_percent: float
    is_delayed: bool


@dataclass
class GanttMarker:
    milestone_id: str
    name: str
    is_paid: bool
    left_percent: float


@dataclass
class GanttLayout:
    window_start: datetime.datetime
    window_end: datetime.datetime
    today_percent: float
    bars: List[GanttBar] = field(default_factory=list)
    markers: List[GanttMarker] = field(default_factory=list)


def gantt_layout(
    stages: List[JourneyStage],
    milestones: Optional[List[PaymentMilestone]] = None,
    now: Optional[datetime.datetime] = None,
) -> GanttLayout:
    """Position stage bars and payment markers on a shared time axis.

    Only stages with both a start and an expected end are drawn. Without any
    such stage the axis spans five days back to thirty days ahead of ``now``.
    """
    now = to_datetime(now) or utcnow()
    dated = [s for s in stages if s.start_date and s.expected_end_date]

    if dated:
        window_start = min(s.start_date for s in dated)
        window_end = max(s.expected_end_date for s in dated)
    else:
        window_start = now - EMPTY_WINDOW_LOOKBACK
        window_end = now + EMPTY_WINDOW_LOOKAHEAD
    span = (window_end - window_start).total_seconds()

    def left_percent(moment):
        if span <= 0:
            return 0
        return _clamp((moment - window_start).total_seconds() / span * 100, 0, 100)

    def width_percent(start, end):
        if span <= 0:
            return EMPTY_RANGE_BAR_WIDTH_PERCENT
        return _clamp((end - start).total_seconds() / span * 100, MIN_BAR_WIDTH_PERCENT, 100)

    bars = [
        GanttBar(
            stage_id=stage.id,
            name=stage.name,
            status=stage.status,
            left_percent=left_percent(stage.start_date),
            width_percent=width_percent(stage.start_date, stage.expected_end_date),
            is_delayed=now > stage.expected_end_date and stage.status != "completed",
        )
        for stage in dated
    ]
    markers = [
        GanttMarker(
            milestone_id=m.id,
            name=m.stage_name,
            is_paid=m.is_paid,
            left_percent=left_percent(m.due_date),
        )
        for m in (milestones or [])
        if m.due_date is not None
    ]
    return GanttLayout(
        window_start=window_start,
        window_end=window_end,
        today_percent=left_percent(now) if span > 0 else 0,
        bars=bars,
        markers=markers,
    )


def milestone_unlock_states(milestones: List[PaymentMilestone]) -> List[str]:
    """``paid``, ``unlocked`` or ``locked`` for each milestone, in order.

    A milestone is unlocked when it is unpaid and the one before it is paid;
    the first milestone is unlocked whenever it is unpaid.
    """
    states = []
    for index, milestone in enumerate(milestones):
        if milestone.is_paid:
            states.append("paid")
        elif index == 0 or milestones[index - 1].is_paid:
            states.append("unlocked")
        else:
            states.append("locked")
    return states


def next_unpaid_milestone(milestones: List[PaymentMilestone]) -> Optional[PaymentMilestone]:
    for milestone in milestones:
        if not milestone.is_paid:
            return milestone
    return None


def is_milestone_overdue(milestone: Optional[PaymentMilestone], now=None) -> bool:
    if milestone is None or milestone.is_paid or milestone.due_date is None:
        return False
    now = to_datetime(now) or utcnow()
    return now > milestone.due_date


def due_countdown_text(due_date, now=None) -> Optional[str]:
    due = to_datetime(due_date)
    if due is None:
        return None
    now = to_datetime(now) or utcnow()
    days = math.ceil((due - now) / ONE_DAY)
    if days < 0:
        return f"{abs(days)} days overdue"
    if days == 0:
        return "Due today"
    if days == 1:
        return "Due tomorrow"
    return f"{days} days to due"


@dataclass
class PortalSummary:
    pending_amount: float
    paid_percent: int
    paid_count: int
    unlocked_until_stage: int
    current_stage: Optional[JourneyStage]
    next_milestone: Optional[PaymentMilestone]
    next_milestone_overdue: bool
    countdown_text: Optional[str]
    unlock_states: List[str] = field(default_factory=list)


def portal_summary(project: ClientProject, now=None) -> PortalSummary:
    now = to_datetime(now) or utcnow()
    milestones = project.payment_milestones
    paid_count = sum(1 for m in milestones if m.is_paid)

    if paid_count > 0:
        unlocked_until_stage = milestones[paid_count - 1].unlocks_stage + 1
    else:
        unlocked_until_stage = max(2, len(project.stages))

    current_stage = next(
        (s for s in project.stages if s.id == project.current_stage_id),
        project.stages[0] if project.stages else None,
    )
    upcoming = next_unpaid_milestone(milestones)

    return PortalSummary(
        pending_amount=max(0, (project.total_budget or 0) - (project.total_paid or 0)),
        paid_percent=_clamp(project.budget_utilization_percent, 0, 100),
        paid_count=paid_count,
        unlocked_until_stage=unlocked_until_stage,
        current_stage=current_stage,
        next_milestone=upcoming,
        next_milestone_overdue=is_milestone_overdue(upcoming, now),
        countdown_text=due_countdown_text(upcoming.due_date, now) if upcoming else None,
        unlock_states=milestone_unlock_states(milestones),
    )
