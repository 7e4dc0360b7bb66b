"""
Priority scoring for hall reservation requests.

Scoring rules
-------------
1. Event category (base score):
   Institutional 100, Departmental 50, Student 20, Other 10.
2. Advance notice: +5 points per full week between submission and the
   start of the window, capped at 25 (five weeks).
3. Attendance: +1 point per 10 expected attendees, capped at 20.

The total is therefore always within [10, 145].
"""
from dataclasses import dataclass
from datetime import datetime

from .models import EventCategory

CATEGORY_SCORES = {
    EventCategory.INSTITUTIONAL: 100,
    EventCategory.DEPARTMENTAL: 50,
    EventCategory.STUDENT: 20,
    EventCategory.OTHER: 10,
}

POINTS_PER_WEEK = 5
MAX_ADVANCE_SCORE = 25
ATTENDEES_PER_POINT = 10
MAX_ATTENDANCE_SCORE = 20

STRONG_OVERRIDE_MARGIN = 30

STRONGLY_FAVOR_NEW = "strongly favor new"
FAVOR_NEW_NEEDS_REVIEW = "favor new, needs review"
FAVOR_EXISTING = "favor existing"


@dataclass(frozen=True)
class ScoreBreakdown:
    category_score: int
    advance_score: int
    attendance_score: int
    total: int


@dataclass(frozen=True)
class PriorityComparison:
    new_score: int
    existing_score: int
    difference: int
    recommendation: str
    reason: str
    should_override: bool


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def score(
    category: EventCategory,
    submission_time: datetime,
    window_start: datetime,
    expected_attendance: int,
) -> ScoreBreakdown:
    """
    Compute the priority score of a reservation request.

    Parameters
    ----------
    category : EventCategory
        Event category of the request.
    submission_time : datetime
        When the request was submitted.
    window_start : datetime
        Start of the requested window.
    expected_attendance : int
        Expected number of attendees (non-negative).

    Returns
    -------
    ScoreBreakdown
        Individual components and their total.
    """
    category_score = CATEGORY_SCORES[EventCategory(category)]

    days_ahead = (window_start - submission_time).total_seconds() / 86400
    weeks_ahead = int(days_ahead // 7)
    advance_score = _clamp(weeks_ahead * POINTS_PER_WEEK, 0, MAX_ADVANCE_SCORE)

    attendance_score = _clamp(
        expected_attendance // ATTENDEES_PER_POINT, 0, MAX_ATTENDANCE_SCORE
    )

    return ScoreBreakdown(
        category_score=category_score,
        advance_score=advance_score,
        attendance_score=attendance_score,
        total=category_score + advance_score + attendance_score,
    )


def compare(new_score: int, existing_score: int) -> PriorityComparison:
    """
    Compare a new request's score against the reservation it conflicts with.
    """
    diff = new_score - existing_score

    if diff > STRONG_OVERRIDE_MARGIN:
        recommendation = STRONGLY_FAVOR_NEW
        reason = (
            f"New request has significantly higher priority "
            f"({new_score} vs {existing_score})."
        )
    elif diff > 0:
        recommendation = FAVOR_NEW_NEEDS_REVIEW
        reason = (
            f"New request has slightly higher priority "
            f"({new_score} vs {existing_score})."
        )
    else:
        recommendation = FAVOR_EXISTING
        reason = (
            f"Existing reservation has higher or equal priority "
            f"({existing_score} vs {new_score})."
        )

    return PriorityComparison(
        new_score=new_score,
        existing_score=existing_score,
        difference=diff,
        recommendation=recommendation,
        reason=reason,
        should_override=recommendation == STRONGLY_FAVOR_NEW,
    )
