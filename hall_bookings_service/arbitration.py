"""
Conflict resolution for incoming reservation requests.

A submission is validated, scored and checked against the live
reservations of its hall. Depending on the outcome it is either stored
(possibly flagged as an override of the conflicting reservation) or
answered with a Conflict result carrying a priority comparison and
alternative slots.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from common.cache import invalidate_availability

from . import models, schemas
from .auth import Principal
from .catalog import HallCatalog
from .database import atomic
from .errors import InvalidRequest, InvalidWindow, OutOfRange, PastWindow
from .locks import lock_in_database, resource_locks
from .overlap import find_conflict
from .scoring import PriorityComparison, ScoreBreakdown, compare, score
from .settings import MAX_ATTENDANCE
from .suggestions import AlternativeSlot, suggest_alternatives

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "resource_id",
    "start_time",
    "end_time",
    "category",
    "event_title",
    "faculty_name",
)

TEXT_LIMITS = {
    "resource_id": 100,
    "event_title": 200,
    "faculty_name": 120,
    "faculty_department": 120,
    "faculty_designation": 120,
    "faculty_email": 255,
    "event_description": 2000,
    "conflict_reason": 1000,
}


@dataclass
class Accepted:
    reservation: models.Reservation
    breakdown: ScoreBreakdown


@dataclass
class Conflict:
    existing: models.Reservation
    breakdown: ScoreBreakdown
    analysis: PriorityComparison
    alternatives: List[AlternativeSlot]


SubmissionResult = Union[Accepted, Conflict]


def validate_request(request: schemas.ReservationCreate, now: datetime) -> None:
    """
    Validate a submission, failing fast in a fixed order.

    Raises
    ------
    InvalidRequest
        A required field is missing or blank.
    InvalidWindow
        end_time is not strictly after start_time.
    PastWindow
        start_time is before ``now``.
    OutOfRange
        expected_attendance or a text field is out of bounds.
    """
    missing = [
        name for name in REQUIRED_FIELDS
        if getattr(request, name) is None or getattr(request, name) == ""
    ]
    if missing:
        raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")

    if request.end_time <= request.start_time:
        raise InvalidWindow("end_time must be after start_time")

    if request.start_time < now:
        raise PastWindow("Cannot reserve a time slot that has already started")

    attendance = request.expected_attendance or 0
    if attendance < 0 or attendance > MAX_ATTENDANCE:
        raise OutOfRange(f"expected_attendance must be between 0 and {MAX_ATTENDANCE}")

    for name, limit in TEXT_LIMITS.items():
        value = getattr(request, name)
        if value is not None and len(value) > limit:
            raise OutOfRange(f"{name} must be at most {limit} characters")


def submit(
    db: Session,
    request: schemas.ReservationCreate,
    principal: Principal,
    catalog: HallCatalog,
    now: Optional[datetime] = None,
) -> SubmissionResult:
    """
    Submit a reservation request.

    Behavior
    --------
    - No live conflict: a pending reservation is created.
    - Live conflict without override intent: nothing is created; a Conflict
      result describes the conflicting reservation, compares priorities and
      suggests alternatives.
    - Live conflict with override intent: a pending reservation is created
      with conflict_flag set and overridden_reservation_id pointing at the
      conflicting reservation, which is left untouched until approval.

    The conflict check and the insert run under the hall's lock in a single
    transaction.

    Parameters
    ----------
    db : Session
        Database session.
    request : ReservationCreate
        The submitted request.
    principal : Principal
        Authenticated requester.
    catalog : HallCatalog
        Hall catalog used for alternative suggestions.
    now : Optional[datetime]
        Submission time, naive UTC. Defaults to the current time.

    Returns
    -------
    Accepted or Conflict
    """
    now = now or models.utcnow()
    validate_request(request, now)

    attendance = request.expected_attendance or 0
    breakdown = score(request.category, now, request.start_time, attendance)

    reservation = None
    existing = None
    with resource_locks.hold(request.resource_id), atomic(db):
        lock_in_database(db, request.resource_id)
        existing = find_conflict(
            db, request.resource_id, request.start_time, request.end_time
        )

        if existing is None or request.override_requested:
            is_override = existing is not None
            reservation = models.Reservation(
                resource_id=request.resource_id,
                requester_id=principal.user_id,
                start_time=request.start_time,
                end_time=request.end_time,
                category=request.category,
                expected_attendance=attendance,
                score=breakdown.total,
                category_score=breakdown.category_score,
                advance_score=breakdown.advance_score,
                attendance_score=breakdown.attendance_score,
                status=models.ReservationStatus.PENDING,
                conflict_flag=is_override,
                overridden_reservation_id=existing.id if is_override else None,
                conflict_reason=(request.conflict_reason or "") if is_override else "",
                event_title=request.event_title,
                event_description=request.event_description,
                faculty_name=request.faculty_name,
                faculty_department=request.faculty_department,
                faculty_designation=request.faculty_designation,
                faculty_email=request.faculty_email,
                created_at=now,
                updated_at=now,
            )
            db.add(reservation)

    if reservation is not None:
        db.refresh(reservation)
        invalidate_availability(reservation.resource_id)
        if reservation.conflict_flag:
            logger.info(
                "Override reservation %s (score %s) submitted against %s (score %s) on %s",
                reservation.id, reservation.score, existing.id, existing.score,
                reservation.resource_id,
            )
        else:
            logger.info(
                "Reservation %s submitted for %s by principal %s",
                reservation.id, reservation.resource_id, principal.user_id,
            )
        return Accepted(reservation=reservation, breakdown=breakdown)

    analysis = compare(breakdown.total, existing.score)
    alternatives = suggest_alternatives(
        db, catalog, request.resource_id, request.start_time, request.end_time, now
    )
    logger.info(
        "Submission for %s conflicts with reservation %s (%s)",
        request.resource_id, existing.id, analysis.recommendation,
    )
    return Conflict(
        existing=existing,
        breakdown=breakdown,
        analysis=analysis,
        alternatives=alternatives,
    )
