from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text

from .database import Base


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ReservationStatus(str, PyEnum):
    """
    Enumeration of reservation lifecycle states.

    Values
    ------
    pending
        Submitted and waiting for an admin decision. Holds the hall.
    approved
        Confirmed by an admin. Terminal.
    rejected
        Declined by an admin or displaced by an override. Terminal,
        no longer holds the hall.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


LIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED)


class EventCategory(str, PyEnum):
    """
    Event category, ordered by institutional weight.

    Institutional > Departmental > Student > Other.
    """
    INSTITUTIONAL = "Institutional"
    DEPARTMENTAL = "Departmental"
    STUDENT = "Student"
    OTHER = "Other"


class DecisionAction(str, PyEnum):
    APPROVED = "Approved"
    REJECTED = "Rejected"
    OVERRIDE_REJECTED = "OverrideRejected"


class Reservation(Base):
    """
    SQLAlchemy model representing a hall reservation request.

    Attributes
    ----------
    id : int
        Primary key.
    resource_id : str
        Name of the requested hall.
    requester_id : int
        Identifier of the coordinator who submitted the request.
    start_time, end_time : datetime
        Half-open window [start_time, end_time), naive UTC.
    category : EventCategory
        Event category used for priority scoring.
    expected_attendance : int
        Expected number of attendees.
    score : int
        Total priority score, computed once at submission.
    category_score, advance_score, attendance_score : int
        Components of ``score``.
    status : ReservationStatus
        Current lifecycle state.
    conflict_flag : bool
        Whether a live conflicting reservation existed at submission time.
    overridden_reservation_id : int or None
        Reservation this one intends to displace once approved.
    rejection_reason : str
        Reason recorded on rejection, empty otherwise.
    """
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    resource_id = Column(String(100), index=True, nullable=False)
    requester_id = Column(Integer, index=True, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    category = Column(Enum(EventCategory), nullable=False)
    expected_attendance = Column(Integer, nullable=False, default=0)

    score = Column(Integer, nullable=False)
    category_score = Column(Integer, nullable=False)
    advance_score = Column(Integer, nullable=False)
    attendance_score = Column(Integer, nullable=False)

    status = Column(Enum(ReservationStatus), nullable=False, default=ReservationStatus.PENDING)
    conflict_flag = Column(Boolean, nullable=False, default=False)
    overridden_reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    conflict_reason = Column(Text, nullable=False, default="")
    rejection_reason = Column(Text, nullable=False, default="")

    # event details, descriptive only
    event_title = Column(String(200), nullable=False)
    event_description = Column(Text, nullable=True)
    faculty_name = Column(String(120), nullable=False)
    faculty_department = Column(String(120), nullable=True)
    faculty_designation = Column(String(120), nullable=True)
    faculty_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_reservations_resource_window", "resource_id", "start_time", "end_time"),
    )


class DecisionLogEntry(Base):
    """
    Append-only audit record of a single reservation state transition.

    Attributes
    ----------
    id : int
        Primary key, also the insertion order.
    reservation_id : int
        Reservation whose status changed.
    action : DecisionAction
        Approved, Rejected or OverrideRejected.
    performed_by : int
        Principal id of the admin who made the decision.
    previous_status, new_status : ReservationStatus
        Status before and after the transition.
    remarks : str
        Free-text remarks or rejection reason.
    score_snapshot : int
        Reservation score at decision time.
    category_snapshot : EventCategory
        Reservation category at decision time.
    conflict_snapshot : int or None
        For OverrideRejected entries, the reservation that displaced this one.
    created_at : datetime
        When the transition was recorded.
    """
    __tablename__ = "decision_log"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), index=True, nullable=False)
    action = Column(Enum(DecisionAction), nullable=False)
    performed_by = Column(Integer, index=True, nullable=False)
    previous_status = Column(Enum(ReservationStatus), nullable=False)
    new_status = Column(Enum(ReservationStatus), nullable=False)
    remarks = Column(Text, nullable=False, default="")
    score_snapshot = Column(Integer, nullable=False)
    category_snapshot = Column(Enum(EventCategory), nullable=False)
    conflict_snapshot = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
