from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import DecisionAction, EventCategory, ReservationStatus


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ReservationCreate(BaseModel):
    """
    Schema for submitting a reservation request.

    Fields are optional at the schema level so that the arbitration core
    can report missing fields, bad windows and out-of-range values in a
    fixed order with distinct errors. Timestamps are normalised to naive UTC.
    """
    resource_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    category: Optional[EventCategory] = None
    expected_attendance: Optional[int] = None

    event_title: Optional[str] = None
    event_description: Optional[str] = None
    faculty_name: Optional[str] = None
    faculty_department: Optional[str] = None
    faculty_designation: Optional[str] = None
    faculty_email: Optional[str] = None

    override_requested: bool = False
    conflict_reason: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalise_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    @field_validator(
        "resource_id", "event_title", "faculty_name", "faculty_department",
        "faculty_designation", "faculty_email",
    )
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else value


class ScoreRequest(BaseModel):
    """
    Schema for previewing the priority score of a prospective request.
    """
    category: EventCategory
    start_time: datetime
    expected_attendance: int = Field(default=0, ge=0)
    submission_time: Optional[datetime] = None

    @field_validator("start_time", "submission_time")
    @classmethod
    def normalise_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class ScoreRead(BaseModel):
    category_score: int
    advance_score: int
    attendance_score: int
    total: int

    model_config = ConfigDict(from_attributes=True)


class ReservationSummary(BaseModel):
    """
    Compact view of a reservation, used in conflict reports.
    """
    id: int
    resource_id: str
    start_time: datetime
    end_time: datetime
    category: EventCategory
    score: int
    status: ReservationStatus
    event_title: str
    faculty_name: str

    model_config = ConfigDict(from_attributes=True)


class ReservationRead(ReservationSummary):
    """
    Schema returned when reading reservation information.
    """
    requester_id: int
    expected_attendance: int
    category_score: int
    advance_score: int
    attendance_score: int
    conflict_flag: bool
    overridden_reservation_id: Optional[int] = None
    conflict_reason: str
    rejection_reason: str
    event_description: Optional[str] = None
    faculty_department: Optional[str] = None
    faculty_designation: Optional[str] = None
    faculty_email: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PriorityComparisonRead(BaseModel):
    new_score: int
    existing_score: int
    difference: int
    recommendation: str
    reason: str
    should_override: bool

    model_config = ConfigDict(from_attributes=True)


class AlternativeSlotRead(BaseModel):
    resource_id: str
    start_time: datetime
    end_time: datetime
    reason: str

    model_config = ConfigDict(from_attributes=True)


class ConflictRead(BaseModel):
    """
    Body of a 409 response to a submission that collides with a live
    reservation and did not request an override.
    """
    conflict: bool = True
    message: str
    existing: ReservationSummary
    score: ScoreRead
    analysis: PriorityComparisonRead
    alternatives: List[AlternativeSlotRead]


class SubmissionRead(BaseModel):
    message: str
    reservation: ReservationRead


class ConflictCheckRead(BaseModel):
    resource_id: str
    available: bool
    conflict: Optional[ReservationSummary] = None


class ApprovalRequest(BaseModel):
    remarks: Optional[str] = None


class RejectionRequest(BaseModel):
    reason: Optional[str] = None


class DecisionRead(BaseModel):
    """
    Schema returned when reading decision log entries.
    """
    id: int
    reservation_id: int
    action: DecisionAction
    performed_by: int
    previous_status: ReservationStatus
    new_status: ReservationStatus
    remarks: str
    score_snapshot: int
    category_snapshot: EventCategory
    conflict_snapshot: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
