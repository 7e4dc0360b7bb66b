from datetime import date, datetime, time
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models

DEFAULT_SEARCH_LIMIT = 100


def append_entry(
    db: Session,
    reservation: models.Reservation,
    action: models.DecisionAction,
    performed_by: int,
    previous_status: models.ReservationStatus,
    remarks: Optional[str] = None,
    conflict_id: Optional[int] = None,
) -> models.DecisionLogEntry:
    """
    Record a reservation state transition.

    The entry is added to the session but not committed: it must commit in
    the same transaction as the status change it describes.

    Parameters
    ----------
    db : Session
        Database session holding the open transaction.
    reservation : Reservation
        Reservation whose status was just changed.
    action : DecisionAction
        Kind of decision.
    performed_by : int
        Principal id of the admin who made the decision.
    previous_status : ReservationStatus
        Status before the transition.
    remarks : Optional[str]
        Remarks or rejection reason.
    conflict_id : Optional[int]
        Reservation that displaced this one, for OverrideRejected entries.

    Returns
    -------
    DecisionLogEntry
        The pending entry.
    """
    entry = models.DecisionLogEntry(
        reservation_id=reservation.id,
        action=action,
        performed_by=performed_by,
        previous_status=previous_status,
        new_status=reservation.status,
        remarks=remarks or "",
        score_snapshot=reservation.score,
        category_snapshot=reservation.category,
        conflict_snapshot=conflict_id,
        created_at=models.utcnow(),
    )
    db.add(entry)
    return entry


def history(db: Session, reservation_id: int) -> List[models.DecisionLogEntry]:
    """Decision log of one reservation, oldest first."""
    return (
        db.query(models.DecisionLogEntry)
        .filter(models.DecisionLogEntry.reservation_id == reservation_id)
        .order_by(models.DecisionLogEntry.id.asc())
        .all()
    )


def search(
    db: Session,
    performed_by: Optional[int] = None,
    action: Optional[models.DecisionAction] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> List[models.DecisionLogEntry]:
    """
    Search the decision log, newest first.

    ``end_date`` is inclusive: entries recorded at any time on that day match.
    """
    q = db.query(models.DecisionLogEntry)

    if performed_by is not None:
        q = q.filter(models.DecisionLogEntry.performed_by == performed_by)
    if action is not None:
        q = q.filter(models.DecisionLogEntry.action == action)
    if start_date is not None:
        q = q.filter(models.DecisionLogEntry.created_at >= datetime.combine(start_date, time.min))
    if end_date is not None:
        q = q.filter(models.DecisionLogEntry.created_at <= datetime.combine(end_date, time.max))

    return q.order_by(models.DecisionLogEntry.id.desc()).limit(limit).all()
