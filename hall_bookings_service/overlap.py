from datetime import datetime
from typing import Iterable, Optional, Set

from sqlalchemy.orm import Session

from . import models


def windows_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """
    Return True if the half-open windows [start_a, end_a) and
    [start_b, end_b) intersect. Touching boundaries do not overlap.
    """
    return start_a < end_b and start_b < end_a


def _overlapping(
    db: Session,
    start_time: datetime,
    end_time: datetime,
    statuses: Iterable[models.ReservationStatus],
):
    return (
        db.query(models.Reservation)
        .filter(models.Reservation.status.in_(list(statuses)))
        .filter(models.Reservation.end_time > start_time)
        .filter(models.Reservation.start_time < end_time)
    )


def find_conflict(
    db: Session,
    resource_id: str,
    start_time: datetime,
    end_time: datetime,
    statuses: Iterable[models.ReservationStatus] = models.LIVE_STATUSES,
    exclude_ids: Optional[Iterable[int]] = None,
) -> Optional[models.Reservation]:
    """
    Find the canonical reservation conflicting with a window on a hall.

    A reservation conflicts when it is on the same hall, its status is in
    ``statuses`` and its window overlaps [start_time, end_time):
    - existing.end_time > start_time
    - existing.start_time < end_time

    Parameters
    ----------
    db : Session
        Database session.
    resource_id : str
        Hall name.
    start_time : datetime
        Proposed start time.
    end_time : datetime
        Proposed end time.
    statuses : Iterable[ReservationStatus]
        Statuses considered live, normally pending and approved.
    exclude_ids : Optional[Iterable[int]]
        Reservations to ignore (the one being re-validated on approval).

    Returns
    -------
    Optional[Reservation]
        The conflicting reservation with the highest score, ties broken by
        earliest creation, or None if the window is free.
    """
    q = _overlapping(db, start_time, end_time, statuses).filter(
        models.Reservation.resource_id == resource_id
    )

    exclude = [i for i in (exclude_ids or ()) if i is not None]
    if exclude:
        q = q.filter(models.Reservation.id.notin_(exclude))

    return q.order_by(
        models.Reservation.score.desc(),
        models.Reservation.created_at.asc(),
        models.Reservation.id.asc(),
    ).first()


def busy_resources(
    db: Session,
    start_time: datetime,
    end_time: datetime,
    statuses: Iterable[models.ReservationStatus] = models.LIVE_STATUSES,
) -> Set[str]:
    """
    Return the names of halls holding a live reservation that overlaps
    [start_time, end_time).
    """
    rows = (
        _overlapping(db, start_time, end_time, statuses)
        .with_entities(models.Reservation.resource_id)
        .distinct()
        .all()
    )
    return {row[0] for row in rows}
