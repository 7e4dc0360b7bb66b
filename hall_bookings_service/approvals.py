"""
Approval state machine for reservations.

    pending -> approved   (terminal)
    pending -> rejected   (terminal)

Approving an override reservation rejects the reservation it displaces in
the same transaction, so no reader can observe one without the other.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from common.cache import invalidate_availability

from . import models
from .auth import Principal
from .database import atomic
from .decision_log import append_entry
from .errors import AlreadyApproved, InvalidTransition, NotFound, ReservationConflict
from .locks import lock_in_database, resource_locks
from .overlap import find_conflict

logger = logging.getLogger(__name__)

OVERRIDE_REJECTION_REASON = "Overridden by higher priority reservation"


def get_reservation(db: Session, reservation_id: int) -> models.Reservation:
    """
    Load a reservation by ID or raise NotFound.
    """
    reservation = (
        db.query(models.Reservation)
        .filter(models.Reservation.id == reservation_id)
        .first()
    )
    if reservation is None:
        raise NotFound("Reservation not found")
    return reservation


def _locked_reservation(db: Session, reservation_id: int) -> models.Reservation:
    # discard anything read before the lock was taken
    db.expire_all()
    return get_reservation(db, reservation_id)


def _challenger_ids(db: Session, reservation_id: int) -> List[int]:
    # live overrides filed against this reservation may share its window
    rows = (
        db.query(models.Reservation.id)
        .filter(models.Reservation.overridden_reservation_id == reservation_id)
        .filter(models.Reservation.conflict_flag.is_(True))
        .filter(models.Reservation.status.in_(list(models.LIVE_STATUSES)))
        .all()
    )
    return [row[0] for row in rows]


def approve(
    db: Session,
    reservation_id: int,
    principal: Principal,
    remarks: Optional[str] = None,
) -> models.Reservation:
    """
    Approve a pending reservation.

    Behavior
    --------
    - Re-checks the window against live reservations, ignoring this one.
      An override also ignores its target and the live overrides filed
      against it. A conflict leaves it pending.
    - For an override, the overridden reservation is rejected (if still
      live) and an OverrideRejected entry is logged.
    - The reservation is approved and an Approved entry is logged.
    All writes commit together under the hall's lock.

    Parameters
    ----------
    db : Session
        Database session.
    reservation_id : int
        Reservation to approve.
    principal : Principal
        Admin performing the approval.
    remarks : Optional[str]
        Remarks recorded in the decision log.

    Returns
    -------
    Reservation
        The approved reservation.

    Raises
    ------
    NotFound
        If the reservation does not exist.
    AlreadyApproved
        If it is already approved.
    InvalidTransition
        If it has been rejected.
    ReservationConflict
        If another live reservation now holds the window.
    """
    resource_id = get_reservation(db, reservation_id).resource_id

    with resource_locks.hold(resource_id), atomic(db):
        lock_in_database(db, resource_id)
        reservation = _locked_reservation(db, reservation_id)

        if reservation.status == models.ReservationStatus.APPROVED:
            raise AlreadyApproved("Reservation is already approved")
        if reservation.status == models.ReservationStatus.REJECTED:
            raise InvalidTransition("Rejected reservations cannot be approved")

        target_id = None
        exclude_ids = [reservation.id]
        if reservation.conflict_flag:
            target_id = reservation.overridden_reservation_id
            exclude_ids += [target_id, *_challenger_ids(db, reservation.id)]

        conflict = find_conflict(
            db,
            reservation.resource_id,
            reservation.start_time,
            reservation.end_time,
            exclude_ids=exclude_ids,
        )
        if conflict is not None:
            logger.warning(
                "Approval of reservation %s blocked by reservation %s",
                reservation.id, conflict.id,
            )
            raise ReservationConflict(
                "Hall is no longer available for this time slot",
                conflicting_id=conflict.id,
            )

        if target_id is not None:
            target = get_reservation(db, target_id)
            if target.status != models.ReservationStatus.REJECTED:
                previous = target.status
                target.status = models.ReservationStatus.REJECTED
                target.rejection_reason = OVERRIDE_REJECTION_REASON
                append_entry(
                    db,
                    target,
                    models.DecisionAction.OVERRIDE_REJECTED,
                    principal.user_id,
                    previous,
                    remarks=OVERRIDE_REJECTION_REASON,
                    conflict_id=reservation.id,
                )
                logger.info(
                    "Reservation %s overridden by reservation %s", target.id, reservation.id
                )

        previous = reservation.status
        reservation.status = models.ReservationStatus.APPROVED
        reservation.rejection_reason = ""
        append_entry(
            db,
            reservation,
            models.DecisionAction.APPROVED,
            principal.user_id,
            previous,
            remarks=remarks,
        )

    db.refresh(reservation)
    invalidate_availability(reservation.resource_id)
    logger.info("Reservation %s approved by principal %s", reservation.id, principal.user_id)
    return reservation


def reject(
    db: Session,
    reservation_id: int,
    principal: Principal,
    reason: Optional[str] = None,
) -> models.Reservation:
    """
    Reject a pending reservation.

    Rejecting an already rejected reservation returns it unchanged and
    logs nothing. Approved reservations cannot be rejected.

    Raises
    ------
    NotFound
        If the reservation does not exist.
    InvalidTransition
        If the reservation is approved.
    """
    resource_id = get_reservation(db, reservation_id).resource_id

    with resource_locks.hold(resource_id), atomic(db):
        lock_in_database(db, resource_id)
        reservation = _locked_reservation(db, reservation_id)

        if reservation.status == models.ReservationStatus.REJECTED:
            return reservation
        if reservation.status == models.ReservationStatus.APPROVED:
            raise InvalidTransition("Approved reservations cannot be rejected")

        previous = reservation.status
        reservation.status = models.ReservationStatus.REJECTED
        reservation.rejection_reason = reason or ""
        append_entry(
            db,
            reservation,
            models.DecisionAction.REJECTED,
            principal.user_id,
            previous,
            remarks=reason,
        )

    db.refresh(reservation)
    invalidate_availability(reservation.resource_id)
    logger.info("Reservation %s rejected by principal %s", reservation.id, principal.user_id)
    return reservation
