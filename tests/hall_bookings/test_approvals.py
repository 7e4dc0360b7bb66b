import os
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from types import SimpleNamespace

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from sqlalchemy.exc import OperationalError

from hall_bookings_service import decision_log, models, schemas
from hall_bookings_service.approvals import OVERRIDE_REJECTION_REASON, approve, reject
from hall_bookings_service.arbitration import submit
from hall_bookings_service.auth import Principal
from hall_bookings_service.catalog import StaticHallCatalog
from hall_bookings_service.database import SessionLocal
from hall_bookings_service.errors import (
    AlreadyApproved,
    ArbitrationError,
    InvalidTransition,
    NotFound,
    ReservationConflict,
    StoreFailure,
)
from hall_bookings_service.locks import ResourceLockRegistry, lock_in_database

COORDINATOR = Principal(user_id=1, username="coord1", role="coordinator")
ADMIN = Principal(user_id=99, username="admin1", role="admin")
CATALOG = StaticHallCatalog(["R1", "R2"])

WINDOW_START = datetime(2025, 3, 10, 10, 0)


def make_request(**overrides) -> schemas.ReservationCreate:
    data = {
        "resource_id": "R1",
        "start_time": WINDOW_START,
        "end_time": WINDOW_START + timedelta(hours=2),
        "category": "Student",
        "expected_attendance": 50,
        "event_title": "Robotics club meetup",
        "faculty_name": "Dr. Rao",
    }
    data.update(overrides)
    return schemas.ReservationCreate(**data)


def submit_pair(db):
    """Student request ten days ahead, then a same-day Institutional override."""
    first = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    ).reservation
    override = submit(
        db,
        make_request(
            start_time=datetime(2025, 3, 10, 11, 0),
            end_time=datetime(2025, 3, 10, 13, 0),
            category="Institutional",
            expected_attendance=200,
            override_requested=True,
        ),
        COORDINATOR,
        CATALOG,
        now=datetime(2025, 3, 10, 8, 0),
    ).reservation
    return first, override


def test_approve_plain_reservation(db):
    reservation = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    ).reservation

    approved = approve(db, reservation.id, ADMIN, remarks="Looks good")

    assert approved.status == models.ReservationStatus.APPROVED
    entries = decision_log.history(db, reservation.id)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.action == models.DecisionAction.APPROVED
    assert entry.performed_by == ADMIN.user_id
    assert entry.previous_status == models.ReservationStatus.PENDING
    assert entry.new_status == models.ReservationStatus.APPROVED
    assert entry.remarks == "Looks good"
    assert entry.score_snapshot == 30
    assert entry.category_snapshot == models.EventCategory.STUDENT


def test_approving_override_rejects_overridden_reservation(db):
    first, override = submit_pair(db)

    approve(db, override.id, ADMIN)

    db.expire_all()
    first = db.get(models.Reservation, first.id)
    override = db.get(models.Reservation, override.id)
    assert override.status == models.ReservationStatus.APPROVED
    assert first.status == models.ReservationStatus.REJECTED
    assert first.rejection_reason == OVERRIDE_REJECTION_REASON

    first_entries = decision_log.history(db, first.id)
    override_entries = decision_log.history(db, override.id)
    assert [e.action for e in first_entries] == [models.DecisionAction.OVERRIDE_REJECTED]
    assert first_entries[0].conflict_snapshot == override.id
    assert first_entries[0].score_snapshot == 30
    assert [e.action for e in override_entries] == [models.DecisionAction.APPROVED]
    assert override_entries[0].score_snapshot == 120
    # causal order: the displaced reservation is logged before the approval
    assert first_entries[0].id < override_entries[0].id


def test_approving_override_displaces_an_already_approved_reservation(db):
    first = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    ).reservation
    approve(db, first.id, ADMIN)
    override = submit(
        db,
        make_request(category="Institutional", override_requested=True),
        COORDINATOR,
        CATALOG,
        now=WINDOW_START - timedelta(days=10),
    ).reservation
    assert override.overridden_reservation_id == first.id

    approve(db, override.id, ADMIN)

    db.expire_all()
    assert db.get(models.Reservation, first.id).status == models.ReservationStatus.REJECTED
    entries = decision_log.history(db, first.id)
    assert [e.action for e in entries] == [
        models.DecisionAction.APPROVED,
        models.DecisionAction.OVERRIDE_REJECTED,
    ]
    assert entries[1].previous_status == models.ReservationStatus.APPROVED


def test_override_whose_target_was_already_rejected_logs_only_approval(db):
    first, override = submit_pair(db)
    reject(db, first.id, ADMIN, reason="Double booked")

    approve(db, override.id, ADMIN)

    entries = decision_log.history(db, first.id)
    assert [e.action for e in entries] == [models.DecisionAction.REJECTED]
    db.expire_all()
    assert db.get(models.Reservation, first.id).rejection_reason == "Double booked"


def test_approval_fails_when_slot_became_conflicted(db):
    first, override = submit_pair(db)

    with pytest.raises(ReservationConflict) as excinfo:
        approve(db, first.id, ADMIN)

    assert excinfo.value.conflicting_id == override.id
    db.expire_all()
    assert db.get(models.Reservation, first.id).status == models.ReservationStatus.PENDING
    assert decision_log.history(db, first.id) == []


def test_approving_override_that_is_itself_challenged(db):
    first, override = submit_pair(db)
    challenger = submit(
        db,
        make_request(
            start_time=datetime(2025, 3, 10, 12, 0),
            end_time=datetime(2025, 3, 10, 14, 0),
            category="Departmental",
            override_requested=True,
        ),
        COORDINATOR,
        CATALOG,
        now=datetime(2025, 3, 10, 8, 30),
    ).reservation
    assert challenger.overridden_reservation_id == override.id

    approve(db, override.id, ADMIN)

    db.expire_all()
    assert db.get(models.Reservation, override.id).status == models.ReservationStatus.APPROVED
    assert db.get(models.Reservation, first.id).status == models.ReservationStatus.REJECTED
    # the challenger stays pending and can still displace the approved override
    assert db.get(models.Reservation, challenger.id).status == models.ReservationStatus.PENDING
    assert [e.action for e in decision_log.history(db, first.id)] == [
        models.DecisionAction.OVERRIDE_REJECTED
    ]


def test_challenged_override_still_blocked_by_unrelated_reservation(db):
    first, override = submit_pair(db)
    approve(db, override.id, ADMIN)
    challenger = submit(
        db,
        make_request(category="Departmental", override_requested=True),
        COORDINATOR,
        CATALOG,
        now=datetime(2025, 3, 10, 8, 30),
    ).reservation
    # overlaps the challenger but targets the approved override instead
    bystander = submit(
        db,
        make_request(
            start_time=datetime(2025, 3, 10, 11, 30),
            end_time=datetime(2025, 3, 10, 12, 30),
            category="Other",
            override_requested=True,
        ),
        COORDINATOR,
        CATALOG,
        now=datetime(2025, 3, 10, 8, 45),
    ).reservation
    assert challenger.overridden_reservation_id == override.id
    assert bystander.overridden_reservation_id == override.id

    with pytest.raises(ReservationConflict) as excinfo:
        approve(db, challenger.id, ADMIN)

    assert excinfo.value.conflicting_id == bystander.id
    db.expire_all()
    assert db.get(models.Reservation, challenger.id).status == models.ReservationStatus.PENDING
    assert db.get(models.Reservation, override.id).status == models.ReservationStatus.APPROVED


def test_approve_missing_reservation(db):
    with pytest.raises(NotFound):
        approve(db, 12345, ADMIN)


def test_approve_twice_raises_already_approved(db):
    reservation = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    ).reservation
    approve(db, reservation.id, ADMIN)

    with pytest.raises(AlreadyApproved):
        approve(db, reservation.id, ADMIN)
    assert len(decision_log.history(db, reservation.id)) == 1


def test_rejected_reservation_cannot_be_approved(db):
    reservation = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    ).reservation
    reject(db, reservation.id, ADMIN)

    with pytest.raises(InvalidTransition):
        approve(db, reservation.id, ADMIN)


def test_reject_pending_reservation_once_and_idempotently(db):
    reservation = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    ).reservation

    rejected = reject(db, reservation.id, ADMIN, reason="Hall under maintenance")
    assert rejected.status == models.ReservationStatus.REJECTED
    assert rejected.rejection_reason == "Hall under maintenance"

    again = reject(db, reservation.id, ADMIN, reason="Second click")
    assert again.status == models.ReservationStatus.REJECTED
    assert again.rejection_reason == "Hall under maintenance"

    entries = decision_log.history(db, reservation.id)
    assert len(entries) == 1
    assert entries[0].action == models.DecisionAction.REJECTED
    assert entries[0].remarks == "Hall under maintenance"


def test_reject_approved_reservation_is_invalid(db):
    reservation = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    ).reservation
    approve(db, reservation.id, ADMIN)

    with pytest.raises(InvalidTransition):
        reject(db, reservation.id, ADMIN)


def test_rejecting_frees_the_slot(db):
    reservation = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    ).reservation
    reject(db, reservation.id, ADMIN)

    result = submit(
        db, make_request(), COORDINATOR, CATALOG, now=WINDOW_START - timedelta(days=10)
    )
    assert result.reservation.conflict_flag is False


def test_failed_override_approval_rolls_back_everything(db, monkeypatch):
    first, override = submit_pair(db)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", broken_commit)

    with pytest.raises(StoreFailure):
        approve(db, override.id, ADMIN)

    check = SessionLocal()
    try:
        assert check.get(models.Reservation, first.id).status == models.ReservationStatus.PENDING
        assert check.get(models.Reservation, override.id).status == models.ReservationStatus.PENDING
        assert check.query(models.DecisionLogEntry).count() == 0
    finally:
        check.close()


def test_lock_timeout_raises_store_failure():
    locks = ResourceLockRegistry(timeout_seconds=0.05)
    with locks.hold("R1"):
        with pytest.raises(StoreFailure):
            with locks.hold("R1"):
                pass
        # other halls are independent
        with locks.hold("R2"):
            pass


class RecordingSession:
    def __init__(self, dialect_name):
        self.dialect_name = dialect_name
        self.statements = []

    def get_bind(self):
        return SimpleNamespace(dialect=SimpleNamespace(name=self.dialect_name))

    def execute(self, statement, params=None):
        self.statements.append((str(statement), params))


def test_database_lock_on_postgresql_is_advisory_and_bounded():
    session = RecordingSession("postgresql")

    lock_in_database(session, "Seminar Hall")

    assert session.statements[0][0].startswith("SET LOCAL lock_timeout = '")
    assert session.statements[1] == (
        "SELECT pg_advisory_xact_lock(hashtext(:resource_id))",
        {"resource_id": "Seminar Hall"},
    )


def test_database_lock_is_skipped_on_sqlite(db):
    session = RecordingSession("sqlite")
    lock_in_database(session, "R1")
    assert session.statements == []

    # the real session is sqlite too
    lock_in_database(db, "R1")


def race(*operations):
    """Run each operation in its own thread and session, released together."""
    barrier = threading.Barrier(len(operations))

    def worker(operation):
        session = SessionLocal()
        try:
            barrier.wait()
            return operation(session)
        except ArbitrationError as exc:
            return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(operations)) as pool:
        return list(pool.map(worker, operations))


def assert_override_outcome_is_consistent(db, first, override):
    db.expire_all()
    first = db.get(models.Reservation, first.id)
    override = db.get(models.Reservation, override.id)
    first_actions = [e.action for e in decision_log.history(db, first.id)]
    override_actions = [e.action for e in decision_log.history(db, override.id)]

    assert override.status == models.ReservationStatus.APPROVED
    assert first.status == models.ReservationStatus.REJECTED
    assert override_actions == [models.DecisionAction.APPROVED]
    assert first_actions in (
        [models.DecisionAction.OVERRIDE_REJECTED],
        [models.DecisionAction.REJECTED],
    )
    return first_actions


def test_override_approval_racing_rejection_of_target(db):
    first, override = submit_pair(db)

    outcomes = race(
        lambda session: approve(session, override.id, ADMIN),
        lambda session: reject(session, first.id, ADMIN, reason="Double booked"),
    )

    assert not any(isinstance(o, Exception) for o in outcomes)
    first_actions = assert_override_outcome_is_consistent(db, first, override)
    expected_reason = (
        OVERRIDE_REJECTION_REASON
        if first_actions == [models.DecisionAction.OVERRIDE_REJECTED]
        else "Double booked"
    )
    assert db.get(models.Reservation, first.id).rejection_reason == expected_reason


def test_override_approved_twice_concurrently(db):
    first, override = submit_pair(db)

    outcomes = race(
        lambda session: approve(session, override.id, ADMIN),
        lambda session: approve(session, override.id, ADMIN),
    )

    assert sum(isinstance(o, AlreadyApproved) for o in outcomes) == 1
    assert sum(isinstance(o, models.Reservation) for o in outcomes) == 1
    assert assert_override_outcome_is_consistent(db, first, override) == [
        models.DecisionAction.OVERRIDE_REJECTED
    ]


def test_override_approval_racing_approval_of_target(db):
    first, override = submit_pair(db)

    outcomes = race(
        lambda session: approve(session, override.id, ADMIN),
        lambda session: approve(session, first.id, ADMIN),
    )

    # the target's own approval is blocked by the pending override, or finds
    # itself already displaced; never both approved
    assert any(isinstance(o, (ReservationConflict, InvalidTransition)) for o in outcomes)
    assert assert_override_outcome_is_consistent(db, first, override) == [
        models.DecisionAction.OVERRIDE_REJECTED
    ]


def test_decision_search_filters(db):
    first, override = submit_pair(db)
    approve(db, override.id, ADMIN)
    other = submit(
        db,
        make_request(resource_id="R2"),
        COORDINATOR,
        CATALOG,
        now=WINDOW_START - timedelta(days=10),
    ).reservation
    reject(db, other.id, Principal(user_id=77, username="admin2", role="admin"))

    everything = decision_log.search(db)
    assert [e.action for e in everything] == [
        models.DecisionAction.REJECTED,
        models.DecisionAction.APPROVED,
        models.DecisionAction.OVERRIDE_REJECTED,
    ]
    assert len(decision_log.search(db, performed_by=ADMIN.user_id)) == 2
    assert len(decision_log.search(db, action=models.DecisionAction.OVERRIDE_REJECTED)) == 1
    assert len(decision_log.search(db, limit=1)) == 1

    today = models.utcnow().date()
    assert len(decision_log.search(db, start_date=today, end_date=today)) == 3
    assert decision_log.search(db, end_date=date(2000, 1, 1)) == []
