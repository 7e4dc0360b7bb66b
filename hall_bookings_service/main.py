import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from common.cache import availability_key, get_cached_json, set_cached_json

from . import approvals, arbitration, decision_log, models, schemas, scoring
from .auth import ADMIN, COORDINATOR, Principal, require_roles
from .catalog import HallCatalog, get_catalog
from .database import Base, engine, get_db
from .errors import ArbitrationError, InvalidWindow
from .overlap import find_conflict
from .rate_limiter import reservation_rate_limiter
from .settings import LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Hall Bookings Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

SERVICE_NAME = "hall_bookings"


def error_response(request: Request, status_code: int, detail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": status_code,
            "detail": detail,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return error_response(request, exc.status_code, exc.detail)


@app.exception_handler(ArbitrationError)
async def arbitration_exception_handler(request: Request, exc: ArbitrationError):
    return error_response(request, exc.status_code, exc.detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # malformed fields are reported like missing ones
    errors = [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]
    return error_response(
        request, status.HTTP_400_BAD_REQUEST, "Invalid request: " + "; ".join(errors)
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@app.get("/")
def root():
    """
    Health-check endpoint for the Hall Bookings service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": SERVICE_NAME, "status": "running"}


coordinator_only = require_roles(COORDINATOR)
admin_only = require_roles(ADMIN)
any_role = require_roles(COORDINATOR, ADMIN)


def ensure_owner_or_admin(reservation: models.Reservation, principal: Principal) -> None:
    if not (principal.is_admin or reservation.requester_id == principal.user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to view this reservation",
        )


# ---------- Submit reservation (coordinators / admins) ----------


@router_v1.post(
    "/reservations",
    response_model=schemas.SubmissionRead,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_409_CONFLICT: {"model": schemas.ConflictRead}},
    dependencies=[Depends(reservation_rate_limiter)],
)
def submit_reservation(
    request_in: schemas.ReservationCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_role),
    catalog: HallCatalog = Depends(get_catalog),
):
    """
    Submit a hall reservation request.

    Behavior
    --------
    - Validates required fields, the window, and bounded values.
    - Scores the request by category, advance notice and attendance.
    - If the hall is free, stores a pending reservation (HTTP 201).
    - If the hall is held and no override is requested, stores nothing and
      answers HTTP 409 with the conflicting reservation, a priority
      comparison and up to five alternative slots.
    - If the hall is held and ``override_requested`` is true, stores a
      pending reservation flagged as overriding the conflicting one.

    Parameters
    ----------
    request_in : ReservationCreate
        Hall, window, category, attendance and event details.
    db : Session
        Database session.
    principal : Principal
        Authenticated requester.
    catalog : HallCatalog
        Hall catalog used for alternative suggestions.

    Returns
    -------
    SubmissionRead or ConflictRead
    """
    result = arbitration.submit(db, request_in, principal, catalog)

    if isinstance(result, arbitration.Conflict):
        body = schemas.ConflictRead(
            message="Hall already booked. Do you want to request an override?",
            existing=schemas.ReservationSummary.model_validate(result.existing),
            score=schemas.ScoreRead.model_validate(result.breakdown),
            analysis=schemas.PriorityComparisonRead.model_validate(result.analysis),
            alternatives=[
                schemas.AlternativeSlotRead.model_validate(slot) for slot in result.alternatives
            ],
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=body.model_dump(mode="json"),
        )

    return schemas.SubmissionRead(
        message="Reservation request submitted and is pending admin approval",
        reservation=schemas.ReservationRead.model_validate(result.reservation),
    )


# ---------- Pure helpers exposed to callers ----------


@router_v1.post("/reservations/score", response_model=schemas.ScoreRead)
def preview_score(
    score_in: schemas.ScoreRequest,
    _: Principal = Depends(any_role),
):
    """
    Preview the priority score a request would receive.
    """
    submitted_at = score_in.submission_time or models.utcnow()
    breakdown = scoring.score(
        score_in.category, submitted_at, score_in.start_time, score_in.expected_attendance
    )
    return schemas.ScoreRead.model_validate(breakdown)


@router_v1.get("/reservations/conflicts", response_model=schemas.ConflictCheckRead)
def check_conflict(
    resource_id: str,
    start_time: datetime,
    end_time: datetime,
    db: Session = Depends(get_db),
    _: Principal = Depends(any_role),
):
    """
    Report the canonical live reservation overlapping a window, if any.

    Raises
    ------
    InvalidWindow
        If end_time is not after start_time.
    """
    start_time = schemas.to_naive_utc(start_time)
    end_time = schemas.to_naive_utc(end_time)
    if end_time <= start_time:
        raise InvalidWindow("end_time must be after start_time")

    conflict = find_conflict(db, resource_id, start_time, end_time)
    return schemas.ConflictCheckRead(
        resource_id=resource_id,
        available=conflict is None,
        conflict=schemas.ReservationSummary.model_validate(conflict) if conflict else None,
    )


@router_v1.get("/reservations/availability", response_model=List[schemas.ReservationSummary])
def list_availability(
    resource_id: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    db: Session = Depends(get_db),
    _: Principal = Depends(any_role),
):
    """
    List live (pending or approved) reservations, ordered by start time.

    Optional filters narrow the listing to one hall and/or to reservations
    overlapping [start_time, end_time). Per-hall listings are cached.
    """
    start_time = schemas.to_naive_utc(start_time)
    end_time = schemas.to_naive_utc(end_time)

    cache_key = None
    if resource_id:
        cache_key = availability_key(resource_id, start_time, end_time)
        cached = get_cached_json(cache_key)
        if cached is not None:
            return cached

    q = db.query(models.Reservation).filter(
        models.Reservation.status.in_(list(models.LIVE_STATUSES))
    )
    if resource_id:
        q = q.filter(models.Reservation.resource_id == resource_id)
    if start_time is not None:
        q = q.filter(models.Reservation.end_time > start_time)
    if end_time is not None:
        q = q.filter(models.Reservation.start_time < end_time)

    data = [
        schemas.ReservationSummary.model_validate(r).model_dump(mode="json")
        for r in q.order_by(models.Reservation.start_time.asc()).all()
    ]
    if cache_key is not None:
        set_cached_json(cache_key, data, ttl_seconds=60)
    return data


# ---------- Coordinator views ----------


@router_v1.get("/reservations/me", response_model=List[schemas.ReservationRead])
def list_my_reservations(
    db: Session = Depends(get_db),
    principal: Principal = Depends(coordinator_only),
):
    """
    List reservations submitted by the authenticated coordinator, newest first.
    """
    return (
        db.query(models.Reservation)
        .filter(models.Reservation.requester_id == principal.user_id)
        .order_by(models.Reservation.created_at.desc(), models.Reservation.id.desc())
        .all()
    )


# ---------- Admin views ----------


@router_v1.get("/reservations/pending", response_model=List[schemas.ReservationRead])
def list_pending_reservations(
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    """
    Admin: list reservations waiting for a decision, newest first.
    """
    return (
        db.query(models.Reservation)
        .filter(models.Reservation.status == models.ReservationStatus.PENDING)
        .order_by(models.Reservation.created_at.desc(), models.Reservation.id.desc())
        .all()
    )


@router_v1.get("/reservations", response_model=List[schemas.ReservationRead])
def list_all_reservations(
    resource_id: Optional[str] = None,
    status_filter: Optional[models.ReservationStatus] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    """
    Admin: list all reservations with optional hall and status filters.
    """
    q = db.query(models.Reservation)

    if resource_id:
        q = q.filter(models.Reservation.resource_id == resource_id)
    if status_filter is not None:
        q = q.filter(models.Reservation.status == status_filter)

    return q.order_by(models.Reservation.created_at.desc(), models.Reservation.id.desc()).all()


@router_v1.get("/reservations/{reservation_id}", response_model=schemas.ReservationRead)
def get_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_role),
):
    """
    Read the current state of a reservation (owner or admin).
    """
    reservation = approvals.get_reservation(db, reservation_id)
    ensure_owner_or_admin(reservation, principal)
    return reservation


@router_v1.get(
    "/reservations/{reservation_id}/decisions",
    response_model=List[schemas.DecisionRead],
)
def get_reservation_decisions(
    reservation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_role),
):
    """
    Read the decision history of a reservation, oldest first (owner or admin).
    """
    reservation = approvals.get_reservation(db, reservation_id)
    ensure_owner_or_admin(reservation, principal)
    return decision_log.history(db, reservation_id)


# ---------- Admin decisions ----------


@router_v1.patch(
    "/reservations/{reservation_id}/approve",
    response_model=schemas.ReservationRead,
    dependencies=[Depends(reservation_rate_limiter)],
)
def approve_reservation(
    reservation_id: int,
    body: Optional[schemas.ApprovalRequest] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_only),
):
    """
    Admin: approve a pending reservation.

    For an override reservation the displaced reservation is rejected in
    the same transaction.

    Raises
    ------
    NotFound, AlreadyApproved, InvalidTransition, ReservationConflict
    """
    remarks = body.remarks if body is not None else None
    return approvals.approve(db, reservation_id, principal, remarks)


@router_v1.patch(
    "/reservations/{reservation_id}/reject",
    response_model=schemas.ReservationRead,
    dependencies=[Depends(reservation_rate_limiter)],
)
def reject_reservation(
    reservation_id: int,
    body: Optional[schemas.RejectionRequest] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_only),
):
    """
    Admin: reject a pending reservation. Rejecting twice is a no-op.
    """
    reason = body.reason if body is not None else None
    return approvals.reject(db, reservation_id, principal, reason)


@router_v1.get("/decisions", response_model=List[schemas.DecisionRead])
def search_decisions(
    performed_by: Optional[int] = None,
    action: Optional[models.DecisionAction] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(default=decision_log.DEFAULT_SEARCH_LIMIT, ge=1, le=100),
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    """
    Admin: search the decision log, newest first.
    """
    return decision_log.search(
        db,
        performed_by=performed_by,
        action=action,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )


app.include_router(router_v1)
