"""Cargo offer status machine and the vehicle assignment transaction.

Every function here runs inside the caller's unit of work (`get_db` for
requests, `session_scope()` elsewhere) and never commits. A raised error
leaves that unit of work to be rolled back, so no partial write survives.

Each status change re-reads the row with a lock and then writes through a
guarded UPDATE (`... WHERE status = <expected>`). If a concurrent writer got
there first the guard matches no row and the call fails cleanly.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from prometheus_client import Counter
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import (
    CargoUnavailable, Forbidden, InvalidTransition, NotFound, PersistenceError, VehicleUnavailable, persistence_guard,
)
from .models import (
    CARGO_CANCELED, CARGO_COMPLETED, CARGO_NEW, CARGO_TAKEN,
    OFFER_ACCEPTED, OFFER_PENDING, OFFER_REJECTED,
    ROUTE_ACCEPTED, ROUTE_ACTIVE_STATUSES, ROUTE_CANCELED, ROUTE_COMPLETED, ROUTE_IN_PROGRESS, ROUTE_PLANNED,
    ROUTE_SUGGESTED,
    VEHICLE_ASSIGNED, VEHICLE_IDLE,
    CargoOffer, Fleet, OfferRequest, Route, User, Vehicle,
)


log = logging.getLogger("fleetopia.assignment")

STATUS_TRANSITIONS = Counter(
    "fleetopia_cargo_status_transitions_total",
    "Cargo offer status transitions",
    ["from", "to"],
)
ASSIGN_ATTEMPTS = Counter(
    "fleetopia_assign_attempts_total",
    "Assignment transaction outcomes",
    ["result"],
)

CARGO_GONE_MESSAGE = "This offer is no longer available for assignment"
VEHICLE_GONE_MESSAGE = "This vehicle is no longer available for assignment"


@dataclass
class AssignmentResult:
    cargo: CargoOffer
    vehicle: Vehicle
    route: Route


def _locked(db: Session, model, obj_id: uuid.UUID):
    # populate_existing: a row already in the identity map must not hide the committed state
    stmt = select(model).where(model.id == obj_id).with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalars().first()


def _guarded_update(db: Session, model, obj_id: uuid.UUID, expected: tuple[str, ...], **values) -> bool:
    res = db.execute(
        update(model)
        .where(model.id == obj_id, model.status.in_(expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    db.get(model, obj_id, populate_existing=True)
    return True


def _count(frm: str, to: str) -> None:
    STATUS_TRANSITIONS.labels(frm, to).inc()


def _endpoint(cargo: CargoOffer, side: str) -> dict:
    if side == "from":
        return {"address": cargo.from_address, "city": cargo.from_city, "country": cargo.from_country, "lat": cargo.pickup_lat, "lng": cargo.pickup_lng}
    return {"address": cargo.to_address, "city": cargo.to_city, "country": cargo.to_country, "lat": cargo.delivery_lat, "lng": cargo.delivery_lng}


def _load_owned_offer(db: Session, cargo_offer_id: uuid.UUID, actor: User, action: str) -> CargoOffer:
    cargo = _locked(db, CargoOffer, cargo_offer_id)
    if cargo is None:
        raise NotFound("Offer not found")
    if cargo.user_id != actor.id:
        raise Forbidden(f"Only the poster can {action} this offer")
    return cargo


def _release_active_route(db: Session, cargo: CargoOffer, route_status: str, now: datetime) -> Route | None:
    """Close the cargo's live route and hand its vehicle back to the idle pool."""
    route = db.execute(
        select(Route)
        .where(Route.cargo_offer_id == cargo.id, Route.status.in_(ROUTE_ACTIVE_STATUSES))
        .order_by(Route.created_at.desc())
        .with_for_update()
    ).scalars().first()
    if route is None:
        return None
    route.status = route_status
    route.updated_at = now
    released = _guarded_update(
        db, Vehicle, route.vehicle_id, (VEHICLE_ASSIGNED,),
        status=VEHICLE_IDLE, current_route=None, updated_at=now,
    )
    if not released:
        # Vehicle moved on through its own trip lifecycle; leave it alone
        log.info("route %s closed; vehicle %s was no longer assigned", route.id, route.vehicle_id)
    db.flush()
    return route


def _reject_competing_requests(db: Session, cargo_id: uuid.UUID, now: datetime, keep: uuid.UUID | None = None) -> int:
    """Close every still-pending bid on an offer, except `keep`."""
    q = update(OfferRequest).where(OfferRequest.cargo_offer_id == cargo_id, OfferRequest.status == OFFER_PENDING)
    if keep is not None:
        q = q.where(OfferRequest.id != keep)
    res = db.execute(q.values(status=OFFER_REJECTED, updated_at=now).execution_options(synchronize_session=False))
    return res.rowcount or 0


def assign(db: Session, cargo_offer_id: uuid.UUID, vehicle_id: uuid.UUID, actor: User) -> AssignmentResult:
    """Assign an idle vehicle from the actor's fleets to a NEW cargo offer."""
    try:
        cargo = _locked(db, CargoOffer, cargo_offer_id)
        if cargo is None or cargo.status != CARGO_NEW:
            ASSIGN_ATTEMPTS.labels("cargo_unavailable").inc()
            raise CargoUnavailable(CARGO_GONE_MESSAGE, {"cargo_offer_id": str(cargo_offer_id), "status": cargo.status if cargo else None})
        if cargo.user_id == actor.id:
            raise Forbidden("You cannot take your own offer")
        vehicle = _locked(db, Vehicle, vehicle_id)
        if vehicle is None or vehicle.status != VEHICLE_IDLE:
            ASSIGN_ATTEMPTS.labels("vehicle_unavailable").inc()
            raise VehicleUnavailable(VEHICLE_GONE_MESSAGE, {"vehicle_id": str(vehicle_id), "status": vehicle.status if vehicle else None})
        fleet = db.get(Fleet, vehicle.fleet_id)
        if fleet is None or fleet.owner_user_id != actor.id:
            raise Forbidden("Vehicle is not part of your fleets")

        now = datetime.utcnow()
        taken = _guarded_update(
            db, CargoOffer, cargo.id, (CARGO_NEW,),
            status=CARGO_TAKEN, accepted_by_user_id=fleet.owner_user_id, accepted_at=now, updated_at=now,
        )
        if not taken:
            ASSIGN_ATTEMPTS.labels("lost_race").inc()
            raise CargoUnavailable(CARGO_GONE_MESSAGE, {"cargo_offer_id": str(cargo.id)})
        claimed = _guarded_update(
            db, Vehicle, vehicle.id, (VEHICLE_IDLE,),
            status=VEHICLE_ASSIGNED, current_route=f"{cargo.from_city} → {cargo.to_city}", updated_at=now,
        )
        if not claimed:
            ASSIGN_ATTEMPTS.labels("lost_race").inc()
            raise VehicleUnavailable(VEHICLE_GONE_MESSAGE, {"vehicle_id": str(vehicle.id)})

        route = Route(
            name=f"Route for {cargo.title}",
            cargo_offer_id=cargo.id,
            vehicle_id=vehicle.id,
            fleet_id=vehicle.fleet_id,
            start_point=_endpoint(cargo, "from"),
            end_point=_endpoint(cargo, "to"),
            status=ROUTE_PLANNED,
            created_at=now,
            updated_at=now,
        )
        db.add(route)
        _reject_competing_requests(db, cargo.id, now)
        db.flush()
    except SQLAlchemyError as e:
        ASSIGN_ATTEMPTS.labels("persistence_error").inc()
        log.error("assignment cargo=%s vehicle=%s failed in store: %s", cargo_offer_id, vehicle_id, e)
        raise PersistenceError("Assignment could not be stored") from e

    ASSIGN_ATTEMPTS.labels("assigned").inc()
    _count(CARGO_NEW, CARGO_TAKEN)
    log.info("assigned cargo=%s vehicle=%s route=%s by=%s", cargo.id, vehicle.id, route.id, actor.id)
    return AssignmentResult(cargo=cargo, vehicle=vehicle, route=route)


@persistence_guard("Offer acceptance")
def accept_offer(db: Session, cargo_offer_id: uuid.UUID, actor: User) -> CargoOffer:
    """A carrier takes a NEW offer directly, without naming a vehicle."""
    cargo = _locked(db, CargoOffer, cargo_offer_id)
    if cargo is None:
        raise NotFound("Offer not found")
    if cargo.user_id == actor.id:
        raise Forbidden("You cannot accept your own offer")
    if cargo.status != CARGO_NEW:
        raise CargoUnavailable("Offer is no longer available")
    now = datetime.utcnow()
    if not _guarded_update(db, CargoOffer, cargo.id, (CARGO_NEW,), status=CARGO_TAKEN, accepted_by_user_id=actor.id, accepted_at=now, updated_at=now):
        raise CargoUnavailable("Offer is no longer available")
    _reject_competing_requests(db, cargo.id, now)
    db.flush()
    _count(CARGO_NEW, CARGO_TAKEN)
    return cargo


@persistence_guard("Offer acceptance")
def accept_offer_request(db: Session, request_id: uuid.UUID, actor: User) -> tuple[CargoOffer, OfferRequest]:
    """The poster accepts one transporter's priced offer; competing offers are rejected."""
    req = _locked(db, OfferRequest, request_id)
    if req is None:
        raise NotFound("Offer request not found")
    cargo = _load_owned_offer(db, req.cargo_offer_id, actor, "accept offers on")
    if req.status != OFFER_PENDING:
        raise InvalidTransition("Offer request is no longer pending")
    if cargo.status != CARGO_NEW:
        raise CargoUnavailable("Offer is no longer available")
    now = datetime.utcnow()
    taken = _guarded_update(
        db, CargoOffer, cargo.id, (CARGO_NEW,),
        status=CARGO_TAKEN, accepted_by_user_id=req.transporter_id, accepted_at=now,
        price_cents=req.price_cents, updated_at=now,
    )
    if not taken:
        raise CargoUnavailable("Offer is no longer available")
    req.status = OFFER_ACCEPTED
    req.updated_at = now
    _reject_competing_requests(db, cargo.id, now, keep=req.id)
    db.flush()
    _count(CARGO_NEW, CARGO_TAKEN)
    return cargo, req


@persistence_guard("Delivery")
def deliver(db: Session, cargo_offer_id: uuid.UUID, actor: User) -> CargoOffer:
    cargo = _load_owned_offer(db, cargo_offer_id, actor, "mark as delivered")
    if cargo.status != CARGO_TAKEN:
        raise InvalidTransition("Offer must be accepted to mark as delivered", {"status": cargo.status})
    now = datetime.utcnow()
    if not _guarded_update(db, CargoOffer, cargo.id, (CARGO_TAKEN,), status=CARGO_COMPLETED, updated_at=now):
        raise InvalidTransition("Offer changed while marking as delivered")
    _release_active_route(db, cargo, ROUTE_COMPLETED, now)
    _count(CARGO_TAKEN, CARGO_COMPLETED)
    return cargo


@persistence_guard("Repost")
def repost(db: Session, cargo_offer_id: uuid.UUID, actor: User) -> CargoOffer:
    cargo = _load_owned_offer(db, cargo_offer_id, actor, "repost")
    previous = cargo.status
    if previous not in (CARGO_TAKEN, CARGO_COMPLETED):
        raise InvalidTransition("Only TAKEN or COMPLETED offers can be reposted", {"status": previous})
    now = datetime.utcnow()
    reset = _guarded_update(
        db, CargoOffer, cargo.id, (CARGO_TAKEN, CARGO_COMPLETED),
        status=CARGO_NEW, accepted_by_user_id=None, accepted_at=None, updated_at=now,
    )
    if not reset:
        raise InvalidTransition("Offer changed while reposting")
    _release_active_route(db, cargo, ROUTE_CANCELED, now)
    # The previous deal is void; bidding starts over
    db.execute(
        update(OfferRequest)
        .where(OfferRequest.cargo_offer_id == cargo.id, OfferRequest.status.in_((OFFER_PENDING, OFFER_ACCEPTED)))
        .values(status=OFFER_REJECTED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.flush()
    _count(previous, CARGO_NEW)
    return cargo


@persistence_guard("Cancellation")
def cancel(db: Session, cargo_offer_id: uuid.UUID, actor: User) -> CargoOffer:
    cargo = _load_owned_offer(db, cargo_offer_id, actor, "cancel")
    if cargo.status != CARGO_NEW:
        raise InvalidTransition("Only NEW offers can be canceled", {"status": cargo.status})
    now = datetime.utcnow()
    if not _guarded_update(db, CargoOffer, cargo.id, (CARGO_NEW,), status=CARGO_CANCELED, updated_at=now):
        raise InvalidTransition("Offer changed while canceling")
    _reject_competing_requests(db, cargo.id, now)
    db.flush()
    _count(CARGO_NEW, CARGO_CANCELED)
    return cargo


# COMPLETED and CANCELED are reached only through deliver and repost
ROUTE_PROGRESSION = {
    ROUTE_PLANNED: (ROUTE_ACCEPTED, ROUTE_IN_PROGRESS),
    ROUTE_SUGGESTED: (ROUTE_ACCEPTED,),
    ROUTE_ACCEPTED: (ROUTE_IN_PROGRESS,),
}


@persistence_guard("Route update")
def advance_route(db: Session, route_id: uuid.UUID, actor: User, target: str) -> Route:
    """Move a live route forward on behalf of the fleet that runs it."""
    route = _locked(db, Route, route_id)
    if route is None:
        raise NotFound("Route not found")
    fleet = db.get(Fleet, route.fleet_id)
    if fleet is None or fleet.owner_user_id != actor.id:
        raise NotFound("Route not found")
    previous = route.status
    sources = tuple(s for s, targets in ROUTE_PROGRESSION.items() if target in targets)
    if previous not in sources:
        raise InvalidTransition(f"Route cannot move from {previous} to {target}", {"status": previous, "target": target})
    if not _guarded_update(db, Route, route.id, sources, status=target, updated_at=datetime.utcnow()):
        raise InvalidTransition("Route changed while updating its status")
    log.info("route %s status %s -> %s by=%s", route.id, previous, target, actor.id)
    return route


@persistence_guard("Vehicle status update")
def set_operational_status(db: Session, vehicle: Vehicle, new_status: str) -> Vehicle:
    """Move a vehicle between the states outside the assignment lifecycle."""
    if new_status == VEHICLE_ASSIGNED or vehicle.status == VEHICLE_ASSIGNED:
        raise InvalidTransition("Assignment status is managed by cargo assignment", {"status": vehicle.status})
    previous = vehicle.status
    if previous == new_status:
        return vehicle
    if not _guarded_update(db, Vehicle, vehicle.id, (previous,), status=new_status, updated_at=datetime.utcnow()):
        raise VehicleUnavailable("Vehicle changed while updating its status", {"vehicle_id": str(vehicle.id)})
    log.info("vehicle %s status %s -> %s", vehicle.id, previous, new_status)
    return vehicle
