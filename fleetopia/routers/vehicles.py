import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import assignment
from ..auth import get_current_user
from ..database import get_db
from ..errors import Forbidden, NotFound, ValidationError
from ..models import VEHICLE_IDLE, VEHICLE_STATUSES, VEHICLE_TYPES, Fleet, User, Vehicle, VehicleAvailability
from ..schemas import (
    AvailabilityIn, AvailabilityListOut, AvailabilityOut, VehicleCreateIn, VehicleOut,
    VehiclePositionIn, VehicleStatusIn, VehiclesListOut,
)
from .common import vehicle_out


router = APIRouter(prefix="/vehicles", tags=["vehicles"])


def _own_fleet(db: Session, fleet_id: uuid.UUID, user: User) -> Fleet:
    f = db.get(Fleet, fleet_id)
    if f is None:
        raise NotFound("Fleet not found")
    if f.owner_user_id != user.id:
        raise Forbidden("Fleet is not yours")
    return f


def _own_vehicle(db: Session, vehicle_id: uuid.UUID, user: User) -> Vehicle:
    v = db.get(Vehicle, vehicle_id)
    if v is None:
        raise NotFound("Vehicle not found")
    _own_fleet(db, v.fleet_id, user)
    return v


def _availability_out(a: VehicleAvailability, v: Vehicle) -> AvailabilityOut:
    return AvailabilityOut(
        id=str(a.id), vehicle_id=str(a.vehicle_id), user_id=str(a.user_id),
        vehicle_name=v.name, vehicle_type=v.vehicle_type, capacity_kg=v.capacity_kg,
        current_location=a.current_location, available_route=a.available_route,
        price_per_km_cents=a.price_per_km_cents, posted_at=a.posted_at,
    )


@router.post("", response_model=VehicleOut)
def create_vehicle(payload: VehicleCreateIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    fleet = _own_fleet(db, payload.fleet_id, user)
    vtype = payload.vehicle_type.upper()
    if vtype not in VEHICLE_TYPES:
        raise ValidationError("Unknown vehicle type", {"vehicle_type": payload.vehicle_type, "allowed": list(VEHICLE_TYPES)})
    if (payload.lat is None) != (payload.lng is None):
        raise ValidationError("lat and lng go together")
    now = datetime.utcnow()
    v = Vehicle(
        fleet_id=fleet.id, name=payload.name.strip(), license_plate=payload.license_plate.strip().upper(),
        vehicle_type=vtype, driver_name=payload.driver_name, capacity_kg=payload.capacity_kg,
        lat=payload.lat, lng=payload.lng, status=VEHICLE_IDLE, created_at=now, updated_at=now,
    )
    db.add(v)
    db.flush()
    return vehicle_out(v)


@router.get("", response_model=VehiclesListOut)
def list_vehicles(
    status: Optional[str] = None,
    fleet_id: Optional[uuid.UUID] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = db.query(Vehicle).join(Fleet, Fleet.id == Vehicle.fleet_id).filter(Fleet.owner_user_id == user.id)
    if status:
        q = q.filter(Vehicle.status == status)
    if fleet_id:
        q = q.filter(Vehicle.fleet_id == fleet_id)
    rows = q.order_by(Vehicle.created_at.asc()).all()
    return VehiclesListOut(vehicles=[vehicle_out(v) for v in rows])


@router.get("/available", response_model=AvailabilityListOut)
def list_available(limit: int = Query(default=50, ge=1, le=200), user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = (
        db.query(VehicleAvailability, Vehicle)
        .join(Vehicle, Vehicle.id == VehicleAvailability.vehicle_id)
        .order_by(VehicleAvailability.posted_at.desc())
        .limit(limit)
        .all()
    )
    return AvailabilityListOut(vehicles=[_availability_out(a, v) for a, v in rows])


@router.post("/available", response_model=AvailabilityOut)
def post_available(payload: AvailabilityIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    v = _own_vehicle(db, payload.vehicle_id, user)
    a = db.query(VehicleAvailability).filter(VehicleAvailability.vehicle_id == v.id).one_or_none()
    if a is None:
        a = VehicleAvailability(vehicle_id=v.id, user_id=user.id)
        db.add(a)
    # Reposting refreshes the listing
    a.current_location = payload.current_location.strip()
    a.available_route = payload.available_route.strip()
    a.price_per_km_cents = payload.price_per_km_cents
    a.posted_at = datetime.utcnow()
    db.flush()
    return _availability_out(a, v)


@router.delete("/available/{vehicle_id}")
def withdraw_available(vehicle_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    v = _own_vehicle(db, vehicle_id, user)
    a = db.query(VehicleAvailability).filter(VehicleAvailability.vehicle_id == v.id).one_or_none()
    if a is None:
        raise NotFound("Vehicle is not listed")
    db.delete(a)
    db.flush()
    return {"detail": "ok"}


@router.get("/{vehicle_id}", response_model=VehicleOut)
def get_vehicle(vehicle_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return vehicle_out(_own_vehicle(db, vehicle_id, user))


@router.post("/{vehicle_id}/position", response_model=VehicleOut)
def update_position(vehicle_id: uuid.UUID, payload: VehiclePositionIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    v = _own_vehicle(db, vehicle_id, user)
    v.lat = payload.lat
    v.lng = payload.lng
    v.updated_at = datetime.utcnow()
    db.flush()
    return vehicle_out(v)


@router.post("/{vehicle_id}/status", response_model=VehicleOut)
def update_status(vehicle_id: uuid.UUID, payload: VehicleStatusIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    v = _own_vehicle(db, vehicle_id, user)
    new_status = payload.status.strip().lower()
    if new_status not in VEHICLE_STATUSES:
        raise ValidationError("Unknown vehicle status", {"status": payload.status, "allowed": list(VEHICLE_STATUSES)})
    return vehicle_out(assignment.set_operational_status(db, v, new_status))
