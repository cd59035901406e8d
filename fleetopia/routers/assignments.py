from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import assignment
from ..auth import get_current_user
from ..database import get_db
from ..models import ROUTE_ACTIVE_STATUSES, CargoOffer, Fleet, Route, User, Vehicle
from ..schemas import AssignIn, AssignmentOut
from .common import cargo_out, route_out, vehicle_out


router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.post("", response_model=AssignmentOut, status_code=201)
def create_assignment(payload: AssignIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    res = assignment.assign(db, payload.cargo_offer_id, payload.vehicle_id, user)
    return AssignmentOut(
        message=f"Cargo assigned to {res.vehicle.name}",
        cargo=cargo_out(res.cargo),
        vehicle=vehicle_out(res.vehicle),
        route=route_out(res.route),
    )


@router.get("", response_model=list[AssignmentOut])
def active_assignments(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = (
        db.query(Route, CargoOffer, Vehicle)
        .join(CargoOffer, CargoOffer.id == Route.cargo_offer_id)
        .join(Vehicle, Vehicle.id == Route.vehicle_id)
        .join(Fleet, Fleet.id == Route.fleet_id)
        .filter(Fleet.owner_user_id == user.id, Route.status.in_(ROUTE_ACTIVE_STATUSES))
        .order_by(Route.created_at.desc())
        .all()
    )
    return [
        AssignmentOut(message=r.name, cargo=cargo_out(c), vehicle=vehicle_out(v), route=route_out(r))
        for r, c, v in rows
    ]
