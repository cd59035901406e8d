import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import assignment
from ..auth import get_current_user
from ..database import get_db
from ..errors import NotFound
from ..models import ROUTE_ACCEPTED, ROUTE_IN_PROGRESS, Fleet, Route, User
from ..schemas import RouteOut, RoutesListOut
from .common import route_out


router = APIRouter(prefix="/routes", tags=["routes"])


@router.get("", response_model=RoutesListOut)
def list_routes(
    status: Optional[str] = None,
    vehicle_id: Optional[uuid.UUID] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = db.query(Route).join(Fleet, Fleet.id == Route.fleet_id).filter(Fleet.owner_user_id == user.id)
    if status:
        q = q.filter(Route.status == status)
    if vehicle_id:
        q = q.filter(Route.vehicle_id == vehicle_id)
    rows = q.order_by(Route.created_at.desc()).limit(200).all()
    return RoutesListOut(routes=[route_out(r) for r in rows])


@router.get("/{route_id}", response_model=RouteOut)
def get_route(route_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    r = db.get(Route, route_id)
    if r is None:
        raise NotFound("Route not found")
    fleet = db.get(Fleet, r.fleet_id)
    # Other fleets' routes are indistinguishable from missing ones
    if fleet is None or fleet.owner_user_id != user.id:
        raise NotFound("Route not found")
    return route_out(r)


@router.post("/{route_id}/accept", response_model=RouteOut)
def accept_route(route_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return route_out(assignment.advance_route(db, route_id, user, ROUTE_ACCEPTED))


@router.post("/{route_id}/start", response_model=RouteOut)
def start_route(route_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return route_out(assignment.advance_route(db, route_id, user, ROUTE_IN_PROGRESS))
