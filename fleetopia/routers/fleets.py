from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import Fleet, User, Vehicle
from ..schemas import FleetCreateIn, FleetOut, FleetsListOut


router = APIRouter(prefix="/fleets", tags=["fleets"])


@router.post("", response_model=FleetOut)
def create_fleet(payload: FleetCreateIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    f = Fleet(owner_user_id=user.id, name=payload.name.strip())
    db.add(f)
    db.flush()
    return FleetOut(id=str(f.id), name=f.name, owner_user_id=str(f.owner_user_id), vehicle_count=0, created_at=f.created_at)


@router.get("", response_model=FleetsListOut)
def list_fleets(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = (
        db.query(Fleet, func.count(Vehicle.id))
        .outerjoin(Vehicle, Vehicle.fleet_id == Fleet.id)
        .filter(Fleet.owner_user_id == user.id)
        .group_by(Fleet.id)
        .order_by(Fleet.created_at.asc())
        .all()
    )
    return FleetsListOut(fleets=[
        FleetOut(id=str(f.id), name=f.name, owner_user_id=str(f.owner_user_id), vehicle_count=int(n), created_at=f.created_at)
        for f, n in rows
    ])
