import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from .. import assignment, matching
from ..auth import get_current_user
from ..config import settings
from ..database import get_db
from ..errors import ValidationError
from ..models import CARGO_NEW, CargoOffer, Fleet, Route, SystemAlert, User
from ..schemas import (
    AssignIn, AssignmentOut, CargoSummaryOut, EventOut, EventsOut, MatchOut,
    SuggestionsOut, VehicleSummaryOut,
)
from .common import cargo_out, route_out, vehicle_out


router = APIRouter(prefix="/dispatcher", tags=["dispatcher"])

EVENTS_DEFAULT_WINDOW = timedelta(minutes=15)
EVENTS_LIMIT = 100


def match_out(m: matching.Match) -> MatchOut:
    c, v = m.cargo, m.vehicle
    return MatchOut(
        id=m.id,
        score=m.score,
        profit_score=m.profit_score,
        proximity_score=m.proximity_score,
        urgency_score=m.urgency_score,
        estimated_profit_cents=m.estimated_profit_cents,
        profit_margin=m.profit_margin,
        distance_to_pickup_km=m.distance_to_pickup_km,
        travel_minutes_to_pickup=m.travel_minutes_to_pickup,
        trip_km=m.trip_km,
        duration_hours=m.duration_hours,
        risk_level=m.risk_level,
        recommendation=m.recommendation,
        risk_factors=m.risk_factors,
        advantages=m.advantages,
        warnings=m.warnings,
        cargo=CargoSummaryOut(
            id=str(c.id), title=c.title, route=m.route_description, weight_kg=c.weight_kg,
            price_cents=c.price_cents, urgency=c.urgency, loading_date=c.loading_date,
        ),
        vehicle=VehicleSummaryOut(
            id=str(v.id), name=v.name, vehicle_type=v.vehicle_type, driver_name=v.driver_name, capacity_kg=v.capacity_kg,
        ),
    )


def _summary(matches: list[matching.Match]) -> dict:
    if not matches:
        return {"count": 0, "average_score": 0.0, "total_estimated_profit_cents": 0, "high_risk": 0}
    return {
        "count": len(matches),
        "average_score": round(sum(m.score for m in matches) / len(matches), 4),
        "total_estimated_profit_cents": sum(m.estimated_profit_cents for m in matches),
        "high_risk": sum(1 for m in matches if m.risk_level == "high"),
    }


def _suggestions(matches: list[matching.Match], filters: matching.MatchFilters, limit: int, **extra) -> SuggestionsOut:
    config = matching.MatchingConfig.from_settings()
    metadata = {
        "generated_at": datetime.utcnow().isoformat(),
        "limit": limit,
        "filters": {
            "urgency_only": filters.urgency_only,
            "min_profit_cents": filters.min_profit_cents,
            "max_distance_km": filters.max_distance_km,
            "vehicle_type": filters.vehicle_type,
            "exclude_risky": filters.exclude_risky,
        },
        "weights": {
            "profit": config.weight_profit,
            "proximity": config.weight_proximity,
            "urgency": config.weight_urgency,
        },
        **extra,
    }
    return SuggestionsOut(suggestions=[match_out(m) for m in matches], metadata=metadata, summary=_summary(matches))


@router.get("/suggestions", response_model=SuggestionsOut)
def suggestions(
    limit: int = Query(default=settings.MATCH_DEFAULT_LIMIT, ge=1, le=settings.MATCH_MAX_LIMIT),
    urgency_only: bool = False,
    min_profit_cents: Optional[int] = None,
    max_distance_km: float = Query(default=settings.MATCH_DEFAULT_MAX_DISTANCE_KM, gt=0),
    vehicle_type: Optional[str] = None,
    exclude_risky: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = matching.MatchFilters(
        urgency_only=urgency_only,
        min_profit_cents=min_profit_cents,
        max_distance_km=max_distance_km,
        vehicle_type=vehicle_type.upper() if vehicle_type else None,
        exclude_risky=exclude_risky,
    )
    matches = matching.find_best_matches(db, user, limit=limit, filters=filters)
    return _suggestions(matches, filters, limit)


@router.get("/assign-cargo", response_model=SuggestionsOut)
def assignment_options(
    cargo_id: Optional[uuid.UUID] = None,
    vehicle_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=settings.MATCH_DEFAULT_LIMIT, ge=1, le=settings.MATCH_MAX_LIMIT),
    max_distance_km: float = Query(default=settings.MATCH_DEFAULT_MAX_DISTANCE_KM, gt=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if (cargo_id is None) == (vehicle_id is None):
        raise ValidationError("Pass exactly one of cargo_id or vehicle_id")
    filters = matching.MatchFilters(max_distance_km=max_distance_km)
    if cargo_id is not None:
        matches = matching.find_matches_for_cargo(db, user, cargo_id, limit=limit, filters=filters)
        return _suggestions(matches, filters, limit, cargo_id=str(cargo_id))
    matches = matching.find_matches_for_vehicle(db, user, vehicle_id, limit=limit, filters=filters)
    return _suggestions(matches, filters, limit, vehicle_id=str(vehicle_id))


@router.post("/assign-cargo", response_model=AssignmentOut)
def assign_cargo(payload: AssignIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    res = assignment.assign(db, payload.cargo_offer_id, payload.vehicle_id, user)
    return AssignmentOut(
        message=f"Cargo assigned to {res.vehicle.name}",
        cargo=cargo_out(res.cargo),
        vehicle=vehicle_out(res.vehicle),
        route=route_out(res.route),
    )


@router.get("/events", response_model=EventsOut)
def events(since: Optional[datetime] = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Changes since the caller's last poll: offers, fleet routes and alerts addressed to them."""
    now = datetime.utcnow()
    if since is None:
        since = now - EVENTS_DEFAULT_WINDOW
    elif since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    out: list[EventOut] = []

    cargos = (
        db.query(CargoOffer)
        .filter(
            CargoOffer.updated_at > since,
            or_(
                CargoOffer.user_id == user.id,
                CargoOffer.accepted_by_user_id == user.id,
                CargoOffer.status == CARGO_NEW,
            ),
        )
        .order_by(CargoOffer.updated_at.asc())
        .limit(EVENTS_LIMIT)
        .all()
    )
    for c in cargos:
        mine = c.user_id == user.id or c.accepted_by_user_id == user.id
        out.append(EventOut(
            kind="cargo_status" if mine else "new_offer",
            entity_id=str(c.id), status=c.status, title=c.title, at=c.updated_at,
        ))

    routes = (
        db.query(Route)
        .join(Fleet, Fleet.id == Route.fleet_id)
        .filter(Fleet.owner_user_id == user.id, Route.updated_at > since)
        .order_by(Route.updated_at.asc())
        .limit(EVENTS_LIMIT)
        .all()
    )
    for r in routes:
        out.append(EventOut(kind="route_status", entity_id=str(r.id), status=r.status, title=r.name, at=r.updated_at))

    alerts = (
        db.query(SystemAlert)
        .filter(SystemAlert.user_id == user.id, SystemAlert.created_at > since)
        .order_by(SystemAlert.created_at.asc())
        .limit(EVENTS_LIMIT)
        .all()
    )
    for a in alerts:
        out.append(EventOut(
            kind=a.kind, entity_id=str(a.related_id or a.id),
            status="read" if a.read else "unread", title=a.message, at=a.created_at,
        ))

    out.sort(key=lambda e: (e.at, e.kind, e.entity_id))
    return EventsOut(events=out[:EVENTS_LIMIT], now=now)
