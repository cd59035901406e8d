"""Cargo-to-vehicle matching.

Scores every (open cargo offer, idle vehicle) pair the requesting dispatcher
can act on and returns the best ones. Read-only: nothing here writes to the
database, and a suggestion may already be stale by the time someone acts on
it. The assignment module re-validates.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .geo import average_speed_kmph, estimate_trip_km, haversine_km, travel_minutes
from .models import CARGO_NEW, VEHICLE_IDLE, CargoOffer, Fleet, User, Vehicle


log = logging.getLogger("fleetopia.matching")

MATCH_QUERIES = Counter(
    "fleetopia_match_queries_total",
    "Matching engine queries",
    ["result"],
)

URGENCY_FLAG_SCORES = {"high": 1.0, "medium": 0.6, "low": 0.3}
CARGO_TYPE_DIFFICULTY = {
    "hazardous": 25,
    "refrigerated": 20,
    "fragile": 15,
    "electronics": 10,
    "food": 8,
    "general": 0,
}
SPECIAL_REQUIREMENT_KEYWORDS = ("hydraulic", "crane", "temperature", "special")


@dataclass(frozen=True)
class MatchFilters:
    urgency_only: bool = False
    min_profit_cents: int | None = None
    max_distance_km: float = 100.0
    vehicle_type: str | None = None
    exclude_risky: bool = False


@dataclass(frozen=True)
class MatchingConfig:
    weight_profit: float = 0.4
    weight_proximity: float = 0.3
    weight_urgency: float = 0.3
    proximity_half_km: float = 25.0
    profit_full_score_cents: int = 100000
    fuel_price_cents_per_liter: float = 150.0
    fuel_consumption_l_per_100km: float = 35.0
    driver_cost_cents_per_hour: float = 2500.0
    city_speed_kmph: float = 30.0
    highway_speed_kmph: float = 80.0
    loading_hours: float = 2.0
    default_capacity_kg: int = 3500

    @classmethod
    def from_settings(cls) -> "MatchingConfig":
        return cls(
            weight_profit=settings.MATCH_WEIGHT_PROFIT,
            weight_proximity=settings.MATCH_WEIGHT_PROXIMITY,
            weight_urgency=settings.MATCH_WEIGHT_URGENCY,
            proximity_half_km=settings.MATCH_PROXIMITY_HALF_KM,
            profit_full_score_cents=settings.MATCH_PROFIT_FULL_SCORE_CENTS,
            fuel_price_cents_per_liter=settings.FUEL_PRICE_CENTS_PER_LITER,
            fuel_consumption_l_per_100km=settings.FUEL_CONSUMPTION_L_PER_100KM,
            driver_cost_cents_per_hour=settings.DRIVER_COST_CENTS_PER_HOUR,
            city_speed_kmph=settings.AVG_SPEED_CITY_KMPH,
            highway_speed_kmph=settings.AVG_SPEED_HIGHWAY_KMPH,
            loading_hours=settings.LOADING_HOURS,
            default_capacity_kg=settings.DEFAULT_VEHICLE_CAPACITY_KG,
        )


@dataclass
class CargoAnalysis:
    trip_km: float
    duration_hours: float
    urgency_score: float
    difficulty: int
    international: bool
    hours_until_loading: float


@dataclass
class Match:
    cargo: CargoOffer
    vehicle: Vehicle
    score: float
    profit_score: float
    proximity_score: float
    urgency_score: float
    estimated_profit_cents: int
    profit_margin: float
    distance_to_pickup_km: float
    travel_minutes_to_pickup: int
    trip_km: float
    duration_hours: float
    risk_level: str
    recommendation: str
    risk_factors: list[str] = field(default_factory=list)
    advantages: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return f"{self.cargo.id}-{self.vehicle.id}"

    @property
    def route_description(self) -> str:
        return f"{self.cargo.from_city} → {self.cargo.to_city}"


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def urgency_score(cargo: CargoOffer, now: datetime) -> float:
    """Max of the poster's urgency flag and how close the loading date is."""
    hours = (cargo.loading_date - now).total_seconds() / 3600
    if hours < 24:
        by_deadline = 1.0
    elif hours < 48:
        by_deadline = 0.75
    elif hours < 72:
        by_deadline = 0.5
    else:
        by_deadline = 0.25
    return max(URGENCY_FLAG_SCORES.get((cargo.urgency or "").lower(), 0.3), by_deadline)


def difficulty_score(cargo: CargoOffer) -> int:
    score = 0
    weight = cargo.weight_kg or 0
    if weight > 20000:
        score += 30
    elif weight > 10000:
        score += 20
    elif weight > 5000:
        score += 10
    score += CARGO_TYPE_DIFFICULTY.get((cargo.cargo_type or "").lower(), 5)
    for req in cargo.requirements or []:
        if any(k in str(req).lower() for k in SPECIAL_REQUIREMENT_KEYWORDS):
            score += 7
    volume = cargo.volume_m3 or 0
    if volume > 80:
        score += 15
    elif volume > 50:
        score += 10
    elif volume > 20:
        score += 5
    if _is_international(cargo):
        score += 10
    return min(100, score)


def _is_international(cargo: CargoOffer) -> bool:
    return (cargo.from_country or "").strip().lower() != (cargo.to_country or "").strip().lower()


def analyze_cargo(cargo: CargoOffer, config: MatchingConfig, now: datetime) -> CargoAnalysis:
    international = _is_international(cargo)
    if None not in (cargo.pickup_lat, cargo.pickup_lng, cargo.delivery_lat, cargo.delivery_lng):
        trip_km = haversine_km(cargo.pickup_lat, cargo.pickup_lng, cargo.delivery_lat, cargo.delivery_lng)
    else:
        trip_km = estimate_trip_km(cargo.from_country, cargo.to_country)
    speed = average_speed_kmph(trip_km, international, config.city_speed_kmph, config.highway_speed_kmph)
    return CargoAnalysis(
        trip_km=trip_km,
        duration_hours=trip_km / speed + config.loading_hours,
        urgency_score=urgency_score(cargo, now),
        difficulty=difficulty_score(cargo),
        international=international,
        hours_until_loading=(cargo.loading_date - now).total_seconds() / 3600,
    )


def _risk(cargo: CargoOffer, analysis: CargoAnalysis, distance_to_pickup: float, pickup_hours: float) -> tuple[str, list[str], float]:
    slack_hours = analysis.hours_until_loading - pickup_hours
    factors: list[str] = []
    if slack_hours < 0:
        factors.append("Vehicle cannot reach pickup before loading date")
    elif slack_hours < 12:
        factors.append("Tight schedule to pickup")
    if analysis.difficulty >= 60:
        factors.append("Complex cargo requirements")
    if (cargo.urgency or "").lower() == "high":
        factors.append("Urgent deadline")
    if distance_to_pickup > 80:
        factors.append("Long distance to pickup")
    if analysis.international:
        factors.append("Cross-border delivery")
    if slack_hours < 0 or len(factors) >= 3:
        level = "high"
    elif len(factors) >= 2:
        level = "medium"
    else:
        level = "low"
    return level, factors, slack_hours


def _recommendation(score: float) -> str:
    if score > 0.85:
        return "Excellent match - highly recommended"
    if score > 0.75:
        return "Good match - recommended"
    if score > 0.65:
        return "Acceptable match - consider carefully"
    return "Weak match - review before assigning"


def score_pair(
    cargo: CargoOffer,
    analysis: CargoAnalysis,
    vehicle: Vehicle,
    config: MatchingConfig,
) -> Match | None:
    """Score one pair; None when the vehicle cannot carry the cargo or has no position."""
    if vehicle.lat is None or vehicle.lng is None:
        return None
    if cargo.pickup_lat is None or cargo.pickup_lng is None:
        return None
    capacity = vehicle.capacity_kg or config.default_capacity_kg
    if (cargo.weight_kg or 0) > capacity:
        return None

    to_pickup_km = haversine_km(vehicle.lat, vehicle.lng, cargo.pickup_lat, cargo.pickup_lng)
    pickup_speed = average_speed_kmph(to_pickup_km, False, config.city_speed_kmph, config.highway_speed_kmph)
    pickup_minutes = travel_minutes(to_pickup_km, pickup_speed)
    pickup_hours = to_pickup_km / pickup_speed

    revenue = float(cargo.price_cents or 0)
    if cargo.price_type == "per_km":
        revenue = revenue * analysis.trip_km
    fuel_liters = (to_pickup_km + analysis.trip_km) / 100 * config.fuel_consumption_l_per_100km
    cost = fuel_liters * config.fuel_price_cents_per_liter
    cost += (analysis.duration_hours + pickup_hours) * config.driver_cost_cents_per_hour
    profit = revenue - cost
    margin = profit / revenue if revenue > 0 else 0.0

    profit_score = _clamp(profit / config.profit_full_score_cents) if config.profit_full_score_cents > 0 else 0.0
    proximity_score = 1.0 / (1.0 + to_pickup_km / config.proximity_half_km)
    score = round(
        config.weight_profit * profit_score
        + config.weight_proximity * proximity_score
        + config.weight_urgency * analysis.urgency_score,
        6,
    )
    risk_level, risk_factors, slack_hours = _risk(cargo, analysis, to_pickup_km, pickup_hours)

    advantages: list[str] = []
    if to_pickup_km < 20:
        advantages.append("Vehicle very close to pickup")
    if profit_score >= 0.8:
        advantages.append("High profit potential")
    if vehicle.status == VEHICLE_IDLE:
        advantages.append("Vehicle immediately available")
    if capacity and (cargo.weight_kg or 0) / capacity > 0.9:
        advantages.append("Near-full capacity utilization")
    warnings: list[str] = []
    if 0 <= slack_hours < 12:
        warnings.append("Tight pickup schedule")
    if profit_score < 0.4:
        warnings.append("Low profit margin")
    if analysis.difficulty > 70:
        warnings.append("Special handling required")

    return Match(
        cargo=cargo,
        vehicle=vehicle,
        score=score,
        profit_score=round(profit_score, 4),
        proximity_score=round(proximity_score, 4),
        urgency_score=round(analysis.urgency_score, 4),
        estimated_profit_cents=int(round(profit)),
        profit_margin=round(margin, 4),
        distance_to_pickup_km=round(to_pickup_km, 2),
        travel_minutes_to_pickup=pickup_minutes,
        trip_km=round(analysis.trip_km, 1),
        duration_hours=round(analysis.duration_hours, 2),
        risk_level=risk_level,
        recommendation=_recommendation(score),
        risk_factors=risk_factors,
        advantages=advantages,
        warnings=warnings,
    )


def _passes(m: Match, filters: MatchFilters) -> bool:
    if m.distance_to_pickup_km > filters.max_distance_km:
        return False
    if filters.min_profit_cents is not None and m.estimated_profit_cents < filters.min_profit_cents:
        return False
    if filters.vehicle_type and m.vehicle.vehicle_type != filters.vehicle_type:
        return False
    if filters.exclude_risky and m.risk_level == "high":
        return False
    return True


def _rank_key(m: Match):
    return (-m.score, m.distance_to_pickup_km, m.cargo.created_at, str(m.cargo.id), str(m.vehicle.id))


def rank_matches(
    cargos: list[CargoOffer],
    vehicles: list[Vehicle],
    limit: int,
    filters: MatchFilters,
    config: MatchingConfig,
    now: datetime,
) -> list[Match]:
    """Pure scoring/filter/sort step over already-loaded candidates."""
    if limit <= 0 or not cargos or not vehicles:
        return []
    out: list[Match] = []
    for cargo in cargos:
        if filters.urgency_only and (cargo.urgency or "").lower() != "high":
            continue
        analysis = analyze_cargo(cargo, config, now)
        for vehicle in vehicles:
            m = score_pair(cargo, analysis, vehicle, config)
            if m is not None and _passes(m, filters):
                out.append(m)
    out.sort(key=_rank_key)
    return out[:limit]


def _load_candidates(
    db: Session,
    user: User,
    cargo_id: uuid.UUID | None,
    vehicle_id: uuid.UUID | None,
    filters: MatchFilters,
) -> tuple[list[CargoOffer], list[Vehicle]]:
    cq = select(CargoOffer).where(CargoOffer.status == CARGO_NEW, CargoOffer.user_id != user.id)
    if cargo_id is not None:
        cq = cq.where(CargoOffer.id == cargo_id)
    if filters.urgency_only:
        cq = cq.where(CargoOffer.urgency == "high")
    vq = (
        select(Vehicle)
        .join(Fleet, Fleet.id == Vehicle.fleet_id)
        .where(Fleet.owner_user_id == user.id, Vehicle.status == VEHICLE_IDLE)
    )
    if vehicle_id is not None:
        vq = vq.where(Vehicle.id == vehicle_id)
    if filters.vehicle_type:
        vq = vq.where(Vehicle.vehicle_type == filters.vehicle_type)
    cargos = list(db.execute(cq.order_by(CargoOffer.created_at.asc())).scalars().all())
    if not cargos:
        return [], []
    vehicles = list(db.execute(vq).scalars().all())
    return cargos, vehicles


def find_best_matches(
    db: Session,
    user: User,
    limit: int = 5,
    filters: MatchFilters | None = None,
    config: MatchingConfig | None = None,
    now: datetime | None = None,
    cargo_id: uuid.UUID | None = None,
    vehicle_id: uuid.UUID | None = None,
) -> list[Match]:
    """Ranked suggestions for `user`'s idle vehicles; [] when nothing fits or the store fails."""
    filters = filters or MatchFilters()
    config = config or MatchingConfig.from_settings()
    now = now or datetime.utcnow()
    try:
        cargos, vehicles = _load_candidates(db, user, cargo_id, vehicle_id, filters)
    except SQLAlchemyError as e:
        log.warning("matching degraded to empty result: %s", e)
        db.rollback()
        MATCH_QUERIES.labels("degraded").inc()
        return []
    matches = rank_matches(cargos, vehicles, limit, filters, config, now)
    log.info(
        "matching user=%s cargo=%d vehicles=%d returned=%d",
        user.id, len(cargos), len(vehicles), len(matches),
    )
    MATCH_QUERIES.labels("matched" if matches else "empty").inc()
    return matches


def find_matches_for_cargo(db: Session, user: User, cargo_id: uuid.UUID, limit: int = 5, **kwargs) -> list[Match]:
    return find_best_matches(db, user, limit=limit, cargo_id=cargo_id, **kwargs)


def find_matches_for_vehicle(db: Session, user: User, vehicle_id: uuid.UUID, limit: int = 5, **kwargs) -> list[Match]:
    return find_best_matches(db, user, limit=limit, vehicle_id=vehicle_id, **kwargs)
