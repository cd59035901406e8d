import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, ForeignKey, Index, UniqueConstraint, Float, JSON, Uuid
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


def default_uuid():
    return uuid.uuid4()


# CargoOffer.status
CARGO_NEW = "NEW"
CARGO_TAKEN = "TAKEN"
CARGO_IN_PROGRESS = "IN_PROGRESS"
CARGO_COMPLETED = "COMPLETED"
CARGO_CANCELED = "CANCELED"
CARGO_STATUSES = (CARGO_NEW, CARGO_TAKEN, CARGO_IN_PROGRESS, CARGO_COMPLETED, CARGO_CANCELED)
# accepted_by_user_id is set exactly in these states
CARGO_ACCEPTED_STATUSES = (CARGO_TAKEN, CARGO_IN_PROGRESS, CARGO_COMPLETED)

# Vehicle.status
VEHICLE_IDLE = "idle"
VEHICLE_ASSIGNED = "assigned"
VEHICLE_STATUSES = (
    VEHICLE_IDLE, VEHICLE_ASSIGNED, "in_transit", "en_route", "loading", "unloading", "maintenance", "out_of_service",
)
VEHICLE_TYPES = ("VAN", "TRUCK", "SEMI")

# Route.status
ROUTE_PLANNED = "PLANNED"
ROUTE_SUGGESTED = "SUGGESTED"
ROUTE_ACCEPTED = "ACCEPTED"
ROUTE_IN_PROGRESS = "IN_PROGRESS"
ROUTE_COMPLETED = "COMPLETED"
ROUTE_CANCELED = "CANCELED"
ROUTE_STATUSES = (ROUTE_PLANNED, ROUTE_SUGGESTED, ROUTE_ACCEPTED, ROUTE_IN_PROGRESS, ROUTE_COMPLETED, ROUTE_CANCELED)
ROUTE_ACTIVE_STATUSES = (ROUTE_PLANNED, ROUTE_SUGGESTED, ROUTE_ACCEPTED, ROUTE_IN_PROGRESS)

# OfferRequest.status
OFFER_PENDING = "PENDING"
OFFER_ACCEPTED = "ACCEPTED"
OFFER_REJECTED = "REJECTED"

# SystemAlert.kind
ALERT_PREMIUM_OFFER = "premium_offer"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    phone = Column(String(32), nullable=False, unique=True, index=True)
    name = Column(String(128), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    fleets = relationship("Fleet", back_populates="owner")


class Fleet(Base):
    __tablename__ = "fleets"
    __table_args__ = (
        Index("ix_fleet_owner", "owner_user_id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    owner_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    name = Column(String(128), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    owner = relationship("User", back_populates="fleets")
    vehicles = relationship("Vehicle", back_populates="fleet")


class Vehicle(Base):
    __tablename__ = "vehicles"
    __table_args__ = (
        Index("ix_vehicle_fleet", "fleet_id"),
        Index("ix_vehicle_status", "status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    fleet_id = Column(Uuid(as_uuid=True), ForeignKey("fleets.id"), nullable=False)
    name = Column(String(128), nullable=False)
    license_plate = Column(String(32), nullable=False)
    vehicle_type = Column(String(8), nullable=False, default="TRUCK")  # VAN|TRUCK|SEMI
    driver_name = Column(String(128), nullable=True)
    capacity_kg = Column(Integer, nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    status = Column(String(24), nullable=False, default=VEHICLE_IDLE)
    current_route = Column(String(256), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    fleet = relationship("Fleet", back_populates="vehicles")


class CargoOffer(Base):
    __tablename__ = "cargo_offers"
    __table_args__ = (
        Index("ix_cargo_status", "status"),
        Index("ix_cargo_owner", "user_id"),
        Index("ix_cargo_created", "created_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    from_city = Column(String(128), nullable=False)
    from_address = Column(String(256), nullable=True)
    from_country = Column(String(64), nullable=False)
    to_city = Column(String(128), nullable=False)
    to_address = Column(String(256), nullable=True)
    to_country = Column(String(64), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    delivery_lat = Column(Float, nullable=True)
    delivery_lng = Column(Float, nullable=True)
    weight_kg = Column(Integer, nullable=False, default=0)
    volume_m3 = Column(Float, nullable=True)
    cargo_type = Column(String(32), nullable=False, default="General")
    requirements = Column(JSON, nullable=False, default=list)
    price_cents = Column(Integer, nullable=False, default=0)
    price_type = Column(String(16), nullable=False, default="fixed")  # fixed|negotiable|per_km
    urgency = Column(String(8), nullable=False, default="medium")  # low|medium|high
    loading_date = Column(DateTime, nullable=False)
    delivery_date = Column(DateTime, nullable=False)
    status = Column(String(16), nullable=False, default=CARGO_NEW)
    accepted_by_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    routes = relationship("Route", back_populates="cargo_offer")


class Route(Base):
    __tablename__ = "routes"
    __table_args__ = (
        Index("ix_route_cargo", "cargo_offer_id"),
        Index("ix_route_vehicle", "vehicle_id"),
        Index("ix_route_fleet", "fleet_id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    name = Column(String(256), nullable=False)
    cargo_offer_id = Column(Uuid(as_uuid=True), ForeignKey("cargo_offers.id"), nullable=False)
    vehicle_id = Column(Uuid(as_uuid=True), ForeignKey("vehicles.id"), nullable=False)
    fleet_id = Column(Uuid(as_uuid=True), ForeignKey("fleets.id"), nullable=False)
    # Copied from the cargo offer when the route is created
    start_point = Column(JSON, nullable=False)
    end_point = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default=ROUTE_PLANNED)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    cargo_offer = relationship("CargoOffer", back_populates="routes")
    vehicle = relationship("Vehicle")


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_cargo", "cargo_offer_id"),
        Index("ix_chat_created", "created_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    cargo_offer_id = Column(Uuid(as_uuid=True), ForeignKey("cargo_offers.id"), nullable=False)
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    content = Column(String(2000), nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class OfferRequest(Base):
    __tablename__ = "offer_requests"
    __table_args__ = (
        UniqueConstraint("cargo_offer_id", "transporter_id", name="uq_offer_request_pair"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    cargo_offer_id = Column(Uuid(as_uuid=True), ForeignKey("cargo_offers.id"), nullable=False)
    transporter_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    price_cents = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default=OFFER_PENDING)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class VehicleAvailability(Base):
    __tablename__ = "vehicle_availability"
    __table_args__ = (
        UniqueConstraint("vehicle_id", name="uq_vehicle_availability"),
        Index("ix_vehicle_availability_posted", "posted_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    vehicle_id = Column(Uuid(as_uuid=True), ForeignKey("vehicles.id"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    current_location = Column(String(256), nullable=False)
    available_route = Column(String(256), nullable=False)
    price_per_km_cents = Column(Integer, nullable=False, default=150)
    posted_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    vehicle = relationship("Vehicle")


class SystemAlert(Base):
    __tablename__ = "system_alerts"
    __table_args__ = (
        Index("ix_alert_user_created", "user_id", "created_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    # Recipient
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    kind = Column(String(32), nullable=False)
    related_id = Column(Uuid(as_uuid=True), nullable=True)
    message = Column(String(512), nullable=False)
    details = Column(String(1000), nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
