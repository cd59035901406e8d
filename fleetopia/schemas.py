from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RequestOtpIn(BaseModel):
    phone: str


class VerifyOtpIn(BaseModel):
    phone: str
    otp: str
    name: Optional[str] = None


class CargoCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    from_city: str = Field(min_length=1)
    from_address: Optional[str] = None
    from_country: str = Field(min_length=1)
    to_city: str = Field(min_length=1)
    to_address: Optional[str] = None
    to_country: str = Field(min_length=1)
    pickup_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    delivery_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    delivery_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    weight_kg: int = Field(ge=0)
    volume_m3: Optional[float] = Field(default=None, ge=0)
    cargo_type: str = "General"
    requirements: List[str] = []
    # Sign is checked by the service so a negative price gets a domain error
    price_cents: int
    price_type: str = "fixed"
    urgency: str = "medium"
    loading_date: datetime
    delivery_date: datetime


class CargoOut(BaseModel):
    id: str
    user_id: str
    title: str
    from_city: str
    from_address: Optional[str] = None
    from_country: str
    to_city: str
    to_address: Optional[str] = None
    to_country: str
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    delivery_lat: Optional[float] = None
    delivery_lng: Optional[float] = None
    weight_kg: int
    volume_m3: Optional[float] = None
    cargo_type: str
    requirements: List[str] = []
    price_cents: int
    price_type: str
    urgency: str
    loading_date: datetime
    delivery_date: datetime
    status: str
    accepted_by_user_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CargoListOut(BaseModel):
    offers: List[CargoOut]


class FleetCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)


class FleetOut(BaseModel):
    id: str
    name: str
    owner_user_id: str
    vehicle_count: int = 0
    created_at: datetime


class FleetsListOut(BaseModel):
    fleets: List[FleetOut]


class VehicleCreateIn(BaseModel):
    fleet_id: UUID
    name: str = Field(min_length=1, max_length=128)
    license_plate: str = Field(min_length=1, max_length=32)
    vehicle_type: str = "TRUCK"
    driver_name: Optional[str] = None
    capacity_kg: Optional[int] = Field(default=None, gt=0)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class VehiclePositionIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class VehicleStatusIn(BaseModel):
    status: str


class VehicleOut(BaseModel):
    id: str
    fleet_id: str
    name: str
    license_plate: str
    vehicle_type: str
    driver_name: Optional[str] = None
    capacity_kg: Optional[int] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    status: str
    current_route: Optional[str] = None
    updated_at: datetime


class VehiclesListOut(BaseModel):
    vehicles: List[VehicleOut]


class AvailabilityIn(BaseModel):
    vehicle_id: UUID
    current_location: str = Field(min_length=1, max_length=256)
    available_route: str = Field(min_length=1, max_length=256)
    price_per_km_cents: int = Field(default=150, gt=0)


class AvailabilityOut(BaseModel):
    id: str
    vehicle_id: str
    user_id: str
    vehicle_name: str
    vehicle_type: str
    capacity_kg: Optional[int] = None
    current_location: str
    available_route: str
    price_per_km_cents: int
    posted_at: datetime


class AvailabilityListOut(BaseModel):
    vehicles: List[AvailabilityOut]


class RouteOut(BaseModel):
    id: str
    name: str
    cargo_offer_id: str
    vehicle_id: str
    fleet_id: str
    start_point: Dict[str, Any]
    end_point: Dict[str, Any]
    status: str
    created_at: datetime
    updated_at: datetime


class RoutesListOut(BaseModel):
    routes: List[RouteOut]


class AssignIn(BaseModel):
    cargo_offer_id: UUID
    vehicle_id: UUID


class AssignmentOut(BaseModel):
    message: str
    cargo: CargoOut
    vehicle: VehicleOut
    route: RouteOut


class CargoSummaryOut(BaseModel):
    id: str
    title: str
    route: str
    weight_kg: int
    price_cents: int
    urgency: str
    loading_date: datetime


class VehicleSummaryOut(BaseModel):
    id: str
    name: str
    vehicle_type: str
    driver_name: Optional[str] = None
    capacity_kg: Optional[int] = None


class MatchOut(BaseModel):
    id: str
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
    risk_factors: List[str] = []
    advantages: List[str] = []
    warnings: List[str] = []
    cargo: CargoSummaryOut
    vehicle: VehicleSummaryOut


class SuggestionsOut(BaseModel):
    status: str = "success"
    suggestions: List[MatchOut]
    metadata: Dict[str, Any] = {}
    summary: Dict[str, Any] = {}


class ChatIn(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class ChatMessageOut(BaseModel):
    id: str
    cargo_offer_id: str
    sender_id: str
    content: str
    read: bool
    created_at: datetime


class ChatListOut(BaseModel):
    messages: List[ChatMessageOut]


class MarkReadOut(BaseModel):
    updated: int


class ConversationOut(BaseModel):
    cargo_offer_id: str
    cargo_title: str
    other_user_id: Optional[str] = None
    last_message: str
    last_message_at: datetime
    unread_count: int


class ChatStatsOut(BaseModel):
    conversations: List[ConversationOut]
    total_unread_count: int


class OfferIn(BaseModel):
    price_cents: int


class OfferRequestOut(BaseModel):
    id: str
    cargo_offer_id: str
    transporter_id: str
    price_cents: int
    status: str
    created_at: datetime
    updated_at: datetime


class OfferRequestsListOut(BaseModel):
    requests: List[OfferRequestOut]


class SentOfferOut(BaseModel):
    request: OfferRequestOut
    message: ChatMessageOut
    above_asking_cents: int = 0


class OfferAcceptedOut(BaseModel):
    cargo: CargoOut
    request: OfferRequestOut


class EventOut(BaseModel):
    kind: str
    entity_id: str
    status: str
    title: str
    at: datetime


class EventsOut(BaseModel):
    events: List[EventOut]
    now: datetime
