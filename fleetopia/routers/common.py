from ..models import CargoOffer, ChatMessage, OfferRequest, Route, Vehicle
from ..schemas import CargoOut, ChatMessageOut, OfferRequestOut, RouteOut, VehicleOut


def cargo_out(c: CargoOffer) -> CargoOut:
    return CargoOut(
        id=str(c.id), user_id=str(c.user_id), title=c.title,
        from_city=c.from_city, from_address=c.from_address, from_country=c.from_country,
        to_city=c.to_city, to_address=c.to_address, to_country=c.to_country,
        pickup_lat=c.pickup_lat, pickup_lng=c.pickup_lng, delivery_lat=c.delivery_lat, delivery_lng=c.delivery_lng,
        weight_kg=c.weight_kg, volume_m3=c.volume_m3, cargo_type=c.cargo_type, requirements=list(c.requirements or []),
        price_cents=c.price_cents, price_type=c.price_type, urgency=c.urgency,
        loading_date=c.loading_date, delivery_date=c.delivery_date, status=c.status,
        accepted_by_user_id=str(c.accepted_by_user_id) if c.accepted_by_user_id else None,
        accepted_at=c.accepted_at, created_at=c.created_at, updated_at=c.updated_at,
    )


def vehicle_out(v: Vehicle) -> VehicleOut:
    return VehicleOut(
        id=str(v.id), fleet_id=str(v.fleet_id), name=v.name, license_plate=v.license_plate,
        vehicle_type=v.vehicle_type, driver_name=v.driver_name, capacity_kg=v.capacity_kg,
        lat=v.lat, lng=v.lng, status=v.status, current_route=v.current_route, updated_at=v.updated_at,
    )


def route_out(r: Route) -> RouteOut:
    return RouteOut(
        id=str(r.id), name=r.name, cargo_offer_id=str(r.cargo_offer_id), vehicle_id=str(r.vehicle_id),
        fleet_id=str(r.fleet_id), start_point=r.start_point or {}, end_point=r.end_point or {},
        status=r.status, created_at=r.created_at, updated_at=r.updated_at,
    )


def message_out(m: ChatMessage) -> ChatMessageOut:
    return ChatMessageOut(
        id=str(m.id), cargo_offer_id=str(m.cargo_offer_id), sender_id=str(m.sender_id),
        content=m.content, read=bool(m.read), created_at=m.created_at,
    )


def offer_request_out(r: OfferRequest) -> OfferRequestOut:
    return OfferRequestOut(
        id=str(r.id), cargo_offer_id=str(r.cargo_offer_id), transporter_id=str(r.transporter_id),
        price_cents=r.price_cents, status=r.status, created_at=r.created_at, updated_at=r.updated_at,
    )
