import uuid
from datetime import datetime, timedelta

from fleetopia.models import CargoOffer, Fleet, User, Vehicle


def unique_phone(prefix: str, digits: int = 5) -> str:
    """Return a unique phone number using the given prefix and number of random digits."""
    suffix = str(uuid.uuid4().int % (10 ** digits)).zfill(digits)
    if prefix.startswith('+'):
        return f"{prefix}{suffix}"
    return f"+963{prefix}{suffix}"


def auth(client, phone: str, name: str = "X") -> dict:
    r = client.post("/auth/request_otp", json={"phone": phone})
    assert r.status_code == 200, r.text
    r = client.post("/auth/verify_otp", json={"phone": phone, "otp": "123456", "name": name})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def make_user(db, name: str = "U") -> User:
    u = User(phone=unique_phone("0999", digits=7), name=name)
    db.add(u)
    db.flush()
    return u


def make_fleet(db, owner: User, name: str = "Main fleet") -> Fleet:
    f = Fleet(owner_user_id=owner.id, name=name)
    db.add(f)
    db.flush()
    return f


def make_vehicle(db, fleet: Fleet, lat: float | None = 44.43, lng: float | None = 26.10, **kw) -> Vehicle:
    fields = dict(name="Truck", license_plate=f"B-{uuid.uuid4().hex[:6].upper()}", vehicle_type="TRUCK", capacity_kg=20000)
    fields.update(kw)
    v = Vehicle(fleet_id=fleet.id, lat=lat, lng=lng, **fields)
    db.add(v)
    db.flush()
    return v


def make_cargo(db, owner: User, lat: float = 44.43, lng: float = 26.10, **kw) -> CargoOffer:
    now = datetime.utcnow()
    fields = dict(
        title="Pallets",
        from_city="Bucharest", from_country="RO",
        to_city="Constanta", to_country="RO",
        delivery_lat=44.17, delivery_lng=28.63,
        weight_kg=5000, cargo_type="General", requirements=[],
        price_cents=150000, price_type="fixed", urgency="medium",
        loading_date=now + timedelta(days=5), delivery_date=now + timedelta(days=6),
    )
    fields.update(kw)
    c = CargoOffer(user_id=owner.id, pickup_lat=lat, pickup_lng=lng, **fields)
    db.add(c)
    db.flush()
    return c
