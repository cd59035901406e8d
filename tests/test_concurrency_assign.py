import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta

from fleetopia.database import session_scope
from fleetopia.models import CargoOffer, Route, Vehicle

from .utils import auth, unique_phone


def _setup(client):
    shipper = auth(client, unique_phone("0970"), "Shipper")
    dispatcher = auth(client, unique_phone("0971"), "Dispatcher")
    fleet_id = client.post("/fleets", headers=dispatcher, json={"name": "Race fleet"}).json()["id"]
    vehicles = []
    for i in range(4):
        r = client.post("/vehicles", headers=dispatcher, json={
            "fleet_id": fleet_id, "name": f"Racer {i}", "license_plate": f"RC-{i}",
            "capacity_kg": 20000, "lat": 52.37, "lng": 4.90,
        })
        vehicles.append(r.json()["id"])
    now = datetime.utcnow()
    r = client.post("/cargo", headers=shipper, json={
        "title": "Flowers", "from_city": "Amsterdam", "from_country": "NL",
        "to_city": "Rotterdam", "to_country": "NL",
        "pickup_lat": 52.37, "pickup_lng": 4.90, "delivery_lat": 51.92, "delivery_lng": 4.48,
        "weight_kg": 2000, "price_cents": 60000,
        "loading_date": (now + timedelta(days=1)).isoformat(),
        "delivery_date": (now + timedelta(days=1, hours=6)).isoformat(),
    })
    assert r.status_code == 200, r.text
    return dispatcher, r.json()["id"], vehicles


def test_concurrent_assign_single_winner(client):
    dispatcher, cargo_id, vehicles = _setup(client)

    def assign(vehicle_id):
        return client.post("/assignments", headers=dispatcher, json={"cargo_offer_id": cargo_id, "vehicle_id": vehicle_id})

    with ThreadPoolExecutor(max_workers=len(vehicles)) as ex:
        futs = [ex.submit(assign, v) for v in vehicles]
        results = [f.result() for f in as_completed(futs)]

    codes = sorted(r.status_code for r in results)
    assert codes == [201, 409, 409, 409], [r.text for r in results]
    assert all(r.json()["error"]["code"] == "cargo_unavailable" for r in results if r.status_code == 409)
    winner = next(r.json() for r in results if r.status_code == 201)

    with session_scope() as db:
        cargo = db.get(CargoOffer, uuid.UUID(cargo_id))
        assert cargo.status == "TAKEN"
        routes = db.query(Route).filter(Route.cargo_offer_id == cargo.id).all()
        assert len(routes) == 1
        assert str(routes[0].vehicle_id) == winner["vehicle"]["id"]
        statuses = sorted(db.get(Vehicle, uuid.UUID(v)).status for v in vehicles)
        assert statuses == ["assigned", "idle", "idle", "idle"]
