from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from fleetopia import assignment, chat_gate
from fleetopia import main as app_main

from .utils import auth, unique_phone


def _iso(dt: datetime) -> str:
    return dt.replace(microsecond=0).isoformat()


def _cargo_payload(lat: float, lng: float, **kw) -> dict:
    now = datetime.utcnow()
    payload = {
        "title": "Tiles",
        "from_city": "Lisbon", "from_country": "PT",
        "to_city": "Porto", "to_country": "PT",
        "pickup_lat": lat, "pickup_lng": lng,
        "delivery_lat": 41.15, "delivery_lng": -8.61,
        "weight_kg": 8000,
        "price_cents": 180000,
        "urgency": "high",
        "loading_date": _iso(now + timedelta(days=2)),
        "delivery_date": _iso(now + timedelta(days=3)),
    }
    payload.update(kw)
    return payload


def _fleet_with_vehicles(client, h, *positions) -> list[str]:
    r = client.post("/fleets", headers=h, json={"name": "Iberia"})
    assert r.status_code == 200, r.text
    fleet_id = r.json()["id"]
    ids = []
    for i, (lat, lng) in enumerate(positions):
        r = client.post("/vehicles", headers=h, json={
            "fleet_id": fleet_id, "name": f"Truck {i}", "license_plate": f"PT-{i}0-AA",
            "vehicle_type": "truck", "capacity_kg": 24000, "lat": lat, "lng": lng,
        })
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "idle"
        ids.append(r.json()["id"])
    return ids


def test_health_and_metrics(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"
    assert "X-Request-ID" in r.headers
    r = client.get("/metrics")
    assert r.status_code == 200
    assert b"http_requests_total" in r.content


def test_errors_use_one_envelope(client):
    r = client.get("/cargo")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "unauthorized"

    h = auth(client, unique_phone("0930"))
    r = client.get("/cargo/not-a-uuid", headers=h)
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "validation_error"

    r = client.get("/no/such/path", headers=h)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "http_404"

    r = client.post("/cargo", headers=h, json=_cargo_payload(38.7, -9.1, price_cents=-1))
    assert r.status_code == 400
    body = r.json()["error"]
    assert body["code"] == "validation_error"
    assert "price_cents" in body["details"]


def test_bad_otp_is_rejected(client):
    r = client.post("/auth/verify_otp", json={"phone": unique_phone("0931"), "otp": "000000"})
    assert r.status_code == 401


def test_dispatch_flow_suggest_assign_deliver_repost(client):
    shipper = auth(client, unique_phone("0940"), "Shipper")
    dispatcher = auth(client, unique_phone("0941"), "Dispatcher")
    v1, v2 = _fleet_with_vehicles(client, dispatcher, (38.75, -9.15), (38.80, -9.20))

    r = client.post("/cargo", headers=shipper, json=_cargo_payload(38.72, -9.14))
    assert r.status_code == 200, r.text
    cargo_id = r.json()["id"]
    assert r.json()["status"] == "NEW"

    r = client.get("/dispatcher/suggestions", headers=dispatcher, params={"limit": 50})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "success"
    assert body["metadata"]["weights"] == {"profit": 0.4, "proximity": 0.3, "urgency": 0.3}
    ours = [s for s in body["suggestions"] if s["cargo"]["id"] == cargo_id]
    assert {s["vehicle"]["id"] for s in ours} == {v1, v2}
    # The closer truck ranks first for the same offer
    assert ours[0]["vehicle"]["id"] == v1
    assert ours[0]["cargo"]["route"] == "Lisbon → Porto"

    r = client.get("/dispatcher/assign-cargo", headers=dispatcher, params={"cargo_id": cargo_id})
    assert r.status_code == 200
    assert [s["vehicle"]["id"] for s in r.json()["suggestions"]] == [v1, v2]
    r = client.get("/dispatcher/assign-cargo", headers=dispatcher)
    assert r.status_code == 400

    r = client.post("/dispatcher/assign-cargo", headers=dispatcher, json={"cargo_offer_id": cargo_id, "vehicle_id": v1})
    assert r.status_code == 200, r.text
    out = r.json()
    assert out["cargo"]["status"] == "TAKEN"
    assert out["vehicle"]["status"] == "assigned"
    assert out["route"]["status"] == "PLANNED"
    route_id = out["route"]["id"]

    r = client.post("/assignments", headers=dispatcher, json={"cargo_offer_id": cargo_id, "vehicle_id": v2})
    assert r.status_code == 409
    err = r.json()["error"]
    assert err["code"] == "cargo_unavailable"
    assert err["message"] == "This offer is no longer available for assignment"

    r = client.get("/assignments", headers=dispatcher)
    assert route_id in {a["route"]["id"] for a in r.json()}

    r = client.post(f"/cargo/{cargo_id}/deliver", headers=dispatcher)
    assert r.status_code == 403
    r = client.post(f"/cargo/{cargo_id}/deliver", headers=shipper)
    assert r.status_code == 200
    assert r.json()["status"] == "COMPLETED"

    r = client.get(f"/routes/{route_id}", headers=dispatcher)
    assert r.status_code == 200
    assert r.json()["status"] == "COMPLETED"
    r = client.get(f"/routes/{route_id}", headers=shipper)
    assert r.status_code == 404

    r = client.get("/vehicles", headers=dispatcher, params={"status": "idle"})
    assert {v["id"] for v in r.json()["vehicles"]} == {v1, v2}

    r = client.post(f"/cargo/{cargo_id}/repost", headers=shipper)
    assert r.status_code == 200
    assert r.json()["status"] == "NEW"
    assert r.json()["accepted_by_user_id"] is None

    since = _iso(datetime.utcnow() - timedelta(minutes=5))
    r = client.get("/dispatcher/events", headers=shipper, params={"since": since})
    assert r.status_code == 200
    kinds = {(e["kind"], e["entity_id"]) for e in r.json()["events"]}
    assert ("cargo_status", cargo_id) in kinds


def test_negotiation_flow_over_http(client):
    shipper = auth(client, unique_phone("0950"), "Shipper")
    carrier = auth(client, unique_phone("0951"), "Carrier")
    stranger = auth(client, unique_phone("0952"), "Stranger")

    r = client.post("/cargo", headers=shipper, json=_cargo_payload(38.70, -9.10, price_cents=100000))
    cargo_id = r.json()["id"]

    r = client.post(f"/cargo/{cargo_id}/offers", headers=carrier, json={"price_cents": 0})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "validation_error"
    r = client.post(f"/cargo/{cargo_id}/offers", headers=shipper, json={"price_cents": 90000})
    assert r.status_code == 403

    r = client.post(f"/cargo/{cargo_id}/offers", headers=carrier, json={"price_cents": 95000})
    assert r.status_code == 201, r.text
    request_id = r.json()["request"]["id"]
    assert r.json()["message"]["sender_id"] == r.json()["request"]["transporter_id"]

    r = client.post(f"/chats/cargo/{cargo_id}", headers=stranger, json={"content": "Still available?"})
    assert r.status_code == 201

    r = client.get(f"/cargo/{cargo_id}/offer-requests", headers=shipper)
    assert [q["id"] for q in r.json()["requests"]] == [request_id]

    r = client.post(f"/cargo/offer-requests/{request_id}/accept", headers=shipper)
    assert r.status_code == 200, r.text
    assert r.json()["cargo"]["status"] == "TAKEN"
    assert r.json()["cargo"]["price_cents"] == 95000
    assert r.json()["request"]["status"] == "ACCEPTED"

    r = client.get(f"/chats/cargo/{cargo_id}", headers=stranger)
    assert r.status_code == 403
    r = client.get(f"/chats/cargo/{cargo_id}", headers=carrier)
    assert r.status_code == 200
    assert len(r.json()["messages"]) == 2

    r = client.get("/chats/stats", headers=shipper)
    conv = [c for c in r.json()["conversations"] if c["cargo_offer_id"] == cargo_id]
    assert conv[0]["unread_count"] == 2
    r = client.post(f"/chats/cargo/{cargo_id}/read", headers=shipper)
    assert r.json()["updated"] == 2
    r = client.get("/chats/stats", headers=shipper)
    conv = [c for c in r.json()["conversations"] if c["cargo_offer_id"] == cargo_id]
    assert conv[0]["unread_count"] == 0


def test_vehicle_board_and_status(client):
    owner = auth(client, unique_phone("0960"), "Owner")
    other = auth(client, unique_phone("0961"), "Other")
    (vid,) = _fleet_with_vehicles(client, owner, (40.0, -8.0))

    r = client.post("/vehicles/available", headers=other, json={
        "vehicle_id": vid, "current_location": "Coimbra", "available_route": "Coimbra - Madrid",
    })
    assert r.status_code == 403

    r = client.post("/vehicles/available", headers=owner, json={
        "vehicle_id": vid, "current_location": "Coimbra", "available_route": "Coimbra - Madrid", "price_per_km_cents": 180,
    })
    assert r.status_code == 200, r.text
    r = client.get("/vehicles/available", headers=other, params={"limit": 200})
    assert vid in {a["vehicle_id"] for a in r.json()["vehicles"]}
    r = client.delete(f"/vehicles/available/{vid}", headers=owner)
    assert r.status_code == 200
    r = client.delete(f"/vehicles/available/{vid}", headers=owner)
    assert r.status_code == 404

    r = client.post(f"/vehicles/{vid}/position", headers=owner, json={"lat": 40.2, "lng": -8.4})
    assert r.json()["lat"] == 40.2
    r = client.post(f"/vehicles/{vid}/status", headers=owner, json={"status": "assigned"})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_transition"
    r = client.post(f"/vehicles/{vid}/status", headers=owner, json={"status": "flying"})
    assert r.status_code == 400
    r = client.post(f"/vehicles/{vid}/status", headers=owner, json={"status": "maintenance"})
    assert r.status_code == 200
    assert r.json()["status"] == "maintenance"


def test_route_progression_over_http(client):
    shipper = auth(client, unique_phone("0980"), "Shipper")
    dispatcher = auth(client, unique_phone("0981"), "Dispatcher")
    (vid,) = _fleet_with_vehicles(client, dispatcher, (38.60, -9.00))
    cargo_id = client.post("/cargo", headers=shipper, json=_cargo_payload(38.61, -9.01)).json()["id"]

    r = client.post("/assignments", headers=dispatcher, json={"cargo_offer_id": cargo_id, "vehicle_id": vid})
    assert r.status_code == 201, r.text
    route_id = r.json()["route"]["id"]

    r = client.post(f"/routes/{route_id}/start", headers=shipper)
    assert r.status_code == 404
    r = client.post(f"/routes/{route_id}/accept", headers=dispatcher)
    assert r.status_code == 200
    assert r.json()["status"] == "ACCEPTED"
    r = client.post(f"/routes/{route_id}/start", headers=dispatcher)
    assert r.json()["status"] == "IN_PROGRESS"
    r = client.post(f"/routes/{route_id}/accept", headers=dispatcher)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_transition"

    r = client.post(f"/cargo/{cargo_id}/deliver", headers=shipper)
    assert r.status_code == 200
    assert client.get(f"/routes/{route_id}", headers=dispatcher).json()["status"] == "COMPLETED"


def test_store_failures_use_the_error_envelope(client, monkeypatch):
    shipper = auth(client, unique_phone("0985"), "Shipper")
    cargo_id = client.post("/cargo", headers=shipper, json=_cargo_payload(38.65, -9.05)).json()["id"]

    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(assignment, "_locked", broken)
    r = client.post(f"/cargo/{cargo_id}/cancel", headers=shipper)
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "persistence_error"

    # Plain reads fail the same way
    monkeypatch.setattr(chat_gate, "conversation_stats", broken)
    r = client.get("/chats/stats", headers=shipper)
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "persistence_error"

    monkeypatch.undo()
    assert client.get(f"/cargo/{cargo_id}", headers=shipper).json()["status"] == "NEW"


def test_premium_offer_shows_up_in_poster_events(client):
    shipper = auth(client, unique_phone("0990"), "Shipper")
    carrier = auth(client, unique_phone("0991"), "Carrier")
    since = _iso(datetime.utcnow() - timedelta(minutes=1))
    cargo_id = client.post("/cargo", headers=shipper, json=_cargo_payload(38.66, -9.06, price_cents=100000)).json()["id"]

    r = client.post(f"/cargo/{cargo_id}/offers", headers=carrier, json={"price_cents": 130000})
    assert r.status_code == 201
    assert r.json()["above_asking_cents"] == 30000

    r = client.get("/dispatcher/events", headers=shipper, params={"since": since})
    alerts = [e for e in r.json()["events"] if e["kind"] == "premium_offer"]
    assert [a["entity_id"] for a in alerts] == [cargo_id]
    assert alerts[0]["status"] == "unread"
    r = client.get("/dispatcher/events", headers=carrier, params={"since": since})
    assert not [e for e in r.json()["events"] if e["kind"] == "premium_offer"]

    r = client.post(f"/cargo/{cargo_id}/cancel", headers=shipper)
    assert r.status_code == 200
    r = client.post(f"/cargo/{cargo_id}/offers", headers=carrier, json={"price_cents": 140000})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "cargo_unavailable"


class _DownEngine:
    def connect(self):
        raise OperationalError("select 1", {}, Exception("connection refused"))


def test_health_reports_unreachable_store(client, monkeypatch):
    monkeypatch.setattr(app_main, "engine", _DownEngine())
    r = client.get("/health")
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "persistence_error"
