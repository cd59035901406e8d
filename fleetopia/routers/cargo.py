import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import assignment, chat_gate
from ..auth import get_current_user
from ..database import get_db
from ..errors import NotFound, ValidationError
from ..models import CARGO_NEW, CargoOffer, User
from ..schemas import (
    CargoCreateIn, CargoListOut, CargoOut, OfferAcceptedOut, OfferIn,
    OfferRequestsListOut, SentOfferOut,
)
from .common import cargo_out, message_out, offer_request_out


router = APIRouter(prefix="/cargo", tags=["cargo"])

PRICE_TYPES = ("fixed", "negotiable", "per_km")
URGENCIES = ("low", "medium", "high")


def _naive_utc(dt: datetime) -> datetime:
    # Stored timestamps are naive UTC
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _validate(payload: CargoCreateIn) -> None:
    problems = {}
    if payload.price_cents < 0:
        problems["price_cents"] = "must not be negative"
    if payload.price_type not in PRICE_TYPES:
        problems["price_type"] = f"must be one of {', '.join(PRICE_TYPES)}"
    if payload.urgency not in URGENCIES:
        problems["urgency"] = f"must be one of {', '.join(URGENCIES)}"
    if _naive_utc(payload.delivery_date) < _naive_utc(payload.loading_date):
        problems["delivery_date"] = "must not be before loading_date"
    if (payload.pickup_lat is None) != (payload.pickup_lng is None):
        problems["pickup"] = "lat and lng go together"
    if (payload.delivery_lat is None) != (payload.delivery_lng is None):
        problems["delivery"] = "lat and lng go together"
    if problems:
        raise ValidationError("Invalid cargo offer", problems)


@router.post("", response_model=CargoOut)
def create_offer(payload: CargoCreateIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _validate(payload)
    data = payload.model_dump()
    data["loading_date"] = _naive_utc(payload.loading_date)
    data["delivery_date"] = _naive_utc(payload.delivery_date)
    c = CargoOffer(user_id=user.id, status=CARGO_NEW, **data)
    db.add(c)
    db.flush()
    return cargo_out(c)


@router.get("", response_model=CargoListOut)
def list_open(
    from_country: Optional[str] = None,
    to_country: Optional[str] = None,
    cargo_type: Optional[str] = None,
    urgency: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = db.query(CargoOffer).filter(CargoOffer.status == CARGO_NEW)
    if from_country:
        q = q.filter(CargoOffer.from_country == from_country)
    if to_country:
        q = q.filter(CargoOffer.to_country == to_country)
    if cargo_type:
        q = q.filter(CargoOffer.cargo_type == cargo_type)
    if urgency:
        q = q.filter(CargoOffer.urgency == urgency)
    rows = q.order_by(CargoOffer.created_at.desc()).offset(offset).limit(limit).all()
    return CargoListOut(offers=[cargo_out(c) for c in rows])


@router.get("/mine", response_model=CargoListOut)
def list_mine(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = db.query(CargoOffer).filter(CargoOffer.user_id == user.id).order_by(CargoOffer.created_at.desc()).limit(200).all()
    return CargoListOut(offers=[cargo_out(c) for c in rows])


@router.get("/{cargo_id}", response_model=CargoOut)
def get_offer(cargo_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    c = db.get(CargoOffer, cargo_id)
    if c is None:
        raise NotFound("Offer not found")
    return cargo_out(c)


@router.post("/{cargo_id}/accept", response_model=CargoOut)
def accept(cargo_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cargo_out(assignment.accept_offer(db, cargo_id, user))


@router.post("/{cargo_id}/deliver", response_model=CargoOut)
def deliver(cargo_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cargo_out(assignment.deliver(db, cargo_id, user))


@router.post("/{cargo_id}/repost", response_model=CargoOut)
def repost(cargo_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cargo_out(assignment.repost(db, cargo_id, user))


@router.post("/{cargo_id}/cancel", response_model=CargoOut)
def cancel(cargo_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cargo_out(assignment.cancel(db, cargo_id, user))


@router.post("/{cargo_id}/offers", response_model=SentOfferOut, status_code=201)
def send_offer(cargo_id: uuid.UUID, payload: OfferIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    sent = chat_gate.send_offer(db, cargo_id, user, payload.price_cents)
    return SentOfferOut(
        request=offer_request_out(sent.request),
        message=message_out(sent.message),
        above_asking_cents=sent.above_asking_cents,
    )


@router.get("/{cargo_id}/offer-requests", response_model=OfferRequestsListOut)
def list_offer_requests(cargo_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = chat_gate.list_offer_requests(db, cargo_id, user)
    return OfferRequestsListOut(requests=[offer_request_out(r) for r in rows])


@router.post("/offer-requests/{request_id}/accept", response_model=OfferAcceptedOut)
def accept_offer_request(request_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cargo, req = assignment.accept_offer_request(db, request_id, user)
    return OfferAcceptedOut(cargo=cargo_out(cargo), request=offer_request_out(req))
