"""Who may read and post on a cargo offer's conversation, and the priced-offer side effect."""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from .errors import CargoUnavailable, Forbidden, NotFound, ValidationError, persistence_guard
from .models import (
    ALERT_PREMIUM_OFFER, CARGO_NEW, OFFER_PENDING,
    CargoOffer, ChatMessage, OfferRequest, SystemAlert, User,
)


log = logging.getLogger("fleetopia.chat")

HISTORY_LIMIT = 200


def can_access(user_id: uuid.UUID, cargo: CargoOffer) -> bool:
    return user_id == cargo.user_id or (cargo.accepted_by_user_id is not None and user_id == cargo.accepted_by_user_id)


def can_participate(user_id: uuid.UUID, cargo: CargoOffer) -> bool:
    # Before acceptance the conversation is open for negotiation
    if cargo.accepted_by_user_id is None:
        return True
    return can_access(user_id, cargo)


def _load_for(db: Session, cargo_offer_id: uuid.UUID, user: User) -> CargoOffer:
    cargo = db.get(CargoOffer, cargo_offer_id)
    if cargo is None:
        raise NotFound("Offer not found")
    if not can_participate(user.id, cargo):
        raise Forbidden("This offer is already in negotiation with another user")
    return cargo


def list_messages(db: Session, cargo_offer_id: uuid.UUID, user: User, since: datetime | None = None) -> list[ChatMessage]:
    cargo = _load_for(db, cargo_offer_id, user)
    q = select(ChatMessage).where(ChatMessage.cargo_offer_id == cargo.id)
    if since is not None:
        q = q.where(ChatMessage.created_at > since)
    q = q.order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc()).limit(HISTORY_LIMIT)
    return list(db.execute(q).scalars().all())


@persistence_guard("Message")
def post_message(db: Session, cargo_offer_id: uuid.UUID, user: User, content: str) -> ChatMessage:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content cannot be empty")
    cargo = _load_for(db, cargo_offer_id, user)
    m = ChatMessage(cargo_offer_id=cargo.id, sender_id=user.id, content=text, created_at=datetime.utcnow())
    db.add(m)
    db.flush()
    return m


@persistence_guard("Read receipt")
def mark_read(db: Session, cargo_offer_id: uuid.UUID, user: User) -> int:
    """Mark the other side's messages as read; returns how many changed."""
    cargo = _load_for(db, cargo_offer_id, user)
    res = db.execute(
        update(ChatMessage)
        .where(ChatMessage.cargo_offer_id == cargo.id, ChatMessage.sender_id != user.id, ChatMessage.read.is_(False))
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount or 0


def _money(cents: int) -> str:
    return f"{cents / 100:.2f}"


def _offer_text(price_cents: int, asking_cents: int) -> str:
    amount = _money(price_cents)
    if asking_cents and price_cents > asking_cents:
        above = _money(price_cents - asking_cents)
        return f"Sent an offer of {amount} ({above} above the asking price)."
    return f"Sent an offer of {amount}."


@dataclass
class SentOffer:
    request: OfferRequest
    message: ChatMessage
    above_asking_cents: int
    alert: SystemAlert | None = None


def _premium_alert(cargo: CargoOffer, price_cents: int, above_cents: int, now: datetime) -> SystemAlert:
    return SystemAlert(
        user_id=cargo.user_id,
        kind=ALERT_PREMIUM_OFFER,
        related_id=cargo.id,
        message=f'Premium offer: {_money(price_cents)} for "{cargo.title}" ({_money(above_cents)} above the asking price)',
        details=f"Transporter offered {_money(price_cents)} for cargo priced at {_money(cargo.price_cents or 0)}.",
        created_at=now,
    )


@persistence_guard("Offer")
def send_offer(db: Session, cargo_offer_id: uuid.UUID, actor: User, price_cents: int) -> SentOffer:
    """Record a transporter's price and announce it in the chat, in one unit of work.

    Bids are taken only while the offer is NEW. A bid above the asking price
    also leaves a premium-offer alert for the poster.
    """
    if price_cents is None or price_cents <= 0:
        raise ValidationError("Price must be a positive number", {"price_cents": price_cents})
    # Locked so a concurrent acceptance cannot leave a fresh PENDING bid on a taken offer
    cargo = db.execute(
        select(CargoOffer).where(CargoOffer.id == cargo_offer_id).with_for_update().execution_options(populate_existing=True)
    ).scalars().first()
    if cargo is None:
        raise NotFound("Offer not found")
    if cargo.user_id == actor.id:
        raise Forbidden("You cannot make an offer on your own cargo")
    if not can_participate(actor.id, cargo):
        raise Forbidden("This offer is already in negotiation with another user")
    if cargo.status != CARGO_NEW:
        raise CargoUnavailable("This offer is no longer open for bids", {"status": cargo.status})

    now = datetime.utcnow()
    req = db.execute(
        select(OfferRequest)
        .where(OfferRequest.cargo_offer_id == cargo.id, OfferRequest.transporter_id == actor.id)
        .with_for_update()
    ).scalars().first()
    if req is None:
        req = OfferRequest(cargo_offer_id=cargo.id, transporter_id=actor.id, created_at=now)
        db.add(req)
    req.price_cents = price_cents
    req.status = OFFER_PENDING
    req.updated_at = now

    m = ChatMessage(
        cargo_offer_id=cargo.id,
        sender_id=actor.id,
        content=_offer_text(price_cents, cargo.price_cents or 0),
        created_at=now,
    )
    db.add(m)
    above = max(0, price_cents - (cargo.price_cents or 0)) if cargo.price_cents else 0
    alert = None
    if above > 0:
        alert = _premium_alert(cargo, price_cents, above, now)
        db.add(alert)
    db.flush()
    log.info("offer cargo=%s transporter=%s price_cents=%d above=%d", cargo.id, actor.id, price_cents, above)
    return SentOffer(request=req, message=m, above_asking_cents=above, alert=alert)


def list_offer_requests(db: Session, cargo_offer_id: uuid.UUID, user: User) -> list[OfferRequest]:
    cargo = db.get(CargoOffer, cargo_offer_id)
    if cargo is None:
        raise NotFound("Offer not found")
    q = select(OfferRequest).where(OfferRequest.cargo_offer_id == cargo.id)
    # Transporters only see their own bid
    if cargo.user_id != user.id:
        q = q.where(OfferRequest.transporter_id == user.id)
    return list(db.execute(q.order_by(OfferRequest.created_at.asc())).scalars().all())


@dataclass
class ConversationStats:
    cargo: CargoOffer
    other_user_id: uuid.UUID | None
    unread: int
    last_message: ChatMessage


def conversation_stats(db: Session, user: User) -> list[ConversationStats]:
    """Conversations the user takes part in, newest activity first."""
    bid_on = select(OfferRequest.cargo_offer_id).where(OfferRequest.transporter_id == user.id)
    cargos = db.execute(
        select(CargoOffer).where(
            or_(
                CargoOffer.user_id == user.id,
                CargoOffer.accepted_by_user_id == user.id,
                CargoOffer.id.in_(bid_on),
            )
        )
    ).scalars().all()
    out: list[ConversationStats] = []
    for cargo in cargos:
        last = db.execute(
            select(ChatMessage)
            .where(ChatMessage.cargo_offer_id == cargo.id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(1)
        ).scalars().first()
        if last is None:
            continue
        unread = db.execute(
            select(func.count(ChatMessage.id)).where(
                ChatMessage.cargo_offer_id == cargo.id,
                ChatMessage.sender_id != user.id,
                ChatMessage.read.is_(False),
            )
        ).scalar_one()
        other = cargo.accepted_by_user_id if cargo.user_id == user.id else cargo.user_id
        out.append(ConversationStats(cargo=cargo, other_user_id=other, unread=int(unread), last_message=last))
    out.sort(key=lambda s: s.last_message.created_at, reverse=True)
    return out
