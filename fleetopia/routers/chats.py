import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import chat_gate
from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import ChatIn, ChatListOut, ChatMessageOut, ChatStatsOut, ConversationOut, MarkReadOut
from .common import message_out


router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("/stats", response_model=ChatStatsOut)
def stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = chat_gate.conversation_stats(db, user)
    conversations = [
        ConversationOut(
            cargo_offer_id=str(s.cargo.id),
            cargo_title=s.cargo.title,
            other_user_id=str(s.other_user_id) if s.other_user_id else None,
            last_message=s.last_message.content,
            last_message_at=s.last_message.created_at,
            unread_count=s.unread,
        )
        for s in rows
    ]
    return ChatStatsOut(conversations=conversations, total_unread_count=sum(c.unread_count for c in conversations))


@router.get("/cargo/{cargo_id}", response_model=ChatListOut)
def list_messages(cargo_id: uuid.UUID, since: Optional[datetime] = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if since is not None and since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    rows = chat_gate.list_messages(db, cargo_id, user, since=since)
    return ChatListOut(messages=[message_out(m) for m in rows])


@router.post("/cargo/{cargo_id}", response_model=ChatMessageOut, status_code=201)
def post_message(cargo_id: uuid.UUID, payload: ChatIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return message_out(chat_gate.post_message(db, cargo_id, user, payload.content))


@router.post("/cargo/{cargo_id}/read", response_model=MarkReadOut)
def mark_read(cargo_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return MarkReadOut(updated=chat_gate.mark_read(db, cargo_id, user))
