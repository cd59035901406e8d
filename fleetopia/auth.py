import uuid
from datetime import datetime

import jwt
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .errors import Unauthorized
from .models import User


def make_token(user_id: str) -> str:
    now = datetime.utcnow()
    payload = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + settings.jwt_delta).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def verify_dev_otp(phone: str, otp: str) -> bool:
    if settings.DEV_MODE and settings.OTP_MODE.lower() == "dev":
        return otp == settings.OTP_DEV_CODE
    return False


def ensure_user(db: Session, phone: str, name: str | None) -> User:
    u = db.query(User).filter(User.phone == phone).one_or_none()
    if u is None:
        u = User(phone=phone, name=name or None)
        db.add(u)
        db.flush()
    return u


def get_current_user(authorization: str | None = Header(default=None, alias="Authorization"), db: Session = Depends(get_db)) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized("Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")
    try:
        uid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise Unauthorized("Invalid token payload")
    u = db.get(User, uid)
    if u is None:
        raise Unauthorized("Unknown user")
    return u
