from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import ensure_user, make_token, verify_dev_otp
from ..config import settings
from ..database import get_db
from ..errors import Unauthorized, ValidationError
from ..schemas import RequestOtpIn, TokenOut, VerifyOtpIn


router = APIRouter(prefix="/auth", tags=["auth"])


def _check_phone(phone: str) -> str:
    phone = (phone or "").strip()
    if not phone.startswith("+") or not phone[1:].isdigit() or len(phone) < 8:
        raise ValidationError("Invalid phone", {"phone": phone})
    return phone


@router.post("/request_otp")
def request_otp(payload: RequestOtpIn):
    _check_phone(payload.phone)
    response = {"detail": "OTP sent"}
    if settings.DEV_MODE and settings.OTP_MODE == "dev":
        response["dev_code"] = settings.OTP_DEV_CODE
    return response


@router.post("/verify_otp", response_model=TokenOut)
def verify_otp(payload: VerifyOtpIn, db: Session = Depends(get_db)):
    phone = _check_phone(payload.phone)
    if not verify_dev_otp(phone, payload.otp):
        raise Unauthorized("Invalid OTP")
    user = ensure_user(db, phone, payload.name)
    return TokenOut(access_token=make_token(str(user.id)))
