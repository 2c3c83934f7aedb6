from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cleancare_shared import InvalidPhoneError, is_valid_phone, normalize_phone

from ..auth import SessionIssuer, get_session_issuer
from ..database import get_db
from ..errors import UserNotFoundError
from ..otp_auth import OTPAuthService
from ..schemas import (
    AuthOut,
    CheckPhoneIn,
    OtpAckOut,
    PhoneCheckOut,
    SendOtpIn,
    TokenCheckOut,
    UserOut,
    VerifyOtpIn,
    VerifyTokenIn,
)
from ..users import UserDirectory


router = APIRouter(prefix="/api/auth", tags=["auth"])


def get_otp_service(request: Request) -> OTPAuthService:
    return request.app.state.otp_service


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


@router.post("/send-otp")
def send_otp(payload: SendOtpIn, service: OTPAuthService = Depends(get_otp_service)):
    ack = service.request_otp(payload.phone)
    return {
        "success": True,
        "message": "OTP sent successfully to your phone",
        "data": _dump(OtpAckOut(phone=ack.phone, expires_in=ack.expires_in)),
    }


@router.post("/verify-otp")
def verify_otp(
    payload: VerifyOtpIn,
    service: OTPAuthService = Depends(get_otp_service),
    db: Session = Depends(get_db),
):
    result = service.verify_otp(UserDirectory(db), payload.phone, payload.otp, payload.name)
    db.commit()
    out = AuthOut(user=UserOut.model_validate(result.user), token=result.token, expires_in=result.expires_in)
    return {"success": True, "message": "Authentication successful", "data": _dump(out)}


@router.post("/verify-token")
def verify_token(
    payload: VerifyTokenIn,
    issuer: SessionIssuer = Depends(get_session_issuer),
    db: Session = Depends(get_db),
):
    claims = issuer.verify(payload.token)
    user = UserDirectory(db).get(claims["sub"])
    if user is None:
        raise UserNotFoundError()
    return {"success": True, "data": _dump(TokenCheckOut(user=UserOut.model_validate(user)))}


@router.post("/check-phone")
def check_phone(payload: CheckPhoneIn, db: Session = Depends(get_db)):
    if not is_valid_phone(payload.phone):
        raise InvalidPhoneError()
    phone = normalize_phone(payload.phone)
    exists = UserDirectory(db).find_by_phone(phone) is not None
    return {"success": True, "data": _dump(PhoneCheckOut(phone=phone, exists=exists))}


@router.post("/logout")
def logout():
    # Tokens are stateless; the client discards its copy.
    return {"success": True, "message": "Logout successful"}
