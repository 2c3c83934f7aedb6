import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from cleancare_shared import (
    InvalidOTPFormatError,
    InvalidPhoneError,
    OTPError,
    OTPSessionManager,
    SmsDeliveryError,
    SmsGateway,
    is_valid_otp_format,
    is_valid_phone,
    mask_phone,
    normalize_phone,
)

from .auth import SessionIssuer
from .errors import NameRequiredError, PhoneConflictError
from .metrics import Metrics
from .models import User
from .users import UserDirectory

logger = logging.getLogger("cleancare.otp")


@dataclass
class OtpAck:
    phone: str
    expires_in: int
    simulated: bool = False


@dataclass
class AuthResult:
    user: User
    token: str
    expires_in: int
    created: bool = False


class OTPAuthService:
    """Phone OTP login: issue a code over SMS, then trade it for a session token."""

    def __init__(
        self,
        manager: OTPSessionManager,
        gateway: SmsGateway,
        issuer: SessionIssuer,
        metrics: Metrics | None = None,
    ):
        self.manager = manager
        self.gateway = gateway
        self.issuer = issuer
        self.metrics = metrics

    def _count_request(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.otp_requested(outcome)

    def _count_verify(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.otp_verified(outcome)

    def request_otp(self, phone_raw: str | None) -> OtpAck:
        if not is_valid_phone(phone_raw):
            logger.info("Invalid phone number: %s", mask_phone(phone_raw or ""))
            self._count_request(InvalidPhoneError.code)
            raise InvalidPhoneError()
        phone = normalize_phone(phone_raw)
        try:
            record = self.manager.issue(phone)
        except OTPError as exc:
            self._count_request(exc.code)
            raise
        logger.info("OTP generated for %s", mask_phone(phone))
        result = self.gateway.send(phone, record.code)
        if not result.success:
            # record stays; the client may retry after the cooldown
            logger.error("SMS sending failed for %s: %s", mask_phone(phone), result.error)
            self._count_request(SmsDeliveryError.code)
            raise SmsDeliveryError()
        self._count_request("simulated" if result.simulated else "sent")
        return OtpAck(phone=phone, expires_in=self.manager.cfg.ttl_secs, simulated=result.simulated)

    def verify_otp(self, directory: UserDirectory, phone_raw: str | None, code: str | None, name: str | None = None) -> AuthResult:
        if not is_valid_phone(phone_raw):
            self._count_verify(InvalidPhoneError.code)
            raise InvalidPhoneError("Invalid phone number format")
        code = (code or "").strip()
        if not is_valid_otp_format(code):
            self._count_verify(InvalidOTPFormatError.code)
            raise InvalidOTPFormatError()
        phone = normalize_phone(phone_raw)
        name = (name or "").strip() or None

        user = directory.find_by_phone(phone)

        def require_name(record):
            # Raised after a match but before consumption; the same code stays valid.
            if user is None and not name:
                raise NameRequiredError()

        try:
            self.manager.verify(phone, code, on_match=require_name)
        except OTPError as exc:
            self._count_verify(exc.code)
            raise
        except NameRequiredError:
            self._count_verify(NameRequiredError.code)
            raise
        logger.info("OTP verified for %s", mask_phone(phone))

        created = user is None
        try:
            if created:
                user = directory.create(phone, name)
                logger.info("New user created: %s", user.id)
            else:
                directory.mark_login(user, name)
                logger.info("Existing user updated: %s", user.id)
        except IntegrityError:
            directory.db.rollback()
            self._count_verify(PhoneConflictError.code)
            raise PhoneConflictError()

        token = self.issuer.issue(str(user.id), user.phone)
        self._count_verify("verified")
        return AuthResult(user=user, token=token, expires_in=self.issuer.expires_in, created=created)
