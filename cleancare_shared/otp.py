import logging
import math
import os
import secrets
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from .env_loader import ensure_loaded as _ensure_env_loaded
from .phone_utils import mask_phone

logger = logging.getLogger("cleancare.otp")

Clock = Callable[[], float]

OTP_LENGTH = 6


class OTPError(Exception):
    """Base exception for OTP operations."""

    code = "otp_error"
    message = "OTP operation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidPhoneError(OTPError):
    code = "invalid_phone"
    message = "Please enter a valid Indian phone number (10 digits starting with 6-9)"


class InvalidOTPFormatError(OTPError):
    code = "invalid_otp_format"
    message = "OTP must be a 6-digit number"


class OTPRateLimitError(OTPError):
    code = "otp_rate_limited"

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class OTPNotFoundError(OTPError):
    code = "otp_not_found"
    message = "No OTP found. Please request a new OTP."


class OTPExpiredError(OTPError):
    code = "otp_expired"
    message = "OTP has expired. Please request a new OTP."


class OTPAttemptsExceededError(OTPError):
    code = "otp_attempts_exceeded"
    message = "Too many failed attempts. Please request a new OTP."


class OTPMismatchError(OTPError):
    code = "otp_invalid"

    def __init__(self, remaining_attempts: int):
        super().__init__(f"Invalid OTP. {remaining_attempts} attempts remaining.")
        self.remaining_attempts = remaining_attempts


class SmsDeliveryError(OTPError):
    code = "sms_delivery_failed"
    message = "Failed to send SMS. Please try again."


@dataclass
class OTPConfig:
    ttl_secs: int = 300
    max_attempts: int = 3
    cooldown_secs: int = 30
    sweep_interval_secs: float = 60.0


def from_env(prefix: str = "") -> OTPConfig:
    _ensure_env_loaded()
    p = f"{prefix}_" if prefix else ""
    return OTPConfig(
        ttl_secs=int(os.getenv(f"{p}OTP_TTL_SECS", "300")),
        max_attempts=int(os.getenv(f"{p}OTP_MAX_ATTEMPTS", "3")),
        cooldown_secs=int(os.getenv(f"{p}OTP_COOLDOWN_SECS", "30")),
        sweep_interval_secs=float(os.getenv(f"{p}OTP_SWEEP_INTERVAL_SECS", "60")),
    )


def generate_otp_code() -> str:
    return str(secrets.randbelow(900000) + 100000)


def is_valid_otp_format(code: str | None) -> bool:
    return bool(code) and len(code) == OTP_LENGTH and code.isascii() and code.isdigit()


@dataclass
class OTPRecord:
    code: str
    expires_at: float
    created_at: float
    attempts: int = 0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class OTPStore:
    """One pending OTP per normalized phone, held in process memory."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: Dict[str, OTPRecord] = {}
        self._lock = threading.Lock()

    def store(self, phone: str, code: str, ttl_secs: int) -> OTPRecord:
        now = self._clock()
        record = OTPRecord(code=code, expires_at=now + ttl_secs, created_at=now)
        with self._lock:
            self._data[phone] = record
        logger.debug("OTP stored for %s, expires in %ss", mask_phone(phone), ttl_secs)
        return replace(record)

    def get(self, phone: str) -> Optional[OTPRecord]:
        with self._lock:
            record = self._data.get(phone)
            return replace(record) if record else None

    def delete(self, phone: str) -> bool:
        with self._lock:
            deleted = self._data.pop(phone, None) is not None
        if deleted:
            logger.debug("OTP deleted for %s", mask_phone(phone))
        return deleted

    def increment_attempts(self, phone: str) -> Optional[int]:
        with self._lock:
            record = self._data.get(phone)
            if record is None:
                return None
            record.attempts += 1
            return record.attempts

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [phone for phone, rec in self._data.items() if rec.is_expired(now)]
            for phone in expired:
                del self._data[phone]
        for phone in expired:
            logger.info("OTP expired and cleaned up for %s", mask_phone(phone))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, phone: object) -> bool:
        with self._lock:
            return phone in self._data


class OTPRateLimiter:
    """Per-phone cooldown measured from the last *accepted* request."""

    def __init__(self, cooldown_secs: int = 30, clock: Clock = time.time):
        self.cooldown_secs = cooldown_secs
        self._clock = clock
        self._last: Dict[str, float] = {}
        self._lock = threading.Lock()

    def allow(self, phone: str) -> bool:
        now = self._clock()
        with self._lock:
            last = self._last.get(phone)
            if last is not None and now - last < self.cooldown_secs:
                return False
            self._last[phone] = now
            return True

    def retry_after(self, phone: str) -> int:
        now = self._clock()
        with self._lock:
            last = self._last.get(phone)
        if last is None:
            return 0
        return max(0, math.ceil(self.cooldown_secs - (now - last)))

    def purge_stale(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, ts in self._last.items() if now - ts >= self.cooldown_secs]
            for k in stale:
                del self._last[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last)


class ExpirySweeper:
    """Runs ``sweep_fn`` every ``interval_secs`` on a daemon thread until stopped."""

    def __init__(self, sweep_fn: Callable[[], object], interval_secs: float, name: str = "otp-expiry-sweeper"):
        self._sweep_fn = sweep_fn
        self.interval_secs = interval_secs
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_secs):
            try:
                self._sweep_fn()
            except Exception:
                # Cleanup is best-effort; verify re-checks expiry on its own.
                logger.exception("OTP expiry sweep failed")


class OTPSessionManager:
    """Owns the OTP store, the cooldown limiter and the expiry sweeper.

    Construct once per process and share by reference; call :meth:`shutdown`
    to stop the background sweep.
    """

    def __init__(
        self,
        cfg: OTPConfig | None = None,
        *,
        clock: Clock = time.time,
        code_factory: Callable[[], str] = generate_otp_code,
        autostart: bool = True,
    ):
        self.cfg = cfg or OTPConfig()
        self.clock = clock
        self.code_factory = code_factory
        self.store = OTPStore(clock=clock)
        self.limiter = OTPRateLimiter(self.cfg.cooldown_secs, clock=clock)
        self.sweeper = ExpirySweeper(self.sweep, self.cfg.sweep_interval_secs)
        self._verify_lock = threading.Lock()
        if autostart and self.cfg.sweep_interval_secs > 0:
            self.sweeper.start()

    @property
    def pending_count(self) -> int:
        return len(self.store)

    def issue(self, phone: str) -> OTPRecord:
        """Apply the cooldown, then store a fresh code for ``phone``.

        Any live record for the phone is replaced and its attempts reset.
        """
        if not self.limiter.allow(phone):
            logger.info("OTP request rate limited for %s", mask_phone(phone))
            raise OTPRateLimitError(
                f"Please wait {self.cfg.cooldown_secs} seconds before requesting another OTP",
                retry_after=self.limiter.retry_after(phone) or self.cfg.cooldown_secs,
            )
        return self.store.store(phone, self.code_factory(), self.cfg.ttl_secs)

    def verify(self, phone: str, code: str, *, on_match: Callable[[OTPRecord], object] | None = None) -> OTPRecord:
        """Check ``code`` against the live record and consume it on match.

        ``on_match`` runs under the verify lock after a successful comparison;
        if it raises, the record is kept (attempts unchanged) and the error
        propagates.
        """
        with self._verify_lock:
            record = self.store.get(phone)
            if record is None:
                raise OTPNotFoundError()
            if record.is_expired(self.clock()):
                self.store.delete(phone)
                raise OTPExpiredError()
            if record.attempts >= self.cfg.max_attempts:
                self.store.delete(phone)
                raise OTPAttemptsExceededError()
            if not secrets.compare_digest(record.code, code):
                attempts = self.store.increment_attempts(phone)
                logger.info("Invalid OTP for %s, attempts: %s", mask_phone(phone), attempts)
                remaining = max(0, self.cfg.max_attempts - 1 - record.attempts)
                raise OTPMismatchError(remaining)
            if on_match is not None:
                on_match(record)
            self.store.delete(phone)
        return record

    def sweep(self) -> int:
        removed = self.store.purge_expired()
        self.limiter.purge_stale()
        return removed

    def shutdown(self) -> None:
        self.sweeper.stop()
