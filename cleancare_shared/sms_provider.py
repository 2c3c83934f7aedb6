from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx

from .phone_utils import mask_phone, normalize_phone

logger = logging.getLogger("cleancare.sms")

DVHOSTING_URL = "https://dvhosting.in/api-sms-v4.php"
FAST2SMS_URL = "https://www.fast2sms.com/dev/bulkV2"
DEFAULT_TEMPLATE = "Your CleanCare Pro OTP is {code}. Valid for 5 minutes."

_TEXT_SUCCESS_TOKENS = ("success", "sent")


class SmsTransportError(Exception):
    """The provider could not be reached or answered with an HTTP error."""


@dataclass
class SmsResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    simulated: bool = False
    request_id: Optional[str] = None


class SmsBackend(Protocol):
    name: str

    def send_code(self, phone: str, code: str) -> SmsResult:  # pragma: no cover - interface
        ...


def parse_provider_response(body: str) -> SmsResult:
    """Reduce a provider reply (JSON flags or free text) to a single outcome."""
    text = (body or "").strip()
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        if payload.get("return") is True or payload.get("success") is True:
            request_id = payload.get("request_id")
            return SmsResult(
                success=True,
                message="OTP sent successfully",
                request_id=str(request_id) if request_id is not None else None,
            )
        if payload.get("request_id") and payload.get("return") is not False:
            return SmsResult(success=True, message="OTP sent successfully", request_id=str(payload["request_id"]))
        error = payload.get("message") or "Failed to send SMS"
        if isinstance(error, list):
            error = "; ".join(str(e) for e in error)
        return SmsResult(success=False, error=str(error))
    lowered = text.lower()
    if any(tok in lowered for tok in _TEXT_SUCCESS_TOKENS):
        return SmsResult(success=True, message="OTP sent successfully")
    return SmsResult(success=False, error=text or "Failed to send SMS")


@dataclass
class _QueryStringBackend:
    """Providers that take the API key and OTP as GET query parameters."""

    api_key: str
    url: str
    timeout: float = 10.0
    transport: Optional[httpx.BaseTransport] = field(default=None, repr=False)
    name = "http"

    def build_params(self, phone: str, code: str) -> dict[str, str]:
        return {
            "authorization": self.api_key,
            "route": "otp",
            "variables_values": code,
            "numbers": phone,
        }

    def send_code(self, phone: str, code: str) -> SmsResult:
        params = self.build_params(normalize_phone(phone), code)
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                res = client.get(self.url, params=params, headers={"cache-control": "no-cache"})
        except httpx.HTTPError as exc:
            raise SmsTransportError(f"{self.name} network error: {exc}") from exc
        if res.status_code >= 400:
            raise SmsTransportError(f"HTTP {res.status_code}: {res.text}")
        return parse_provider_response(res.text)


@dataclass
class DvHostingBackend(_QueryStringBackend):
    url: str = DVHOSTING_URL
    name = "dvhosting"


@dataclass
class Fast2SmsBackend(_QueryStringBackend):
    url: str = FAST2SMS_URL
    name = "fast2sms"

    def build_params(self, phone: str, code: str) -> dict[str, str]:
        params = super().build_params(phone, code)
        params["flash"] = "0"
        return params


class SmsGateway:
    """Sends OTP codes and always answers with a definitive :class:`SmsResult`.

    Without a backend (no API key) every send is simulated. Outside production
    a provider rejection or transport failure also degrades to a simulated
    success so local and staging flows keep working; in production it is
    reported as a failure. Exactly one provider call is made per send.
    """

    def __init__(
        self,
        backend: Optional[SmsBackend],
        *,
        production: bool = False,
        template: str = DEFAULT_TEMPLATE,
        on_result=None,
    ):
        self.backend = backend
        self.production = production
        self.template = template or DEFAULT_TEMPLATE
        self.on_result = on_result

    @property
    def provider_name(self) -> str:
        return self.backend.name if self.backend is not None else "simulated"

    @property
    def simulation_mode(self) -> bool:
        return self.backend is None

    def render_message(self, code: str) -> str:
        try:
            return self.template.format(code=code)
        except (KeyError, IndexError, ValueError):
            return DEFAULT_TEMPLATE.format(code=code)

    def send(self, phone: str, code: str) -> SmsResult:
        if self.backend is None:
            logger.info("SMS provider not configured, using simulation mode")
            return self._finish(phone, code, self._simulated("OTP sent (simulation mode)"))
        try:
            result = self.backend.send_code(phone, code)
        except SmsTransportError as exc:
            logger.warning("%s transport failure for %s: %s", self.provider_name, mask_phone(phone), exc)
            if not self.production:
                logger.info("Falling back to simulation mode due to %s error", self.provider_name)
                return self._finish(phone, code, self._simulated(f"OTP sent (simulation mode - {self.provider_name} failed)"))
            return self._finish(phone, code, SmsResult(success=False, error=str(exc)))
        if result.success:
            logger.info("SMS sent via %s to %s", self.provider_name, mask_phone(phone))
            return self._finish(phone, code, result)
        logger.warning("%s rejected SMS for %s: %s", self.provider_name, mask_phone(phone), result.error)
        if not self.production:
            return self._finish(phone, code, self._simulated(f"OTP sent (simulation mode - {self.provider_name} rejected)"))
        return self._finish(phone, code, result)

    def _simulated(self, message: str) -> SmsResult:
        return SmsResult(success=True, message=message, simulated=True)

    def _finish(self, phone: str, code: str, result: SmsResult) -> SmsResult:
        if result.simulated:
            logger.info("Simulated SMS to %s: %s", mask_phone(phone), _mask_code_in_message(self.render_message(code)))
        if self.on_result is not None:
            self.on_result(self.provider_name, result)
        return result


def resolve_backend(
    provider: str,
    api_key: str | None,
    *,
    url: str | None = None,
    timeout: float = 10.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> Optional[SmsBackend]:
    """Pick the backend for ``provider``; ``None`` when no credential is set."""
    if not (api_key or "").strip():
        return None
    name = (provider or "dvhosting").strip().lower()
    if name == "dvhosting":
        return DvHostingBackend(api_key=api_key.strip(), url=url or DVHOSTING_URL, timeout=timeout, transport=transport)
    if name == "fast2sms":
        return Fast2SmsBackend(api_key=api_key.strip(), url=url or FAST2SMS_URL, timeout=timeout, transport=transport)
    raise RuntimeError(f"Unsupported SMS_PROVIDER '{provider}'")


def _mask_code(code: str) -> str:
    if not code:
        return ""
    digits = re.sub(r"\D", "", code)
    if len(digits) <= 2:
        return "*" * len(digits)
    return "*" * (len(digits) - 2) + digits[-2:]


def _mask_code_in_message(message: str) -> str:
    if not message:
        return ""
    return re.sub(r"(\d{2,})", lambda m: _mask_code(m.group(0)), message)
