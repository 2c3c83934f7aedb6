from .otp import (
    OTPConfig,
    OTPRecord,
    OTPStore,
    OTPRateLimiter,
    OTPSessionManager,
    ExpirySweeper,
    OTPError,
    InvalidPhoneError,
    InvalidOTPFormatError,
    OTPRateLimitError,
    OTPNotFoundError,
    OTPExpiredError,
    OTPAttemptsExceededError,
    OTPMismatchError,
    SmsDeliveryError,
    generate_otp_code,
    is_valid_otp_format,
    from_env as otp_config_from_env,
)
from .sms_provider import SmsGateway, SmsResult, SmsTransportError, resolve_backend
from .env import env_bool, env_int, env_list, is_production
from .phone_utils import clean_phone, normalize_phone, is_valid_phone, mask_phone

__all__ = [
    "OTPConfig",
    "OTPRecord",
    "OTPStore",
    "OTPRateLimiter",
    "OTPSessionManager",
    "ExpirySweeper",
    "OTPError",
    "InvalidPhoneError",
    "InvalidOTPFormatError",
    "OTPRateLimitError",
    "OTPNotFoundError",
    "OTPExpiredError",
    "OTPAttemptsExceededError",
    "OTPMismatchError",
    "SmsDeliveryError",
    "generate_otp_code",
    "is_valid_otp_format",
    "otp_config_from_env",
    "SmsGateway",
    "SmsResult",
    "SmsTransportError",
    "resolve_backend",
    "env_bool",
    "env_int",
    "env_list",
    "is_production",
    "clean_phone",
    "normalize_phone",
    "is_valid_phone",
    "mask_phone",
]
