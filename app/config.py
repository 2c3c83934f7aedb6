import os
from datetime import timedelta

from cleancare_shared import env_bool, env_int, env_list, is_production
from cleancare_shared.env_loader import ensure_loaded
from cleancare_shared.otp import OTPConfig

ensure_loaded()


class Settings:
    ENV: str = os.getenv("ENV", "dev")
    PRODUCTION: bool = is_production(ENV)
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = env_int("APP_PORT", default=3001)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DB_URL: str = os.getenv("DB_URL", "sqlite:///./cleancare.db")
    AUTO_CREATE_SCHEMA: bool = env_bool("AUTO_CREATE_SCHEMA", default=not PRODUCTION)
    ALLOWED_ORIGINS: list[str] = env_list(
        "ALLOWED_ORIGINS",
        default=[] if PRODUCTION else ["*"],
    )
    # Session tokens
    JWT_SECRET: str = os.getenv("JWT_SECRET", "")
    JWT_ISSUER: str = os.getenv("JWT_ISSUER", "cleancare-pro")
    JWT_EXPIRES_DAYS: int = env_int("JWT_EXPIRES_DAYS", default=30)
    # OTP
    OTP_TTL_SECS: int = env_int("OTP_TTL_SECS", default=300)
    OTP_MAX_ATTEMPTS: int = env_int("OTP_MAX_ATTEMPTS", default=3)
    OTP_COOLDOWN_SECS: int = env_int("OTP_COOLDOWN_SECS", default=30)
    OTP_SWEEP_INTERVAL_SECS: int = env_int("OTP_SWEEP_INTERVAL_SECS", default=60)
    # SMS
    SMS_PROVIDER: str = os.getenv("SMS_PROVIDER", "dvhosting")  # dvhosting|fast2sms
    DVHOSTING_API_KEY: str = os.getenv("DVHOSTING_API_KEY", "")
    DVHOSTING_URL: str = os.getenv("DVHOSTING_URL", "")
    FAST2SMS_API_KEY: str = os.getenv("FAST2SMS_API_KEY", "")
    FAST2SMS_URL: str = os.getenv("FAST2SMS_URL", "")
    SMS_TIMEOUT_SECS: float = float(os.getenv("SMS_TIMEOUT_SECS", "10"))
    OTP_SMS_TEMPLATE: str = os.getenv(
        "OTP_SMS_TEMPLATE",
        "Your CleanCare Pro OTP is {code}. Valid for 5 minutes.",
    )

    @property
    def jwt_expires_delta(self) -> timedelta:
        return timedelta(days=self.JWT_EXPIRES_DAYS)

    @property
    def sms_api_key(self) -> str:
        if self.SMS_PROVIDER.lower() == "fast2sms":
            return self.FAST2SMS_API_KEY
        return self.DVHOSTING_API_KEY

    @property
    def sms_url(self) -> str | None:
        if self.SMS_PROVIDER.lower() == "fast2sms":
            return self.FAST2SMS_URL or None
        return self.DVHOSTING_URL or None

    def otp_config(self) -> OTPConfig:
        return OTPConfig(
            ttl_secs=self.OTP_TTL_SECS,
            max_attempts=self.OTP_MAX_ATTEMPTS,
            cooldown_secs=self.OTP_COOLDOWN_SECS,
            sweep_interval_secs=self.OTP_SWEEP_INTERVAL_SECS,
        )


settings = Settings()

# Harden settings for production
if settings.PRODUCTION:
    if not settings.ALLOWED_ORIGINS or "*" in settings.ALLOWED_ORIGINS:
        raise RuntimeError("ALLOWED_ORIGINS must list explicit origins when ENV=prod")
    if settings.AUTO_CREATE_SCHEMA:
        raise RuntimeError("AUTO_CREATE_SCHEMA cannot be enabled when ENV=prod")
