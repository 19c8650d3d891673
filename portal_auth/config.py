import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=True)


class ConfigurationError(RuntimeError):
    pass


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    environment: str = os.getenv("APP_ENV", "development").strip().lower()
    app_name: str = os.getenv("APP_NAME", "RJFinancial")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    database_url: str = os.getenv("DATABASE_URL", "")
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")
    )
    session_secret: str = os.getenv("SESSION_SECRET", "")
    session_ttl_days: int = int(os.getenv("SESSION_TTL_DAYS", "7"))
    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "portal_session")
    verification_code_ttl_minutes: int = int(
        os.getenv("VERIFICATION_CODE_TTL_MINUTES", "10")
    )
    password_hash_rounds: int = int(os.getenv("PASSWORD_HASH_ROUNDS", "10"))
    sendgrid_api_key: str = os.getenv("SENDGRID_API_KEY", "")
    from_email: str = os.getenv("FROM_EMAIL", "noreply@rjfinancial.com")
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv(
        "TWILIO_PHONE_NUMBER", os.getenv("PHONE_NUMBER", "")
    )
    default_country_code: str = os.getenv("DEFAULT_COUNTRY_CODE", "+1")
    cors_origins: tuple[str, ...] = _env_list(
        "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    )
    trust_proxy_headers: bool = _env_bool("TRUST_PROXY_HEADERS", False)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def email_configured(self) -> bool:
        return bool(self.sendgrid_api_key and self.from_email)

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )


settings = Settings()
