import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip() for p in raw.split(",")]
    return {p for p in parts if p}


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./credits.db") or "sqlite:///./credits.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.frontend_url = _getenv("FRONTEND_URL", "http://localhost:5173") or "http://localhost:5173"

        self.auth_jwks_url = _getenv("AUTH_JWKS_URL")
        self.auth_jwt_issuer = _getenv("AUTH_JWT_ISSUER")
        self.auth_jwt_audience = _getenv("AUTH_JWT_AUDIENCE")
        self.admin_user_ids = _getenv_csv_set("ADMIN_USER_IDS")

        self.payment_webhook_secret = _getenv("PAYMENT_WEBHOOK_SECRET")

        # Day boundary for the daily bonus; the server clock in this zone decides "today".
        self.bonus_timezone = _getenv("BONUS_TIMEZONE", "UTC") or "UTC"
        self.daily_bonus_base = _getenv_int("DAILY_BONUS_BASE", 2)
        self.weekly_streak_bonus = _getenv_int("WEEKLY_STREAK_BONUS", 5)
        self.referral_bonus = _getenv_int("REFERRAL_BONUS", 5)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return [self.frontend_url, "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
