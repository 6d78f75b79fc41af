from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXPIRY_HOURS = 24


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = ""
    DB_PATH: str = "./data/patisserie.sqlite3"

    CART_ITEM_EXPIRY_SECONDS: Optional[str] = None
    CART_ITEM_EXPIRY_HOURS: Optional[str] = None
    CART_MAX_ATTEMPTS: int = 3
    CART_RETRY_BASE_MS: int = 25
    CART_RETRY_JITTER_MS: int = 25
    CART_REFRESH_PRICE_ON_READ: bool = False

    DEFAULT_TZ: str = "Asia/Kolkata"
    SHOP_STATUS_BROADCAST_SECONDS: int = 30
    SOCKET_IDLE_TTL_SECONDS: int = 86400
    SOCKET_SWEEP_SECONDS: int = 1800

    ADMIN_API_KEY: str = ""
    ALLOWED_ORIGINS: str = ""

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.strip().lower() == "production"

    @property
    def cart_expiry_seconds(self) -> int:
        seconds = _positive_number(self.CART_ITEM_EXPIRY_SECONDS)
        if seconds:
            return int(seconds)
        hours = _positive_number(self.CART_ITEM_EXPIRY_HOURS)
        if hours:
            return int(hours * 3600)
        return DEFAULT_EXPIRY_HOURS * 3600

    @property
    def allowed_origins(self):
        return [x.strip() for x in self.ALLOWED_ORIGINS.split(",") if x.strip()]


def _positive_number(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    return value if value > 0 else None


settings = Settings()
