import os
from functools import lru_cache

from pydantic import BaseModel, model_validator

_DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_ENV_KEYS = (
    "QUOTE_SITE_ROOT_URL",
    "QUOTE_TRADING_PATH",
    "QUOTE_USER_AGENT",
    "QUOTE_VIEWPORT_WIDTH",
    "QUOTE_VIEWPORT_HEIGHT",
    "QUOTE_STALE_AFTER_SEC",
    "QUOTE_GUARD_DEADLINE_SEC",
    "QUOTE_ROOT_NAV_TIMEOUT_SEC",
    "QUOTE_COOKIE_SETTLE_SEC",
    "QUOTE_TRADING_NAV_TIMEOUT_SEC",
    "QUOTE_SCRIPT_SETTLE_SEC",
    "QUOTE_STATE_WAIT_SEC",
    "QUOTE_STATE_GRACE_SEC",
    "QUOTE_PRICE_MIN",
    "QUOTE_PRICE_MAX",
    "QUOTE_RECENT_TRADES_LABEL",
    "QUOTE_BLOCK_PAGE_MAX_CHARS",
    "PORT",
    "APP_ENV",
)


class Settings(BaseModel):
    QUOTE_SITE_ROOT_URL: str = "https://grinex.io"
    QUOTE_TRADING_PATH: str = "/trading/usdta7a5"
    QUOTE_USER_AGENT: str = _DEFAULT_USER_AGENT
    QUOTE_VIEWPORT_WIDTH: int = 1920
    QUOTE_VIEWPORT_HEIGHT: int = 1080

    QUOTE_STALE_AFTER_SEC: float = 30.0
    QUOTE_GUARD_DEADLINE_SEC: float = 90.0

    QUOTE_ROOT_NAV_TIMEOUT_SEC: float = 30.0
    QUOTE_COOKIE_SETTLE_SEC: float = 2.0
    QUOTE_TRADING_NAV_TIMEOUT_SEC: float = 90.0
    QUOTE_SCRIPT_SETTLE_SEC: float = 5.0
    QUOTE_STATE_WAIT_SEC: float = 45.0
    QUOTE_STATE_GRACE_SEC: float = 10.0

    # tuned to the USDT/A7A5 price band, revisit for any other instrument
    QUOTE_PRICE_MIN: float = 50.0
    QUOTE_PRICE_MAX: float = 150.0
    QUOTE_RECENT_TRADES_LABEL: str = "Последние сделки"
    QUOTE_BLOCK_PAGE_MAX_CHARS: int = 5000

    PORT: int = 3000
    APP_ENV: str = "development"

    @model_validator(mode="after")
    def _check_price_band(self) -> "Settings":
        if self.QUOTE_PRICE_MIN >= self.QUOTE_PRICE_MAX:
            raise ValueError("QUOTE_PRICE_MIN must be lower than QUOTE_PRICE_MAX")
        return self

    @property
    def trading_url(self) -> str:
        return self.QUOTE_SITE_ROOT_URL.rstrip("/") + "/" + self.QUOTE_TRADING_PATH.lstrip("/")

    @classmethod
    def from_env(cls) -> "Settings":
        # unset keys fall back to the field defaults
        raw = {key: os.getenv(key) for key in _ENV_KEYS}
        return cls.model_validate({k: v for k, v in raw.items() if v not in (None, "")})


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
