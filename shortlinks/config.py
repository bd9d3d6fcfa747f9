"""Configuration management for the short-link service.

Every tunable of the service lives on one pydantic-settings model, read from
the environment (and ``.env``) once per process.

Setting Groups
==============
::
    Settings
      ├─ app ............ APP_NAME, APP_ENV, BASE_URL, LOG_LEVEL
      ├─ storage ........ DATABASE_URL (+ pool), REDIS_URL
      ├─ codes .......... SHORT_CODE_*, CUSTOM_ALIAS_*, ALLOW_CODE_REUSE
      ├─ cache .......... CACHE_* (TTL, tombstone TTL, op timeout, fill lock)
      ├─ redirect ....... STORE_READ_TIMEOUT_SECONDS, REDIRECT_*, TRUST_FORWARDED_FOR
      ├─ clicks ......... CLICK_*, COUNT_BOT_CLICKS, GEOIP_*, token lists
      └─ passwords ...... PASSWORD_HASH_ROUNDS

How to Use
===========
**Step 1 — Import**::
    from shortlinks.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    ttl = settings.CACHE_TTL_SECONDS

**Step 3 — Override from the environment**::
    export REDIRECT_RATE_LIMIT_PER_CLIENT=500
    export BOT_USER_AGENT_TOKENS='["googlebot", "my-crawler"]'

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- List settings (token lists) are read from the environment as JSON.
- Bot and device token lists are data, so they can change without a code release.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = [
    "DEFAULT_BOT_USER_AGENT_TOKENS",
    "DEFAULT_MOBILE_TOKENS",
    "DEFAULT_TABLET_TOKENS",
    "DEFAULT_TV_TOKENS",
    "Settings",
    "get_settings",
]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BOT_USER_AGENT_TOKENS = [
    "googlebot",
    "bingbot",
    "slurp",
    "duckduckbot",
    "baiduspider",
    "yandexbot",
    "applebot",
    "facebookexternalhit",
    "twitterbot",
    "linkedinbot",
    "slackbot",
    "discordbot",
    "telegrambot",
    "whatsapp",
    "crawler",
    "spider",
    "curl/",
    "wget/",
    "python-requests",
    "python-urllib",
    "python-httpx",
    "go-http-client",
    "headlesschrome",
]

DEFAULT_TV_TOKENS = ["smart-tv", "smarttv", "googletv", "appletv", "hbbtv", "crkey", "roku", "tizen", "web0s"]
DEFAULT_TABLET_TOKENS = ["ipad", "tablet", "kindle", "silk/", "playbook"]
DEFAULT_MOBILE_TOKENS = ["mobile", "iphone", "ipod", "android", "blackberry", "windows phone", "opera mini"]


class Settings(BaseSettings):
    APP_NAME: str = "shortlinks"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlinks:shortlinks@db:5432/shortlinks"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Short code / alias rules
    SHORT_CODE_LENGTH: int = 6
    SHORT_CODE_MAX_ATTEMPTS: int = 5
    CUSTOM_ALIAS_MIN_LENGTH: int = 3
    CUSTOM_ALIAS_MAX_LENGTH: int = 50
    ORIGINAL_URL_MAX_LENGTH: int = 2048
    TITLE_MAX_LENGTH: int = 500
    DESCRIPTION_MAX_LENGTH: int = 2000
    ALLOW_CODE_REUSE: bool = False

    # Resolution cache
    CACHE_KEY_PREFIX: str = "link"
    CACHE_TTL_SECONDS: int = 3600
    CACHE_TOMBSTONE_TTL_SECONDS: int = 30
    CACHE_OPERATION_TIMEOUT_SECONDS: float = 0.05

    # Cache stampede protection
    CACHE_LOCK_TTL_SECONDS: int = 3
    CACHE_LOCK_RETRY_COUNT: int = 3
    CACHE_LOCK_RETRY_DELAY_SECONDS: float = 0.05

    # Store reads on the redirect path
    STORE_READ_TIMEOUT_SECONDS: float = 2.0

    # Redirect rate limiting (sliding window, fail-open)
    REDIRECT_RATE_LIMIT_ENABLED: bool = True
    REDIRECT_RATE_LIMIT_WINDOW_SECONDS: int = 60
    REDIRECT_RATE_LIMIT_PER_CLIENT: int = 300
    REDIRECT_RATE_LIMIT_PER_CODE: int = 60
    RATE_LIMIT_KEY_PREFIX: str = "rl:redirect"

    # Redirect behaviour
    REDIRECT_STATUS_CODE: int = 307
    ALLOW_BOT_REDIRECTS: bool = True
    TRUST_FORWARDED_FOR: bool = False

    # Click recording
    CLICK_RECORDING_ENABLED: bool = True
    COUNT_BOT_CLICKS: bool = False
    CLICK_MAX_PENDING_TASKS: int = 1000
    BACKGROUND_DRAIN_TIMEOUT_SECONDS: float = 5.0
    ENABLE_USER_AGENT_PARSING: bool = True
    ENABLE_GEOLOCATION: bool = False
    GEOIP_DATABASE_PATH: str | None = None

    BOT_USER_AGENT_TOKENS: list[str] = DEFAULT_BOT_USER_AGENT_TOKENS
    DEVICE_TV_TOKENS: list[str] = DEFAULT_TV_TOKENS
    DEVICE_TABLET_TOKENS: list[str] = DEFAULT_TABLET_TOKENS
    DEVICE_MOBILE_TOKENS: list[str] = DEFAULT_MOBILE_TOKENS

    # Link passwords
    PASSWORD_HASH_ROUNDS: int = 12

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
