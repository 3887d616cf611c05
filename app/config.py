from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis settings
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_SOCKET_TIMEOUT: float = 2.0  # keep store round trips short

    # Session / visitor tracking
    SESSION_COOKIE_NAME: str = "letter_session"
    SESSION_TTL_DAYS: int = 30
    TRUST_X_FORWARDED_FOR: bool = False
    TRUSTED_PROXY_IPS: list[str] = []

    # Access gate
    ACCESS_MIN_VISITS: int = 3
    ACCESS_BYPASS_ON_PROFILE: bool = True
    ACCESS_BYPASS_CONFIDENCE: int = 60
    ACCESS_BYPASS_TTL_DAYS: int = 30
    PROFILE_CACHE_TTL_HOURS: int = 24
    VISIT_WINDOW_MINUTES: int = 30  # requests closer together than this are one visit

    # AI generation limits (daily cap + cooldown)
    AI_DAILY_LIMIT: int = 5
    AI_COOLDOWN_SECONDS: int = 120
    AI_ATTEMPTS_PER_HOUR: int = 20  # abuse guard on generation attempts, cap enforced separately

    # Sliding-window rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_FAIL_OPEN: bool = True

    # Letter job pipeline
    LETTER_JOB_TTL_SECONDS: int = 86400
    LETTER_JOB_MAX_RETRIES: int = 3
    LETTER_QUEUE_POP_TIMEOUT: int = 1
    LETTER_ESTIMATED_SECONDS: int = 30

    # Enrichment provider (lookup by hashed IP)
    ENRICHMENT_API_KEY: str | None = None
    ENRICHMENT_BASE_URL: str = "https://person.clearbit.com/v1/people/find"
    ENRICHMENT_TIMEOUT_SECONDS: float = 5.0
    ENRICHMENT_CACHE_TTL_DAYS: int = 7

    # Pseudonymization
    HASHING_SECRET: str = "dev-only-hashing-secret-change-me"

    # Admin endpoints are disabled when no key is configured
    ADMIN_API_KEY: str | None = None

    # Text generation backend used by the letter worker
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_rate_limit_tiers(self) -> dict[str, dict]:
        """
        Sliding-window tiers keyed by endpoint class.

        Each tier names the identifier it is keyed by (ip or session), the
        window budget, and the ban escalation policy.
        """
        tiers = {
            "global": {
                "key_prefix": "ratelimit:global",
                "identifier": "ip",
                "limit": 100,
                "window_seconds": 60,
                "ban_enabled": True,
                "ban_threshold": 5,
                "ban_seconds": 3600,
                "violation_ttl_seconds": 600,
            },
            "ai": {
                "key_prefix": "ratelimit:ai",
                "identifier": "session",
                "limit": self.AI_ATTEMPTS_PER_HOUR,
                "window_seconds": 3600,
                "ban_enabled": True,
                "ban_threshold": 10,
                "ban_seconds": 86400,
                "violation_ttl_seconds": 3600,
            },
            "api": {
                "key_prefix": "ratelimit:api",
                "identifier": "ip",
                "limit": 1000,
                "window_seconds": 3600,
                "ban_enabled": False,
                "ban_threshold": 0,
                "ban_seconds": 0,
                "violation_ttl_seconds": 0,
            },
        }

        if self.environment == "development":
            # Local browsing reloads a lot
            tiers["global"]["limit"] = 1000

        return tiers

    def session_ttl_seconds(self) -> int:
        return self.SESSION_TTL_DAYS * 24 * 3600

    def bypass_ttl_seconds(self) -> int:
        return self.ACCESS_BYPASS_TTL_DAYS * 24 * 3600


settings = Settings()
