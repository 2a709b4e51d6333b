# ⚙️ Sentinel Configuration
# Environment-driven settings for the gate, recorders and export endpoints

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Centralized sentinel configuration"""

    # Database
    mongo_uri: str = field(default_factory=lambda: os.getenv("MONGO_URI", "mongodb://localhost:27017"))
    mongodb_name: str = field(default_factory=lambda: os.getenv("MONGODB_NAME", "portfolio"))
    visits_collection: str = field(default_factory=lambda: os.getenv("VISITS_COLLECTION", "visits"))
    threats_collection: str = field(default_factory=lambda: os.getenv("THREATS_COLLECTION", "threats"))

    # Authentication
    jwt_secret: str = field(default_factory=lambda: os.getenv("JWT_SECRET", "your-secret-key"))
    jwt_algorithm: str = "HS256"
    session_cookie: str = "auth-token"
    session_hours: int = 24
    admin_username: str = field(default_factory=lambda: os.getenv("ADMIN_USERNAME", ""))
    admin_password: str = field(default_factory=lambda: os.getenv("ADMIN_PASSWORD", ""))
    test_pin: str = field(default_factory=lambda: os.getenv("TEST_PIN", ""))

    # Rate limiting: "memory" keeps counters per process, "redis" shares them across instances
    rate_limit_backend: str = field(default_factory=lambda: os.getenv("RATE_LIMIT_BACKEND", "memory"))
    redis_url: str = field(default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    redis_key_prefix: str = "rate_limit"
    gate_rate_limit: int = field(default_factory=lambda: _env_int("GATE_RATE_LIMIT", 600))  # 0 disables
    gate_rate_window_ms: int = field(default_factory=lambda: _env_int("GATE_RATE_WINDOW_MS", 60_000))

    # Burst (DDoS) detection
    burst_request_threshold: int = field(default_factory=lambda: _env_int("BURST_REQUEST_THRESHOLD", 100))
    burst_time_window_seconds: int = field(default_factory=lambda: _env_int("BURST_TIME_WINDOW_SECONDS", 60))

    # Fire-and-forget writes from the gate
    background_timeout_seconds: float = field(default_factory=lambda: _env_float("BACKGROUND_TIMEOUT_SECONDS", 1.5))

    # Analytics log endpoint
    max_log_body_bytes: int = field(default_factory=lambda: _env_int("MAX_LOG_BODY_BYTES", 10 * 1024))
    log_body_timeout_seconds: float = 2.0
    # Socket peers allowed to report a visit on behalf of another address
    trusted_log_sources: List[str] = field(
        default_factory=lambda: _env_list("TRUSTED_LOG_SOURCES") or ["127.0.0.1", "::1"]
    )

    # Classifier
    extra_scanner_agents: List[str] = field(default_factory=lambda: _env_list("EXTRA_SCANNER_AGENTS"))

    # Email (contact form)
    sendgrid_api_key: str = field(default_factory=lambda: os.getenv("SENDGRID_API_KEY", ""))
    email_user: str = field(default_factory=lambda: os.getenv("EMAIL_USER", ""))
    contact_recipient: str = field(default_factory=lambda: os.getenv("CONTACT_RECIPIENT", ""))

    # Server
    cors_origins: List[str] = field(default_factory=lambda: _env_list("CORS_ORIGINS") or ["http://localhost:3000"])
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "production"))
    port: int = field(default_factory=lambda: _env_int("PORT", 10000))

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
