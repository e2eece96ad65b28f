import os
from pathlib import Path

from dotenv import load_dotenv


_BACKEND_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _BACKEND_DIR.parent

# Root .env is canonical; backend/.env remains a fallback for local overrides.
load_dotenv(_PROJECT_ROOT / ".env")
load_dotenv(_BACKEND_DIR / ".env")

_PLACEHOLDER_ACCESS_SECRET = "your_jwt_secret"
_PLACEHOLDER_REFRESH_SECRET = "your_refresh_secret"


def _first_non_empty_env(*names: str, default: str) -> str:
    """Returns the first non-empty env var value from `names`, else `default`."""
    for name in names:
        value = os.getenv(name)
        if value is not None and value != "":
            return value
    return default


def _parse_int_env(*names: str, default: int) -> int:
    """Parses the first non-empty env var in `names` as int, else returns `default`."""
    raw = _first_non_empty_env(*names, default=str(default))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str:
    """
    Resolves the primary database URL.

    DATABASE_URL wins when set. Otherwise the URL is assembled from the
    discrete DB_HOST / DB_PORT / DB_USER / DB_PASSWORD / DB_NAME variables.
    Heroku-style 'postgres://' is normalised to 'postgresql://'.
    """
    raw = os.getenv("DATABASE_URL", "")
    if raw:
        return raw.replace("postgres://", "postgresql://", 1) if raw.startswith("postgres://") else raw

    host = _first_non_empty_env("DB_HOST", default="localhost")
    port = _first_non_empty_env("DB_PORT", default="5432")
    user = _first_non_empty_env("DB_USER", default="postgres")
    password = _first_non_empty_env("DB_PASSWORD", default="postgres")
    name = _first_non_empty_env("DB_NAME", default="trusioo_db")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


def _engine_options() -> dict:
    """
    Connection pool sizing.

    DB_MAX_OPEN_CONNS caps the total, DB_MAX_IDLE_CONNS is the persistent
    pool; the difference is allowed as overflow.
    """
    max_open = _parse_int_env("DB_MAX_OPEN_CONNS", default=25)
    max_idle = _parse_int_env("DB_MAX_IDLE_CONNS", default=5)
    return {
        "pool_size": max_idle,
        "max_overflow": max(max_open - max_idle, 0),
        "pool_recycle": _parse_int_env("DB_CONN_MAX_LIFETIME", default=3600),
        "pool_pre_ping": True,
    }


class BaseConfig:

    SECRET_KEY: str = _first_non_empty_env(
        "SECRET_KEY",
        "JWT_SECRET",
        default=_PLACEHOLDER_ACCESS_SECRET,
    )

    # Access and refresh tokens are signed with different secrets so a token
    # of one class never validates as the other.
    JWT_ACCESS_SECRET: str = _first_non_empty_env("JWT_SECRET", default=_PLACEHOLDER_ACCESS_SECRET)
    JWT_REFRESH_SECRET: str = _first_non_empty_env("JWT_REFRESH_SECRET", default=_PLACEHOLDER_REFRESH_SECRET)
    JWT_ACCESS_EXPIRE: int = _parse_int_env("JWT_ACCESS_EXPIRE", default=7200)
    JWT_REFRESH_EXPIRE: int = _parse_int_env("JWT_REFRESH_EXPIRE", default=604800)
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "trusioo_api"
    BCRYPT_LOG_ROUNDS: int = 12

    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    JSON_SORT_KEYS: bool = False
    JSON_AS_ASCII: bool = False

    # ── Verification codes ────────────────────────────────────────────────
    VERIFICATION_CODE_TTL: int = _parse_int_env("VERIFICATION_CODE_TTL", default=600)
    VERIFICATION_SEND_COOLDOWN: int = _parse_int_env("VERIFICATION_SEND_COOLDOWN", default=60)
    VERIFICATION_MAX_FAILED_ATTEMPTS: int = _parse_int_env("VERIFICATION_MAX_FAILED_ATTEMPTS", default=5)
    VERIFICATION_FAILED_WINDOW: int = _parse_int_env("VERIFICATION_FAILED_WINDOW", default=900)
    REDIS_URL: str = os.getenv("REDIS_URL", "")

    # ── Rate limit / request limits ───────────────────────────────────────
    RATE_LIMIT_REQUESTS: int = _parse_int_env("RATE_LIMIT_REQUESTS", default=100)
    RATE_LIMIT_WINDOW: int = _parse_int_env("RATE_LIMIT_WINDOW", default=60)
    RATE_LIMIT_AUTH_REQUESTS: int = _parse_int_env("RATE_LIMIT_AUTH_REQUESTS", default=10)
    RATE_LIMIT_AUTH_WINDOW: int = _parse_int_env("RATE_LIMIT_AUTH_WINDOW", default=60)
    REQUEST_TIMEOUT: int = _parse_int_env("REQUEST_TIMEOUT", default=30)
    # Reverse proxies in front of the app; their X-Forwarded-For hops are trusted.
    TRUSTED_PROXIES: int = _parse_int_env("TRUSTED_PROXIES", default=0)
    MAX_CONTENT_LENGTH: int = _parse_int_env("MAX_BODY_SIZE", default=10 * 1024 * 1024)

    # ── Card detection upstream ───────────────────────────────────────────
    CARD_DETECTION_ENABLED: bool = _parse_bool_env("CARD_DETECTION_ENABLED", False)
    CARD_DETECTION_HOST: str = os.getenv("CARD_DETECTION_HOST", "")
    CARD_DETECTION_APP_ID: str = os.getenv("CARD_DETECTION_APP_ID", "")
    CARD_DETECTION_APP_SECRET: str = os.getenv("CARD_DETECTION_APP_SECRET", "")
    CARD_DETECTION_TIMEOUT: int = _parse_int_env("CARD_DETECTION_TIMEOUT", default=30)

    # ── IP geolocation for login sessions ─────────────────────────────────
    IPINFO_ENABLED: bool = _parse_bool_env("IPINFO_ENABLED", False)
    IPINFO_TOKEN: str = os.getenv("IPINFO_TOKEN", "")
    IPINFO_BASE_URL: str = _first_non_empty_env("IPINFO_BASE_URL", default="https://ipinfo.io")
    IPINFO_TIMEOUT: int = _parse_int_env("IPINFO_TIMEOUT", default=5)

    CORS_ORIGINS: list[str] = [
        origin.strip()
        for origin in _first_non_empty_env("CORS_ORIGINS", default="http://localhost:3000").split(",")
        if origin.strip()
    ]
    CORS_ALLOW_ALL: bool = _parse_bool_env("CORS_ALLOW_ALL", False)

    LOG_LEVEL: str = _first_non_empty_env("LOG_LEVEL", default="INFO")


class DevelopmentConfig(BaseConfig):
    DEBUG:   bool = True
    TESTING: bool = False

    SQLALCHEMY_DATABASE_URI: str = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS: dict = _engine_options()
    SQLALCHEMY_ECHO: bool = False


class TestingConfig(BaseConfig):

    DEBUG:   bool = True
    TESTING: bool = True

    # In-memory SQLite keeps the suite self-contained; point TEST_DATABASE_URL
    # at PostgreSQL to run the integration tests against the real dialect.
    SQLALCHEMY_DATABASE_URI: str = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ECHO: bool = False

    JWT_ACCESS_SECRET: str = "test-access-secret"
    JWT_REFRESH_SECRET: str = "test-refresh-secret"
    JWT_ACCESS_EXPIRE: int = 7200
    JWT_REFRESH_EXPIRE: int = 604800
    BCRYPT_LOG_ROUNDS: int = 4

    REDIS_URL: str = ""
    IPINFO_ENABLED: bool = False
    TRUSTED_PROXIES: int = 0

    CARD_DETECTION_ENABLED: bool = True
    CARD_DETECTION_HOST: str = "https://upstream.test"
    CARD_DETECTION_APP_ID: str = "A"
    CARD_DETECTION_APP_SECRET: str = "S"
    CARD_DETECTION_TIMEOUT: int = 5


class ProductionConfig(BaseConfig):

    DEBUG:   bool = False
    TESTING: bool = False
    SQLALCHEMY_ECHO: bool = False

    # Resolve at class definition time (import time).
    SQLALCHEMY_DATABASE_URI: str = _database_url() if os.getenv("DATABASE_URL") or os.getenv("DB_HOST") else ""
    SQLALCHEMY_ENGINE_OPTIONS: dict = _engine_options()


def validate_production_config(app) -> None:
    """
    Fail-fast guard for production configuration.

    Must be called in the app factory immediately after
    app.config.from_object(ProductionConfig).

    Raises ValueError if any required production value is missing or insecure.
    """
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise ValueError(
            "DATABASE_URL (or DB_HOST/DB_NAME/...) is required in production. "
            "Set it to a valid PostgreSQL connection string."
        )
    if app.config.get("JWT_ACCESS_SECRET") == _PLACEHOLDER_ACCESS_SECRET:
        raise ValueError(
            "JWT_SECRET must be set to a strong random value in production. "
            "Do not use the default placeholder."
        )
    if app.config.get("JWT_REFRESH_SECRET") == _PLACEHOLDER_REFRESH_SECRET:
        raise ValueError(
            "JWT_REFRESH_SECRET must be set to a strong random value in production. "
            "Do not use the default placeholder."
        )
    if app.config.get("JWT_ACCESS_SECRET") == app.config.get("JWT_REFRESH_SECRET"):
        raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ.")
    if app.config.get("CARD_DETECTION_ENABLED"):
        for key in ("CARD_DETECTION_HOST", "CARD_DETECTION_APP_ID", "CARD_DETECTION_APP_SECRET"):
            if not app.config.get(key):
                raise ValueError(f"{key} is required when CARD_DETECTION_ENABLED is true.")


# ── Config selector ────────────────────────────────────────────────────────
#
# Used by the app factory:
#   from backend.config import config_by_name
#   app.config.from_object(config_by_name[env])
# ──────────────────────────────────────────────────────────────────────────

config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing":     TestingConfig,
    "production":  ProductionConfig,
}

ActiveConfig: type[BaseConfig] = config_by_name.get(
    os.getenv("ENV", os.getenv("FLASK_ENV", "development")),
    DevelopmentConfig,
)
