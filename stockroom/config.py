from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, TypeVar

T = TypeVar("T")

ENV_VAR = "FLASK_ENV"
DEFAULT_ENV = "development"
KNOWN_ENVS = ("development", "testing", "staging", "production")
_BOOL_WORDS = {
    "1": True, "true": True, "yes": True, "on": True,
    "0": False, "false": False, "no": False, "off": False,
}


@dataclass(frozen=True)
class EnvironmentInfo:
    name: str
    source: str
    raw_value: str


class EnvReader:
    """
    Typed access to environment variables.

    Blank values count as unset. A value that cannot be parsed falls back to
    the default and leaves a message in ``warnings`` so startup can report it
    instead of crashing.
    """

    def __init__(self, data: Mapping[str, str] | None = None):
        self._data = dict(os.environ if data is None else data)
        self.warnings: list[str] = []

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def raw(self, key: str) -> str | None:
        return self._data.get(key)

    def _value(self, key: str) -> str | None:
        value = (self._data.get(key) or "").strip()
        return value or None

    def _typed(self, key: str, default: T, kind: str, parse: Callable[[str], T]) -> T:
        value = self._value(key)
        if value is None:
            return default
        try:
            return parse(value)
        except ValueError:
            self.warn(f"{key} expected {kind} but received {value!r}; falling back to {default}.")
            return default

    def str(self, key: str, default: str | None = None) -> str | None:
        value = self._value(key)
        return default if value is None else value

    def int(self, key: str, default: int = 0) -> int:
        return self._typed(key, default, "integer", int)

    def float(self, key: str, default: float = 0.0) -> float:
        return self._typed(key, default, "float", float)

    def bool(self, key: str, default: bool = False) -> bool:
        def parse(value: str) -> bool:
            try:
                return _BOOL_WORDS[value.lower()]
            except KeyError:
                raise ValueError(value) from None

        return self._typed(key, default, "boolean", parse)


def _normalize_db_url(url: str | None) -> str | None:
    """Heroku-style postgres:// URLs are rejected by SQLAlchemy 2; rewrite the scheme."""
    if not url:
        return None
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def _resolve_environment(reader: EnvReader) -> EnvironmentInfo:
    raw_value = reader.str(ENV_VAR, DEFAULT_ENV) or DEFAULT_ENV
    name = raw_value.strip().lower()
    if name not in KNOWN_ENVS:
        raise RuntimeError(f"Invalid {ENV_VAR}={raw_value!r}. Expected one of {sorted(KNOWN_ENVS)}.")
    return EnvironmentInfo(name=name, source=ENV_VAR, raw_value=raw_value)


def _resolve_ratelimit_uri(reader: EnvReader) -> str:
    return (
        reader.str("RATELIMIT_STORAGE_URI")
        or reader.str("RATELIMIT_STORAGE_URL")
        or reader.str("REDIS_URL")
        or "memory://"
    )


def _resolve_retry_budget(reader: EnvReader) -> int:
    retries = reader.int("FEFO_MAX_RETRIES", 5)
    if retries < 1:
        reader.warn(f"FEFO_MAX_RETRIES must be at least 1 (got {retries}); using 1.")
        return 1
    return retries


def _sqlite_path(filename: str) -> str:
    instance_dir = os.path.join(os.path.abspath(os.path.dirname(__file__)), "..", "instance")
    return "sqlite:///" + os.path.join(instance_dir, filename)


env = EnvReader()
ENV_INFO = _resolve_environment(env)


class BaseConfig:
    FLASK_ENV = ENV_INFO.name
    SECRET_KEY = env.str("FLASK_SECRET_KEY", "devkey-please-change-in-production")
    JSON_SORT_KEYS = False
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    SQLALCHEMY_DATABASE_URI = _normalize_db_url(env.str("DATABASE_URL"))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": env.int("SQLALCHEMY_POOL_SIZE", 20),
        "max_overflow": env.int("SQLALCHEMY_MAX_OVERFLOW", 10),
        "pool_timeout": env.int("SQLALCHEMY_POOL_TIMEOUT", 30),
        "pool_recycle": env.int("SQLALCHEMY_POOL_RECYCLE", 1800),
        "pool_pre_ping": True,
    }

    LOG_LEVEL = env.str("LOG_LEVEL", "WARNING")
    LOG_REDACT_PII = env.bool("LOG_REDACT_PII", True)

    RATELIMIT_ENABLED = env.bool("RATELIMIT_ENABLED", True)
    RATELIMIT_STORAGE_URI = _resolve_ratelimit_uri(env)
    RATELIMIT_DEFAULT = env.str("RATELIMIT_DEFAULT", "5000 per hour;1000 per minute")
    # Applied per terminal (X-Terminal-Id) on POST /products/process-sale.
    SALE_RATE_LIMIT = env.str("SALE_RATE_LIMIT", "120 per minute")

    # Allocation
    FEFO_MAX_RETRIES = _resolve_retry_budget(env)
    FEFO_RETRY_BACKOFF_SECONDS = env.float("FEFO_RETRY_BACKOFF_SECONDS", 0.01)
    FEFO_ALLOW_EXPIRED = env.bool("FEFO_ALLOW_EXPIRED", True)
    SALE_TIMEOUT_SECONDS = env.float("SALE_TIMEOUT_SECONDS", 10.0)

    # Store
    STORE_TIMEZONE = env.str("STORE_TIMEZONE", "UTC")
    DEFAULT_PAYMENT_METHOD = env.str("DEFAULT_PAYMENT_METHOD", "cash")
    LOW_STOCK_THRESHOLD = env.int("LOW_STOCK_THRESHOLD", 10)


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = BaseConfig.SQLALCHEMY_DATABASE_URI or _sqlite_path("stockroom.db")
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 3600}
    LOG_LEVEL = env.str("LOG_LEVEL", "DEBUG")


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"
    FEFO_RETRY_BACKOFF_SECONDS = 0.0


class StagingConfig(BaseConfig):
    ENV = "staging"
    SQLALCHEMY_ENGINE_OPTIONS = dict(BaseConfig.SQLALCHEMY_ENGINE_OPTIONS, pool_size=10, max_overflow=20)


class ProductionConfig(BaseConfig):
    ENV = "production"
    LOG_LEVEL = env.str("LOG_LEVEL", "INFO")


config_map = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
}

Config = config_map[ENV_INFO.name]
ENV_DIAGNOSTICS = {
    "active": ENV_INFO.name,
    "source": ENV_INFO.source,
    "variables": {ENV_INFO.source: ENV_INFO.raw_value},
    "warnings": tuple(env.warnings),
}
