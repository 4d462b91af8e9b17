from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse

MONITOR_FAMILIES = ("price", "yield", "ipo", "dividend")


def _load_dotenv(path: str = ".env") -> None:
    candidates = [Path(path)]
    resolved = Path(__file__).resolve()
    for parent in resolved.parents:
        candidates.append(parent / ".env")
    seen: set[Path] = set()
    for env_path in candidates:
        if env_path in seen or not env_path.exists():
            continue
        seen.add(env_path)
        for raw in env_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            os.environ.setdefault(key, value)


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
    except json.JSONDecodeError:
        pass
    return [token.strip() for token in raw.split(",") if token.strip()] or default


@dataclass
class Settings:
    app_name: str = "Shares Alert Engine"
    environment: str = "development"
    log_level: str = "INFO"

    frontend_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])

    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""

    gse_base_url: str = "https://dev.kwayisi.org/apis/gse"
    proxy_url: str = "https://api.allorigins.win/raw?url="
    dividend_api_url: str = "https://gse-dividends.onrender.com/stocks"
    http_timeout_seconds: float = 10.0
    http_max_connections: int = 50
    http_max_keepalive_connections: int = 10

    redis_enabled: bool = False
    redis_url: str = ""
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    stock_cache_ttl_minutes: int = 5
    fallback_cache_ttl_seconds: int = 60
    cache_warmup_symbols: List[str] = field(default_factory=lambda: ["MTN", "ACCESS", "GCB", "TOTAL", "GOIL"])

    price_check_interval_seconds: int = 30
    yield_check_interval_seconds: int = 900
    ipo_check_interval_seconds: int = 3600
    dividend_check_interval_seconds: int = 6 * 3600
    monitor_enabled_families: List[str] = field(default_factory=lambda: list(MONITOR_FAMILIES))
    max_concurrent_evaluations: int = 8
    shutdown_grace_seconds: int = 30

    notification_webhook_url: str = ""
    notification_webhook_token: str = ""

    @property
    def stock_cache_ttl_seconds(self) -> int:
        return self.stock_cache_ttl_minutes * 60

    def interval_for(self, family: str) -> int:
        return {
            "price": self.price_check_interval_seconds,
            "yield": self.yield_check_interval_seconds,
            "ipo": self.ipo_check_interval_seconds,
            "dividend": self.dividend_check_interval_seconds,
        }[family]


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _validate_settings(settings: Settings) -> None:
    if settings.environment.lower() == "production":
        required = {
            "SUPABASE_URL": settings.supabase_url,
            "SUPABASE_SERVICE_KEY": settings.supabase_service_key,
        }
        missing = [key for key, value in required.items() if not str(value or "").strip()]
        if missing:
            raise RuntimeError(f"Missing required production environment variables: {', '.join(sorted(missing))}")

    invalid_urls = [
        name
        for name, value in {
            "GSE_BASE_URL": settings.gse_base_url,
            "DIVIDEND_API_URL": settings.dividend_api_url,
        }.items()
        if not _is_http_url(value)
    ]
    if invalid_urls:
        raise RuntimeError(f"Invalid upstream URLs: {', '.join(invalid_urls)}")

    unknown = [family for family in settings.monitor_enabled_families if family not in MONITOR_FAMILIES]
    if unknown:
        raise RuntimeError(f"Unknown MONITOR_ENABLED_FAMILIES entries: {', '.join(unknown)}")

    for family in MONITOR_FAMILIES:
        if settings.interval_for(family) < 1:
            raise RuntimeError(f"Check interval for {family} alerts must be at least one second.")

    if settings.http_timeout_seconds <= 0:
        raise RuntimeError("HTTP_TIMEOUT_SECONDS must be positive.")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()
    settings = Settings(
        app_name=_env("APP_NAME", "Shares Alert Engine"),
        environment=_env("ENVIRONMENT", "development"),
        log_level=_env("LOG_LEVEL", "INFO"),
        frontend_origins=_env_list("FRONTEND_ORIGINS", ["http://localhost:5173", "http://localhost:3000"]),
        supabase_url=_env("SUPABASE_URL"),
        supabase_key=_env("SUPABASE_KEY"),
        supabase_service_key=_env("SUPABASE_SERVICE_KEY"),
        gse_base_url=_env("GSE_BASE_URL", "https://dev.kwayisi.org/apis/gse"),
        proxy_url=_env("PROXY_URL", "https://api.allorigins.win/raw?url="),
        dividend_api_url=_env("DIVIDEND_API_URL", "https://gse-dividends.onrender.com/stocks"),
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 10.0),
        http_max_connections=_env_int("HTTP_MAX_CONNECTIONS", 50),
        http_max_keepalive_connections=_env_int("HTTP_MAX_KEEPALIVE_CONNECTIONS", 10),
        redis_enabled=_env_bool("REDIS_ENABLED", False),
        redis_url=_env("REDIS_URL"),
        redis_host=_env("REDIS_HOST", "localhost"),
        redis_port=_env_int("REDIS_PORT", 6379),
        redis_password=_env("REDIS_PASSWORD"),
        redis_db=_env_int("REDIS_DB", 0),
        stock_cache_ttl_minutes=_env_int("STOCK_CACHE_TTL_MINUTES", 5),
        fallback_cache_ttl_seconds=_env_int("FALLBACK_CACHE_TTL_SECONDS", 60),
        cache_warmup_symbols=_env_list("CACHE_WARMUP_SYMBOLS", ["MTN", "ACCESS", "GCB", "TOTAL", "GOIL"]),
        price_check_interval_seconds=_env_int("PRICE_CHECK_INTERVAL_SECONDS", 30),
        yield_check_interval_seconds=_env_int("YIELD_CHECK_INTERVAL_SECONDS", 900),
        ipo_check_interval_seconds=_env_int("IPO_CHECK_INTERVAL_SECONDS", 3600),
        dividend_check_interval_seconds=_env_int("DIVIDEND_CHECK_INTERVAL_SECONDS", 6 * 3600),
        monitor_enabled_families=[
            item.strip().lower() for item in _env_list("MONITOR_ENABLED_FAMILIES", list(MONITOR_FAMILIES))
        ],
        max_concurrent_evaluations=max(1, _env_int("MAX_CONCURRENT_EVALUATIONS", 8)),
        shutdown_grace_seconds=_env_int("SHUTDOWN_GRACE_SECONDS", 30),
        notification_webhook_url=_env("NOTIFICATION_WEBHOOK_URL"),
        notification_webhook_token=_env("NOTIFICATION_WEBHOOK_TOKEN"),
    )
    _validate_settings(settings)
    return settings
