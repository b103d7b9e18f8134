"""Application configuration loaded via python-decouple with typed helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, Protocol, cast

from decouple import (
    Config as DecoupleConfig,
    RepositoryEmpty,
    RepositoryEnv,
)

_DOTENV_PATH: Final[Path] = Path(".env")
_SCHEME_RE: Final[re.Pattern[str]] = re.compile(r"^https?://")


def _build_decouple_config() -> DecoupleConfig:
    # Gracefully handle missing .env (e.g., in CI/tests) by falling back to an empty repository.
    try:
        return DecoupleConfig(RepositoryEnv(str(_DOTENV_PATH)))
    except FileNotFoundError:
        return DecoupleConfig(RepositoryEmpty())


_decouple_config: Final[DecoupleConfig] = _build_decouple_config()


@dataclass(slots=True, frozen=True)
class ShipSettings:
    """Connection parameters for the remote ship."""

    ship: str  # without the leading '~'
    code: str
    host: str
    port: str
    url: str
    request_timeout_seconds: float

    @property
    def identity(self) -> str:
        return f"~{self.ship}"


@dataclass(slots=True, frozen=True)
class HttpSettings:
    """HTTP transport related settings."""

    transport: str  # "stdio" | "http"
    host: str
    port: int
    path: str
    bearer_token: str | None
    request_log_enabled: bool


@dataclass(slots=True, frozen=True)
class Settings:
    """Top-level application settings."""

    environment: str
    ship: ShipSettings
    http: HttpSettings
    history_default_count: int
    # Logging
    log_rich_enabled: bool
    log_level: str
    log_json_enabled: bool
    tools_log_enabled: bool


def _bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return default


def _int(value: str, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float(value: str, *, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def build_ship_url(host: str, port: str) -> str:
    """Return the ship base URL.

    A host that already carries a scheme is used as-is (it may include its own
    port). Otherwise the scheme is inferred from the port: 443 means https,
    anything else http.
    """
    if _SCHEME_RE.match(host):
        return host.rstrip("/")
    scheme = "https" if port == "443" else "http"
    return f"{scheme}://{host}:{port}"


def _transport(value: str) -> str:
    v = (value or "").strip().lower()
    if v in {"stdio", "http"}:
        return v
    return "stdio"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    environment = _decouple_config("APP_ENVIRONMENT", default="development")

    ship_name = _decouple_config("URBIT_SHIP", default="zod").strip() or "zod"
    ship_name = ship_name.removeprefix("~")
    host = _decouple_config("URBIT_HOST", default="http://localhost").strip()
    port = _decouple_config("URBIT_PORT", default="8080").strip()

    ship_settings = ShipSettings(
        ship=ship_name,
        code=_decouple_config("URBIT_CODE", default="lidlut-tabwed-pillex-ridrup"),
        host=host,
        port=port,
        url=build_ship_url(host, port),
        request_timeout_seconds=_float(_decouple_config("URBIT_REQUEST_TIMEOUT_SECONDS", default="30"), default=30.0),
    )

    http_settings = HttpSettings(
        transport=_transport(_decouple_config("MCP_TRANSPORT", default="stdio")),
        host=_decouple_config("HTTP_HOST", default="127.0.0.1"),
        port=_int(_decouple_config("PORT", default="3001"), default=3001),
        path=_decouple_config("HTTP_PATH", default="/mcp/"),
        bearer_token=_decouple_config("HTTP_BEARER_TOKEN", default="") or None,
        request_log_enabled=_bool(_decouple_config("HTTP_REQUEST_LOG_ENABLED", default="false"), default=False),
    )

    return Settings(
        environment=environment,
        ship=ship_settings,
        http=http_settings,
        history_default_count=_int(_decouple_config("HISTORY_DEFAULT_COUNT", default="100"), default=100),
        log_rich_enabled=_bool(_decouple_config("LOG_RICH_ENABLED", default="true"), default=True),
        log_level=_decouple_config("LOG_LEVEL", default="INFO"),
        log_json_enabled=_bool(_decouple_config("LOG_JSON_ENABLED", default="false"), default=False),
        tools_log_enabled=_bool(_decouple_config("TOOLS_LOG_ENABLED", default="true"), default=True),
    )


class _CacheClearable(Protocol):
    def cache_clear(self) -> None: ...


def clear_settings_cache() -> None:
    """Clear the lru_cache for get_settings in a type-checker-friendly way."""
    cache_clear = getattr(cast(_CacheClearable, get_settings), "cache_clear", None)
    if callable(cache_clear):
        cache_clear()
