"""Runtime configuration and logging setup."""

import logging
import os
import sys
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

TRANSPORT_MODES = ("stdio", "sse", "http")

_DEFAULT_SERVER_URL = "http://localhost:3000"
_DEFAULT_RECONNECT_DELAY = 3.0
_DEFAULT_SYNC_TIMEOUT = 10.0
_ENV_LOADED = False

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _ensure_env_loaded() -> None:
    global _ENV_LOADED
    if not _ENV_LOADED:
        load_dotenv()
        _ENV_LOADED = True


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in ("false", "0", "no", "off")


@dataclass(frozen=True)
class Settings:
    """Settings shared by the tool bridge, the canvas server and the client."""

    canvas_server_url: str = _DEFAULT_SERVER_URL
    enable_canvas_sync: bool = True
    transport_mode: str = "stdio"
    host: str = "localhost"
    port: int = 3000
    reconnect_delay: float = _DEFAULT_RECONNECT_DELAY
    sync_timeout: float = _DEFAULT_SYNC_TIMEOUT
    log_level: str = "INFO"

    def __post_init__(self):
        if self.transport_mode not in TRANSPORT_MODES:
            raise ValueError(
                f"Unknown transport mode: {self.transport_mode}. Supported: {', '.join(TRANSPORT_MODES)}"
            )

    def with_overrides(self, **overrides) -> "Settings":
        """Return a copy with every override that is not ``None`` applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def load_settings(**overrides) -> Settings:
    """Read settings from the environment (and ``.env``), then apply overrides."""
    _ensure_env_loaded()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if _env_flag("DEBUG", False):
        log_level = "DEBUG"
    settings = Settings(
        canvas_server_url=os.getenv("CANVAS_SERVER_URL", _DEFAULT_SERVER_URL).rstrip("/"),
        enable_canvas_sync=_env_flag("ENABLE_CANVAS_SYNC", True),
        transport_mode=os.getenv("MCP_TRANSPORT_MODE", "stdio").strip().lower(),
        host=os.getenv("HOST", "localhost"),
        port=int(os.getenv("PORT", "3000")),
        reconnect_delay=float(os.getenv("CANVAS_RECONNECT_DELAY", str(_DEFAULT_RECONNECT_DELAY))),
        sync_timeout=float(os.getenv("SYNC_TIMEOUT", str(_DEFAULT_SYNC_TIMEOUT))),
        log_level=log_level,
    )
    return settings.with_overrides(**overrides)


def configure_logging(level: Optional[str] = None) -> None:
    """Send package logs to stderr; stdout belongs to the stdio transport."""
    root = logging.getLogger("mcp_plait_canvas")
    root.setLevel((level or "INFO").upper())
    if not any(getattr(h, "_plait_canvas", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._plait_canvas = True
        root.addHandler(handler)
