from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlparse

from services.errors import ConfigError


logger = logging.getLogger(__name__)


DEFAULT_RULES_DIR = "/rules"
DEFAULT_COOKIE_NAME = "_ncfa"
DEFAULT_PORT = 1412

_TRUTHY = ("1", "true", "yes", "on")


def _truthy(value: Optional[str], *, default: bool) -> bool:
    s = (value or "").strip().lower()
    if not s:
        return default
    return s in _TRUTHY


def _as_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _as_optional_float(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = (env.get(name) or "").strip()
    if not raw:
        return None
    try:
        v = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}") from e
    if v <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return v


@dataclass(frozen=True)
class Settings:
    base_url: str
    rules_dir: str = DEFAULT_RULES_DIR
    cookie_name: str = DEFAULT_COOKIE_NAME
    # The upstream serves a certificate that does not validate; verification
    # stays off unless explicitly requested.
    verify_tls: bool = False
    upstream_timeout: Optional[float] = None
    listen_host: str = "0.0.0.0"
    listen_port: int = DEFAULT_PORT
    log_level: str = "INFO"
    log_filtered_text: bool = True


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables.

    BASEURL is required. RULES falls back to /rules with a warning.
    """
    env = os.environ if env is None else env

    base_url = (env.get("BASEURL") or "").strip()
    if not base_url:
        raise ConfigError("BASEURL is not set")
    try:
        parsed = urlparse(base_url)
    except ValueError as e:
        raise ConfigError(f"BASEURL is not a valid URL: {base_url!r}") from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"BASEURL must be an http(s) URL, got {base_url!r}")

    rules_dir = (env.get("RULES") or "").strip()
    if not rules_dir:
        logger.warning(
            "RULES environment variable not set or empty, using default value: %s", DEFAULT_RULES_DIR
        )
        rules_dir = DEFAULT_RULES_DIR

    verify_tls = _truthy(env.get("UPSTREAM_VERIFY_TLS"), default=False)
    if not verify_tls:
        logger.warning("Upstream TLS certificate verification is disabled (UPSTREAM_VERIFY_TLS)")

    return Settings(
        base_url=base_url,
        rules_dir=rules_dir,
        cookie_name=(env.get("COOKIE_NAME") or "").strip() or DEFAULT_COOKIE_NAME,
        verify_tls=verify_tls,
        upstream_timeout=_as_optional_float(env, "UPSTREAM_TIMEOUT"),
        listen_host=(env.get("LISTEN_HOST") or "").strip() or "0.0.0.0",
        listen_port=_as_int(env, "LISTEN_PORT", DEFAULT_PORT),
        log_level=(env.get("LOG_LEVEL") or "").strip().upper() or "INFO",
        log_filtered_text=_truthy(env.get("LOG_FILTERED_TEXT"), default=True),
    )
