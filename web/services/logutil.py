from __future__ import annotations

import logging
import sys
import threading
import time
from typing import Dict


_lock = threading.Lock()
_last_log: Dict[str, float] = {}

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stderr handler on the root logger.

    Safe to call more than once; gunicorn and the dev server both end up here.
    """
    root = logging.getLogger()
    resolved = logging.getLevelName((level or "INFO").strip().upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    for h in root.handlers:
        if getattr(h, "_danmaku_filter", False):
            return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler._danmaku_filter = True  # type: ignore[attr-defined]
    root.addHandler(handler)


def should_log(key: str, *, interval_seconds: float) -> bool:
    now = time.monotonic()
    with _lock:
        last = _last_log.get(key)
        if last is not None and (now - last) < float(interval_seconds):
            return False
        _last_log[key] = now
        return True


def reset_throttle() -> None:
    with _lock:
        _last_log.clear()


def log_error_throttled(logger, key: str, *args, interval_seconds: float, message: str) -> None:
    """Log an error at most once per interval per key.

    Used on the per-comment path, where one broken rule would otherwise emit a
    line for every comment of every request.
    """
    if should_log(key, interval_seconds=interval_seconds):
        logger.error(message, *args)
