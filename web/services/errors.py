from __future__ import annotations

import re


class FilterProxyError(Exception):
    pass


class StartupError(FilterProxyError):
    """Raised for conditions that make the service unrunnable.

    Nothing is served once one of these is raised: the process (or gunicorn
    worker) exits instead of running with partial rules or missing config.
    """


class ConfigError(StartupError):
    pass


class RuleLoadError(StartupError):
    pass


class RuleParseError(StartupError):
    pass


class UpstreamError(FilterProxyError):
    """Request-scoped failure talking to the upstream API.

    `stage` names the step that failed and `public_message` is the plain-text
    body returned to the caller for it.
    """

    stage = "upstream"
    public_message = "failed"


class TokenAcquisitionError(UpstreamError):
    stage = "authenticate"
    public_message = "failed to authenticate"


class UpstreamFetchError(UpstreamError):
    stage = "fetch"
    public_message = "failed to fetch"


class UpstreamReadError(UpstreamError):
    stage = "read"
    public_message = "failed to read"


class PayloadParseError(UpstreamError):
    stage = "parse"
    public_message = "failed to parse"


def clean_text(text: str, *, max_len: int = 200) -> str:
    s = (text or "").replace("\r", " ").replace("\n", " ").strip()
    # Remove other control chars.
    s = "".join(ch if (ch >= " " and ch != "\x7f") else " " for ch in s)
    s = re.sub(r"\s+", " ", s).strip()
    if max_len and len(s) > max_len:
        s = s[: max_len - 1].rstrip() + "…"
    return s
