"""Outbound calls to the upstream danmaku API.

Two calls per filter request: an unauthenticated handshake against the base URL
that yields the session cookie, then the authenticated fetch of the comment
payload. Each call builds its own opener, so no cookie or connection state is
shared between requests.
"""

from __future__ import annotations

import http.client
import http.cookiejar
import logging
import ssl
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import urlparse

from services.errors import TokenAcquisitionError, UpstreamFetchError, UpstreamReadError


logger = logging.getLogger(__name__)


_USER_AGENT = "danmaku-filter/1.0"

# Failures that mean "no usable response was obtained".
_TRANSPORT_ERRORS = (urllib.error.URLError, http.client.HTTPException, OSError, ValueError)


def build_ssl_context(verify_tls: bool) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    if not verify_tls:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _build_opener(verify_tls: bool, jar: Optional[http.cookiejar.CookieJar] = None):
    handlers = [urllib.request.HTTPSHandler(context=build_ssl_context(verify_tls))]
    if jar is not None:
        handlers.append(urllib.request.HTTPCookieProcessor(jar))
    return urllib.request.build_opener(*handlers)


def _open(opener, req: urllib.request.Request, timeout: Optional[float]):
    try:
        return opener.open(req, timeout=timeout)
    except urllib.error.HTTPError as e:
        # An error status is still a complete response.
        return e


def is_fetchable_url(url: str) -> bool:
    try:
        u = urlparse(url or "")
    except ValueError:
        return False
    return u.scheme in ("http", "https") and bool(u.netloc)


def acquire_token(
    base_url: str,
    cookie_name: str,
    *,
    verify_tls: bool = False,
    timeout: Optional[float] = None,
) -> str:
    """Perform the login handshake and return the session cookie value.

    The cookie must be one the jar would send back to the final URL after
    redirects. Raises TokenAcquisitionError otherwise or on any transport
    failure.
    """

    policy = http.cookiejar.DefaultCookiePolicy()
    jar = http.cookiejar.CookieJar(policy)
    opener = _build_opener(verify_tls, jar)

    try:
        req = urllib.request.Request(base_url, headers={"User-Agent": _USER_AGENT}, method="GET")
        with _open(opener, req, timeout) as resp:
            resp.read()
            final_url = resp.geturl() or base_url
    except _TRANSPORT_ERRORS as e:
        raise TokenAcquisitionError(f"Failed to fetch cookie from {base_url}: {e}") from e

    final_req = urllib.request.Request(final_url)
    for cookie in jar:
        if cookie.name != cookie_name:
            continue
        # Same checks CookieJar applies before sending a cookie to a URL.
        if (
            policy.domain_return_ok(cookie.domain, final_req)
            and policy.path_return_ok(cookie.path, final_req)
            and policy.return_ok(cookie, final_req)
        ):
            return cookie.value or ""

    raise TokenAcquisitionError(f"Cookie {cookie_name!r} not set by {final_url}")


def fetch_payload(
    url: str,
    cookie_name: str,
    token: str,
    *,
    verify_tls: bool = False,
    timeout: Optional[float] = None,
) -> bytes:
    """GET `url` with the session cookie attached and return the raw body."""

    if not is_fetchable_url(url):
        raise UpstreamFetchError(f"Only http/https URLs are supported: {url!r}")

    opener = _build_opener(verify_tls)

    try:
        req = urllib.request.Request(
            url,
            headers={"User-Agent": _USER_AGENT, "Cookie": f"{cookie_name}={token}"},
            method="GET",
        )
        resp = _open(opener, req, timeout)
    except _TRANSPORT_ERRORS as e:
        raise UpstreamFetchError(f"Failed to fetch danmaku from {url}: {e}") from e

    with resp:
        if isinstance(resp, urllib.error.HTTPError):
            logger.warning("Upstream returned HTTP %s for %s", resp.code, url)
        try:
            return resp.read()
        except (http.client.HTTPException, OSError) as e:
            raise UpstreamReadError(f"Failed to read danmaku from {url}: {e}") from e
