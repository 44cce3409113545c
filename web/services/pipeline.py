"""Fetch, authenticate and filter one upstream danmaku payload."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from services import upstream
from services.config import Settings
from services.errors import PayloadParseError, UpstreamError, UpstreamFetchError, clean_text
from services.filter_engine import first_match
from services.rules import Rule


logger = logging.getLogger(__name__)


# Position of the comment body inside an upstream row.
COMMENT_INDEX = 4


@dataclass(frozen=True)
class FilterResult:
    code: Any
    rows: List[list]
    dropped: List[str] = field(default_factory=list)

    @property
    def source_count(self) -> int:
        return len(self.rows) + len(self.dropped)

    def envelope(self) -> Dict[str, Any]:
        return {"code": self.code, "data": self.rows}


@dataclass(frozen=True)
class FilterOutcome:
    result: Optional[FilterResult] = None
    error: Optional[UpstreamError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def comment_text(row: Any) -> str:
    if not isinstance(row, list) or len(row) <= COMMENT_INDEX:
        raise PayloadParseError(f"Danmaku row has no comment field: {row!r:.120}")
    text = row[COMMENT_INDEX]
    if not isinstance(text, str):
        raise PayloadParseError(f"Danmaku comment is not text: {text!r:.120}")
    return text


def parse_envelope(body: bytes) -> Tuple[Any, List[list]]:
    """Decode the upstream `{code, data}` envelope.

    A null or missing `data` is an empty list; a missing `code` is 0.
    """
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise PayloadParseError(f"Failed to parse danmaku: {e}") from e
    if not isinstance(payload, dict):
        raise PayloadParseError("Danmaku payload is not a JSON object")

    rows = payload.get("data")
    if rows is None:
        rows = []
    if not isinstance(rows, list):
        raise PayloadParseError("Danmaku payload `data` is not a list")
    for row in rows:
        comment_text(row)
    return payload.get("code", 0), rows


def apply_filter(code: Any, rows: Sequence[list], rules: Sequence[Rule]) -> FilterResult:
    kept: List[list] = []
    dropped: List[str] = []
    for row in rows:
        text = comment_text(row)
        if first_match(text, rules) is None:
            kept.append(row)
        else:
            dropped.append(text)
    return FilterResult(code=code, rows=kept, dropped=dropped)


class FilterPipeline:
    """Per-request orchestration around a shared, read-only rule tuple.

    Instances hold no per-request state and are safe to share between
    concurrent request handlers.
    """

    def __init__(
        self,
        settings: Settings,
        rules: Sequence[Rule],
        acquire_token: Optional[Callable[..., str]] = None,
        fetch_payload: Optional[Callable[..., bytes]] = None,
    ) -> None:
        self.settings = settings
        self.rules: Tuple[Rule, ...] = tuple(rules)
        self._acquire_token = acquire_token
        self._fetch_payload = fetch_payload

    def run(self, url: str) -> FilterOutcome:
        try:
            return FilterOutcome(result=self._run(url))
        except UpstreamError as e:
            logger.error("Danmaku %s stage failed: %s", e.stage, e)
            return FilterOutcome(error=e)

    def _run(self, url: str) -> FilterResult:
        s = self.settings
        if not upstream.is_fetchable_url(url):
            raise UpstreamFetchError(f"Only http/https URLs are supported: {url!r}")

        acquire = self._acquire_token or upstream.acquire_token
        fetch = self._fetch_payload or upstream.fetch_payload

        token = acquire(
            s.base_url, s.cookie_name, verify_tls=s.verify_tls, timeout=s.upstream_timeout
        )
        body = fetch(
            url, s.cookie_name, token, verify_tls=s.verify_tls, timeout=s.upstream_timeout
        )
        code, rows = parse_envelope(body)
        result = apply_filter(code, rows, self.rules)

        if s.log_filtered_text:
            for text in result.dropped:
                logger.info("Filtered danmaku: %s", clean_text(text))
        logger.info(
            "Source danmakus: %d, filtered danmakus: %d", result.source_count, len(result.rows)
        )
        logger.info("Deleted %d danmakus", len(result.dropped))
        return result
