from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from services.logutil import log_error_throttled
from services.rules import Rule, RuleKind


logger = logging.getLogger(__name__)


# One line per broken pattern per minute is enough to spot it.
COMPILE_ERROR_LOG_INTERVAL = 60.0


def first_match(text: str, rules: Iterable[Rule]) -> Optional[Rule]:
    """Return the first rule that drops `text`, or None to keep it.

    A pattern rule that does not compile counts as a match.
    """

    for rule in rules:
        if rule.kind is RuleKind.LITERAL:
            if rule.pattern in text:
                return rule
        elif rule.kind is RuleKind.PATTERN:
            try:
                compiled = re.compile(rule.pattern)
            except re.error as e:
                log_error_throttled(
                    logger,
                    f"filter_engine.compile:{rule.pattern}",
                    rule.pattern,
                    e,
                    interval_seconds=COMPILE_ERROR_LOG_INTERVAL,
                    message="Failed to compile regex: %s (%s)",
                )
                return rule
            if compiled.search(text):
                return rule
    return None


def should_keep(text: str, rules: Iterable[Rule]) -> bool:
    return first_match(text, rules) is None
