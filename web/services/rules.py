"""Block rule model and rule file parsing.

Two on-disk formats are understood:

  - plain lists (.txt): one literal substring per line
  - structured lists (.xml): <item enabled="true">r=PATTERN</item> entries,
    only enabled items carrying the r= prefix become pattern rules
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Tuple
from xml.etree.ElementTree import ParseError

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as DET

from services.errors import RuleParseError


logger = logging.getLogger(__name__)


# Rule sources carry emoji as raw \uXXXX escapes, which never occur in decoded
# comment text. Both sides are compared through this sentinel instead.
_ESCAPE_RE = re.compile(r"\\u\w{4}")
ESCAPE_SENTINEL = "[e]"

PATTERN_PREFIX = "r="
ROOT_TAG = "filters"


class RuleKind(enum.Enum):
    LITERAL = "literal"
    PATTERN = "pattern"


class RuleFormat(enum.Enum):
    PLAIN_LIST = "txt"
    STRUCTURED_LIST = "xml"


@dataclass(frozen=True)
class Rule:
    kind: RuleKind
    pattern: str


@dataclass(frozen=True)
class RawRuleFile:
    content: bytes
    format: RuleFormat
    path: str = ""


def normalize_rule_text(text: str) -> str:
    return _ESCAPE_RE.sub(ESCAPE_SENTINEL, text or "")


def parse_plain_list(content: bytes) -> List[Rule]:
    rules: List[Rule] = []
    text = content.decode("utf-8", errors="replace")
    for line in text.split("\n"):
        if line.endswith("\r"):
            line = line[:-1]
        # Every comment contains the empty string; a blank line must not
        # turn into a rule that drops everything.
        if not line:
            continue
        rules.append(Rule(kind=RuleKind.LITERAL, pattern=normalize_rule_text(line)))
    return rules


def parse_structured_list(content: bytes, *, path: str = "") -> List[Rule]:
    try:
        root = DET.fromstring(content)
    except (ParseError, DefusedXmlException) as e:
        raise RuleParseError(f"Failed to parse XML rule file {path or '<memory>'}: {e}") from e
    if root.tag != ROOT_TAG:
        raise RuleParseError(
            f"XML rule file {path or '<memory>'} has root <{root.tag}>, expected <{ROOT_TAG}>"
        )

    rules: List[Rule] = []
    for item in root.findall("item"):
        if item.get("enabled") != "true":
            continue
        body = item.text or ""
        if not body.startswith(PATTERN_PREFIX):
            continue
        normalized = normalize_rule_text(body)
        rules.append(Rule(kind=RuleKind.PATTERN, pattern=normalized[len(PATTERN_PREFIX):]))
    return rules


def parse_rule_files(files: Iterable[RawRuleFile]) -> Tuple[Rule, ...]:
    """Flatten raw rule files into one ordered, immutable rule tuple."""

    out: List[Rule] = []
    for f in files:
        if f.format is RuleFormat.PLAIN_LIST:
            parsed = parse_plain_list(f.content)
        elif f.format is RuleFormat.STRUCTURED_LIST:
            parsed = parse_structured_list(f.content, path=f.path)
        else:
            logger.warning("Invalid rule type %r for %s", f.format, f.path)
            continue
        logger.debug("Parsed %d rules from %s", len(parsed), f.path or "<memory>")
        out.extend(parsed)
    return tuple(out)
