from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Tuple

from services.errors import RuleLoadError
from services.rules import RawRuleFile, Rule, RuleFormat, parse_rule_files


logger = logging.getLogger(__name__)


_EXTENSIONS: Dict[str, RuleFormat] = {
    ".txt": RuleFormat.PLAIN_LIST,
    ".xml": RuleFormat.STRUCTURED_LIST,
}


def _raise_walk_error(err: OSError) -> None:
    raise err


def read_rule_files(rules_dir: str) -> List[RawRuleFile]:
    """Read every rule file below `rules_dir`.

    Unknown extensions are skipped with a warning. Any I/O error (including a
    missing directory) raises RuleLoadError: the service must not start with a
    partial rule set.
    """

    paths: List[str] = []
    try:
        for dirpath, _dirnames, filenames in os.walk(rules_dir, onerror=_raise_walk_error):
            for name in filenames:
                paths.append(os.path.join(dirpath, name))
    except OSError as e:
        raise RuleLoadError(f"Failed to read rules from {rules_dir}: {e}") from e

    out: List[RawRuleFile] = []
    for path in sorted(paths):
        fmt: Optional[RuleFormat] = _EXTENSIONS.get(os.path.splitext(path)[1])
        if fmt is None:
            logger.warning("Invalid rule file extension: %s", path)
            continue
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise RuleLoadError(f"Failed to read rule file {path}: {e}") from e
        logger.info("Read rule file: %s", path)
        out.append(RawRuleFile(content=data, format=fmt, path=path))
    return out


def load_rules(rules_dir: str) -> Tuple[Rule, ...]:
    rules = parse_rule_files(read_rule_files(rules_dir))
    logger.info("Initialized %d rules", len(rules))
    return rules
