"""Static catalogue of data-quality rules (R1..R34) and their severities.

The catalogue is read once from ``resources/rules.yml`` when this module is
imported and exposed as a read-only mapping.  :func:`get_rule_meta` is a total
function: unknown or missing ids get an ``info`` placeholder.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from cleanflow.core.models import RuleMeta, RuleSeverity
from cleanflow.core.resources import get_rules_catalogue_path

_log = logging.getLogger(__name__)

UNKNOWN_RULE_NAME = "Unknown rule"
NO_DESCRIPTION = "No description available."


def load_rule_catalogue(path: Path) -> dict[str, RuleMeta]:
    """Parse a rules YAML file into ``{RULE_ID: RuleMeta}``."""
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    catalogue: dict[str, RuleMeta] = {}
    for rule_id, entry in (data.get("rules") or {}).items():
        catalogue[str(rule_id).upper()] = RuleMeta(
            name=str(entry["name"]),
            severity=RuleSeverity(entry.get("severity", RuleSeverity.INFO.value)),
            description=str(entry.get("description") or NO_DESCRIPTION),
        )
    _log.debug("Loaded %d rule definitions from %s", len(catalogue), path)
    return catalogue


RULE_METADATA: Mapping[str, RuleMeta] = MappingProxyType(
    load_rule_catalogue(get_rules_catalogue_path())
)

RULE_IDS: tuple[str, ...] = tuple(
    sorted(RULE_METADATA, key=lambda rid: int(rid[1:]) if rid[1:].isdigit() else 0)
)


def get_rule_meta(rule_id: Any = None) -> RuleMeta:
    """Look up a rule case-insensitively; never raises, never returns None."""
    normalized = str(rule_id).upper() if rule_id is not None else ""
    meta = RULE_METADATA.get(normalized)
    if meta is not None:
        return meta
    return RuleMeta(
        name=normalized or UNKNOWN_RULE_NAME,
        severity=RuleSeverity.INFO,
        description=NO_DESCRIPTION,
    )


def rules_by_severity(severity: RuleSeverity | str) -> list[str]:
    """Rule ids with the given severity, in catalogue order."""
    severity = RuleSeverity(severity)
    return [rid for rid in RULE_IDS if RULE_METADATA[rid].severity == severity]
