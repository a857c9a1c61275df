"""Tests for the rule metadata registry."""

from __future__ import annotations

import dataclasses

import pytest
import yaml

from cleanflow.core.models import RuleMeta, RuleSeverity
from cleanflow.core.resources import get_rules_catalogue_path
from cleanflow.core.rule_metadata import (
    NO_DESCRIPTION,
    RULE_IDS,
    RULE_METADATA,
    get_rule_meta,
    load_rule_catalogue,
    rules_by_severity,
)


class TestCatalogue:
    def test_thirty_four_rules_in_numeric_order(self):
        assert len(RULE_IDS) == 34
        assert RULE_IDS[0] == "R1"
        assert RULE_IDS[9] == "R10"
        assert RULE_IDS[-1] == "R34"

    def test_packaged_yaml_exists(self):
        data = yaml.safe_load(get_rules_catalogue_path().read_text(encoding="utf-8"))
        assert set(data["rules"]) == set(RULE_IDS)

    def test_every_rule_has_text(self):
        for rule_id in RULE_IDS:
            meta = RULE_METADATA[rule_id]
            assert meta.name
            assert meta.description
            assert isinstance(meta.severity, RuleSeverity)

    def test_mapping_is_read_only(self):
        with pytest.raises(TypeError):
            RULE_METADATA["R1"] = RuleMeta("x", RuleSeverity.INFO, "x")  # type: ignore[index]

    def test_entries_are_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            RULE_METADATA["R1"].name = "changed"  # type: ignore[misc]


class TestGetRuleMeta:
    def test_known_rule(self):
        meta = get_rule_meta("R19")
        assert meta.name == "Status outside enum"
        assert meta.severity == RuleSeverity.WARNING

    def test_lookup_is_case_insensitive(self):
        assert get_rule_meta("r27") == get_rule_meta("R27")

    def test_unknown_rule_defaults_to_info(self):
        assert get_rule_meta("R99") == RuleMeta(
            name="R99", severity=RuleSeverity.INFO, description="No description available."
        )

    def test_missing_rule_id(self):
        meta = get_rule_meta()
        assert meta.name == "Unknown rule"
        assert meta.severity == RuleSeverity.INFO
        assert meta.description == NO_DESCRIPTION

    def test_empty_string(self):
        assert get_rule_meta("").name == "Unknown rule"

    def test_to_dict(self):
        assert get_rule_meta("R1").to_dict() == {
            "name": "Missing required value",
            "severity": "critical",
            "description": "Flags empty values in required columns.",
        }


class TestSeverity:
    def test_ordering(self):
        assert sorted([RuleSeverity.INFO, RuleSeverity.CRITICAL, RuleSeverity.WARNING]) == [
            RuleSeverity.CRITICAL,
            RuleSeverity.WARNING,
            RuleSeverity.INFO,
        ]

    def test_greater_than_follows_severity(self):
        assert RuleSeverity.CRITICAL < RuleSeverity.WARNING < RuleSeverity.INFO
        assert RuleSeverity.INFO > RuleSeverity.WARNING
        assert not RuleSeverity.WARNING > RuleSeverity.INFO
        assert RuleSeverity.WARNING >= RuleSeverity.WARNING
        assert max(RuleSeverity) == RuleSeverity.INFO

    def test_rules_by_severity(self):
        critical = rules_by_severity("critical")
        assert {"R1", "R2", "R34"} <= set(critical)
        assert all(RULE_METADATA[r].severity == RuleSeverity.CRITICAL for r in critical)

    def test_partition(self):
        total = sum(len(rules_by_severity(s)) for s in RuleSeverity)
        assert total == len(RULE_IDS)


class TestLoadRuleCatalogue:
    def test_custom_file(self, tmp_path):
        path = tmp_path / "rules.yml"
        path.write_text(
            "rules:\n"
            "  r5:\n"
            "    name: Custom\n"
            "  R6:\n"
            "    name: Other\n"
            "    severity: critical\n"
            "    description: Something\n",
            encoding="utf-8",
        )
        catalogue = load_rule_catalogue(path)
        assert catalogue["R5"] == RuleMeta("Custom", RuleSeverity.INFO, NO_DESCRIPTION)
        assert catalogue["R6"].severity == RuleSeverity.CRITICAL

    def test_empty_file(self, tmp_path):
        path = tmp_path / "rules.yml"
        path.write_text("", encoding="utf-8")
        assert load_rule_catalogue(path) == {}
