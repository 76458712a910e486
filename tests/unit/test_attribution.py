"""
Unit tests for team attribution rules and engine
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from core.exceptions import ConfigError
from ingestion.transformers.attribution import (
    AttributionEngine,
    RuleSet,
    format_team_name,
    load_rule_set,
)
from schemas.rules import RuleKind, RuleSetConfig, UNASSIGNED

EXAMPLE_RULES = Path(__file__).resolve().parents[2] / "config" / "team_rules.example.json"


def compile_rules(teams, manual_mappings=None):
    return RuleSet.compile(RuleSetConfig(teams=teams, manual_mappings=manual_mappings or {}))


class TestRuleSet:
    """Test rule compilation and matching order"""

    def test_subid_patterns(self):
        rules = compile_rules([
            {"team_id": "team-a", "subid_patterns": ["tigers"]},
            {"team_id": "team-b", "subid_patterns": ["war_eagle"]},
        ])

        assert rules.match("tigers_123").team_id == "team-a"
        assert rules.match("war_eagle_55").team_id == "team-b"
        assert rules.match("gators_9") is None

    def test_case_insensitive_substring(self):
        rules = compile_rules([{"team_id": "team-a", "subid_patterns": ["Tigers"]}])

        assert rules.match("LSU_TIGERS_01").team_id == "team-a"

    def test_first_declared_team_wins(self):
        rules = compile_rules([
            {"team_id": "team-a", "subid_patterns": ["tiger"]},
            {"team_id": "team-b", "subid_patterns": ["tigers_special"]},
        ])

        assert rules.match("tigers_special_1").team_id == "team-a"

    def test_subid_tier_beats_partner_tier(self):
        rules = compile_rules([
            {"team_id": "team-a", "partner_patterns": ["acme"]},
            {"team_id": "team-b", "subid_patterns": ["xyz"]},
        ])

        rule = rules.match("xyz1", partner="Acme Media")

        assert rule.team_id == "team-b"
        assert rule.kind is RuleKind.SUBID_PATTERN

    def test_campaign_tier_is_last(self):
        rules = compile_rules([
            {"team_id": "team-a", "campaign_patterns": ["fall"]},
            {"team_id": "team-b", "partner_patterns": ["acme"]},
        ])

        assert rules.match("", partner="Acme", campaign="Fall Promo").team_id == "team-b"
        assert rules.match("", partner="Other", campaign="Fall Promo").team_id == "team-a"

    def test_manual_mapping_is_exact_and_first(self):
        rules = compile_rules(
            [
                {"team_id": "team-a", "subid_patterns": ["vip"]},
                {"team_id": "team-b"},
            ],
            manual_mappings={"vip_001": "team-b"},
        )

        assert rules.match("vip_001").team_id == "team-b"
        assert rules.match("vip_001").kind is RuleKind.MANUAL_EXACT
        assert rules.match("VIP_001").team_id == "team-a"
        assert rules.match("vip_0011").team_id == "team-a"

    def test_priority_ranks_follow_tier_order(self):
        rules = compile_rules(
            [
                {"team_id": "team-a", "subid_patterns": ["a"], "campaign_patterns": ["c"]},
                {"team_id": "team-b", "partner_patterns": ["p"]},
            ],
            manual_mappings={"exact": "team-a"},
        )

        kinds = [rule.kind for rule in rules]
        assert kinds == [
            RuleKind.MANUAL_EXACT,
            RuleKind.SUBID_PATTERN,
            RuleKind.PARTNER_PATTERN,
            RuleKind.CAMPAIGN_PATTERN,
        ]
        assert [rule.priority_rank for rule in rules] == [0, 1, 2, 3]

    def test_inactive_teams_are_skipped(self):
        rules = compile_rules(
            [
                {"team_id": "team-a", "subid_patterns": ["shared"], "active": False},
                {"team_id": "team-b", "subid_patterns": ["shared"]},
            ],
            manual_mappings={"exact": "team-a"},
        )

        assert rules.match("shared_1").team_id == "team-b"
        assert rules.match("exact") is None
        assert rules.team_ids == ["team-b"]

    def test_blank_patterns_ignored(self):
        rules = compile_rules([{"team_id": "team-a", "subid_patterns": ["", "  ", "x"]}])

        assert len(rules) == 1

    def test_empty_rule_set(self):
        assert RuleSet.empty().match("anything") is None
        assert len(RuleSet.empty()) == 0

    def test_duplicate_team_ids_rejected(self):
        with pytest.raises(ValidationError):
            RuleSetConfig(teams=[{"team_id": "a"}, {"team_id": "a"}])

    def test_reserved_team_id_rejected(self):
        with pytest.raises(ValidationError):
            RuleSetConfig(teams=[{"team_id": UNASSIGNED}])


class TestAttributionEngine:
    """Test record classification"""

    @pytest.fixture
    def engine(self, rules_config):
        return AttributionEngine(RuleSet.compile(RuleSetConfig(**rules_config)))

    def test_classify_record_with_header_variants(self, engine):
        assert engine.classify({"SubID": "lsu_01"}) == "lsu-tigers"
        assert engine.classify({"subid": "war_eagle_55"}) == "auburn-tigers"
        assert engine.classify({"SubId": "vip_001"}) == "auburn-tigers"
        assert engine.classify({"SubID": "nobody"}) is None

    def test_manual_lookup_trims_subid(self, engine):
        assert engine.classify({"SubID": "  vip_001 "}) == "auburn-tigers"

    def test_missing_subid_column(self, engine):
        assert engine.classify({"Partner": "Acme"}) is None

    def test_classify_rows(self, engine):
        headers = ("Partner", "SubID", "Sale_amount")
        rows = [("Acme", "lsu_tigers_01", "10"), ("Acme", "unknown", "5")]

        records = list(engine.classify_rows(headers, rows))

        assert [r.row_index for r in records] == [0, 1]
        assert records[0].team_id == "lsu-tigers"
        assert records[0].matched_rule.pattern == "lsu"
        assert records[1].team_id is None
        assert records[1].team_label == UNASSIGNED
        assert records[1].as_dict() == {"Partner": "Acme", "SubID": "unknown", "Sale_amount": "5"}

    def test_classify_rows_skipping_empty_keeps_source_index(self, engine):
        headers = ("SubID", "Sale_amount")
        rows = [("", ""), ("lsu_1", "10"), (" ", ""), ("auburn_2", "5")]

        records = list(engine.classify_rows(headers, rows, skip_empty=True))

        assert [r.row_index for r in records] == [1, 3]
        assert [r.team_id for r in records] == ["lsu-tigers", "auburn-tigers"]

    def test_display_name(self, engine):
        assert engine.display_name("lsu-tigers") == "LSU Tigers"
        assert engine.display_name("auburn-tigers") == "Auburn Tigers"
        assert engine.display_name(None) == UNASSIGNED


def test_format_team_name():
    assert format_team_name("auburn-tigers") == "Auburn Tigers"
    assert format_team_name("ole_miss_rebels") == "Ole Miss Rebels"
    assert format_team_name("LSU-tigers") == "LSU Tigers"


class TestLoadRuleSet:
    """Test loading rules from JSON"""

    def test_loads_object_form(self, tmp_path, rules_config):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps(rules_config))

        rules = load_rule_set(str(path))

        assert rules.team_ids == ["lsu-tigers", "auburn-tigers"]
        assert rules.match("vip_001").team_id == "auburn-tigers"

    def test_loads_list_form(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([{"team_id": "team-a", "subid_patterns": ["a"]}]))

        assert load_rule_set(str(path)).team_ids == ["team-a"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_rule_set(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError):
            load_rule_set(str(path))

    def test_undeclared_manual_target(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"teams": [], "manual_mappings": {"x": "ghost"}}))

        with pytest.raises(ConfigError):
            load_rule_set(str(path))

    def test_example_rules_file_loads(self):
        rules = load_rule_set(str(EXAMPLE_RULES))

        assert "ole-miss-rebels" not in rules.team_ids
        assert rules.match("nil_campaign_2024").team_id == "florida-gators"
