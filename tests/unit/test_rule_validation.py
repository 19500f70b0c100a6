"""Tests for penalty rule definition validation."""

import pytest

from famquest.behavior.conditions import ConditionEvaluator
from famquest.behavior.consequences import SeverityTable
from famquest.behavior.rules import DEFAULT_RULES, rule_definition_errors, validate_rule_definition
from famquest.errors import ValidationFailed

VALID = {
    "name": "Skipped homework",
    "trigger": "missed_quest",
    "penalty_type": "xp_deduction",
    "severity": "minor",
    "consequences": {"xp_deduction": 10},
}


def _errors(**overrides):
    return rule_definition_errors({**VALID, **overrides}, SeverityTable())


class TestRequiredFields:
    def test_valid_definition(self):
        assert _errors() == []

    def test_stock_rules_are_valid(self):
        for definition in DEFAULT_RULES:
            assert rule_definition_errors(definition, SeverityTable()) == [], definition["name"]

    def test_every_missing_field_reported_at_once(self):
        errors = rule_definition_errors({}, SeverityTable())
        assert "name is required" in errors
        assert "trigger is required" in errors
        assert "penalty_type is required" in errors
        assert "severity is required" in errors
        assert "at least one consequence is required" in errors

    def test_unknown_trigger(self):
        assert any("trigger 'weather'" in e for e in _errors(trigger="weather"))

    def test_unknown_severity(self):
        assert any("severity 'apocalyptic'" in e for e in _errors(severity="apocalyptic"))

    def test_blank_name(self):
        assert "name is required" in _errors(name="   ")

    def test_flags_must_be_booleans(self):
        errors = _errors(is_active=None, auto_apply="yes")
        assert "is_active must be true or false" in errors
        assert "auto_apply must be true or false" in errors
        assert "appealable must be true or false" not in errors


class TestConsequences:
    def test_negative_deduction(self):
        errors = _errors(consequences={"xp_deduction": -5})
        assert errors and errors[0].startswith("consequences.xp_deduction")

    def test_unknown_effect(self):
        assert any(e.startswith("consequences.grounded") for e in _errors(consequences={"grounded": True}))


class TestConditions:
    def test_unknown_condition_key(self):
        assert "conditions.weather: unknown condition" in _errors(conditions={"weather": "rainy"})

    def test_inverted_range(self):
        errors = _errors(conditions={"hours_late": {"min": 5, "max": 1}})
        assert "conditions.hours_late: min must not exceed max" in errors

    def test_range_needs_a_bound(self):
        assert "conditions.streak_length: must declare min and/or max" in _errors(conditions={"streak_length": {}})

    def test_bad_difficulty(self):
        assert any(e.startswith("conditions.quest_difficulty") for e in _errors(conditions={"quest_difficulty": "extreme"}))

    def test_custom_predicate_must_be_registered(self):
        definition = {**VALID, "conditions": {"custom": "school_night"}}
        errors = rule_definition_errors(definition, SeverityTable(), ConditionEvaluator())
        assert "conditions.custom: unknown predicate 'school_night'" in errors

        evaluator = ConditionEvaluator({"school_night": lambda data: True})
        assert rule_definition_errors(definition, SeverityTable(), evaluator) == []


class TestEscalation:
    def test_valid_escalation(self):
        escalation = {"tiers": {"first_offense": {"warning": True}}, "reset_period": "1 week"}
        assert _errors(escalation=escalation) == []

    def test_unknown_tier(self):
        errors = _errors(escalation={"tiers": {"fifth_offense": {"xp_deduction": 5}}})
        assert "escalation.tiers.fifth_offense: unknown tier" in errors

    def test_empty_tiers(self):
        assert "escalation.tiers must be a non-empty object" in _errors(escalation={"tiers": {}})

    def test_unknown_reset_period(self):
        errors = _errors(escalation={"tiers": {"first_offense": {"warning": True}}, "reset_period": "1 year"})
        assert any(e.startswith("escalation.reset_period must be one of") for e in errors)

    def test_non_positive_reset_hours(self):
        errors = _errors(escalation={"tiers": {"first_offense": {"warning": True}}, "reset_period_hours": 0})
        assert "escalation.reset_period_hours must be a positive number" in errors


class TestValidateRuleDefinition:
    def test_raises_with_details(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_rule_definition({**VALID, "trigger": None}, SeverityTable())
        assert exc_info.value.details == ["trigger is required"]
