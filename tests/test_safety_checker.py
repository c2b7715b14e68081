"""Tests for audience safety screening."""

from tutor_guard.core.safety_checker import SAFETY_RULES, SafetyRule, check_safety
from tutor_guard.core.schemas_validation import IssueSeverity


def test_dangerous_instructions_flagged_for_everyone():
    flags = check_safety("Photosynthesis makes sugar. Here is how to build a bomb.", "graduate")

    assert [f.rule for f in flags] == ["weapons"]
    assert flags[0].severity == IssueSeverity.CRITICAL
    assert flags[0].span == "Here is how to build a bomb."


def test_mature_themes_only_for_young_students():
    text = "Alcohol is made by fermenting sugar."

    young = check_safety(text, "elementary")
    assert [(f.rule, f.severity) for f in young] == [("mature_themes", IssueSeverity.HIGH)]
    assert young[0].matched == "Alcohol"

    assert check_safety(text, "college") == []
    assert check_safety(text) == []


def test_level_matching_ignores_case():
    assert check_safety("Gambling is risky.", " Middle_School ")


def test_clean_answer():
    assert check_safety("Plants need light to grow.", "elementary") == []
    assert check_safety("") == []


def test_custom_rule_table():
    rules = SAFETY_RULES + (SafetyRule("spoilers", r"\bending\b", IssueSeverity.HIGH),)
    flags = check_safety("The ending is a surprise.", rules=rules)
    assert [f.rule for f in flags] == ["spoilers"]
