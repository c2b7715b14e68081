"""Safety screening of candidate responses for a student audience.

Rules are declarative. A rule restricted to ``levels`` only applies when the
request's academic level is one of them; unrestricted rules apply to everyone.
"""

import re
from dataclasses import dataclass
from functools import lru_cache

from tutor_guard.core.claims import split_sentences
from tutor_guard.core.schemas_validation import IssueSeverity, SafetyFlag

YOUNG_LEVELS = frozenset({"elementary", "middle_school"})


@dataclass(frozen=True)
class SafetyRule:
    """A regex that flags a sentence as unsafe for the audience."""

    name: str
    pattern: str
    severity: IssueSeverity
    levels: frozenset[str] | None = None

    def compiled(self) -> re.Pattern[str]:
        return _compile(self.pattern)

    def applies_to(self, academic_level: str | None) -> bool:
        if self.levels is None:
            return True
        return (academic_level or "").strip().lower() in self.levels


@lru_cache(maxsize=64)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


SAFETY_RULES: tuple[SafetyRule, ...] = (
    # Dangerous instructions, any audience
    SafetyRule(
        "weapons",
        r"\bhow to (make|build) (a |an )?(weapons?|bombs?|explosives?)\b",
        IssueSeverity.CRITICAL,
    ),
    SafetyRule("hacking", r"\bhow to hack\b", IssueSeverity.CRITICAL),
    SafetyRule("illegal_activity", r"\billegal activit(y|ies)\b", IssueSeverity.CRITICAL),
    SafetyRule("harmful_substances", r"\bharmful substances?\b", IssueSeverity.CRITICAL),
    SafetyRule("dangerous_experiments", r"\bdangerous experiments?\b", IssueSeverity.CRITICAL),
    SafetyRule("self_harm", r"\b(self[- ]harm|suicide)\b", IssueSeverity.CRITICAL),
    # Mature themes for younger students
    SafetyRule(
        "mature_themes",
        r"\b(violence|weapons?|drugs|alcohol|tobacco|gambling|gore|adult content|"
        r"mature themes|sexual content)\b",
        IssueSeverity.HIGH,
        levels=YOUNG_LEVELS,
    ),
)


def check_safety(
    text: str,
    academic_level: str | None = None,
    rules: tuple[SafetyRule, ...] = SAFETY_RULES,
) -> list[SafetyFlag]:
    """
    Screen a candidate response sentence by sentence.

    Args:
        text: Candidate response
        academic_level: Student's academic level, selects age-restricted rules
        rules: Rule table to evaluate

    Returns:
        One flag per (sentence, rule) match, in text order
    """
    active = [rule for rule in rules if rule.applies_to(academic_level)]
    flags: list[SafetyFlag] = []
    for sentence in split_sentences(text):
        for rule in active:
            match = rule.compiled().search(sentence)
            if match:
                flags.append(
                    SafetyFlag(
                        rule=rule.name,
                        severity=rule.severity,
                        span=sentence,
                        matched=match.group(0),
                    )
                )
    return flags
