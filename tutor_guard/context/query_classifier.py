"""Query classification: personal vs general, subject/topic, urgency, validation level.

Keyword rules always run. An optional intent signal is blended in; when it
fails the classifier degrades to the rules alone and asks for basic
validation, but it never fails the request.
"""

from __future__ import annotations

import asyncio

from tutor_guard.context.classification_rules import (
    ADVANCED,
    BASIC,
    GENERAL,
    PERSONAL,
    RELAXED,
    URGENT,
    VERIFY,
    match_topic,
    score_rules,
    subject_for_topic,
)
from tutor_guard.context.intent_classifier import IntentScorer
from tutor_guard.core.config import Settings
from tutor_guard.core.errors import ClassificationDegraded
from tutor_guard.core.logging import get_logger
from tutor_guard.core.schemas_pipeline import (
    Classification,
    Complexity,
    PipelineRequest,
    Urgency,
    ValidationLevel,
)

logger = get_logger(__name__)

# Scores this close to the threshold count as ties
TIE_MARGIN = 0.1
# Share of the blended score given to the intent signal
INTENT_WEIGHT = 0.5

URGENCY_HINTS: dict[str, Urgency] = {
    "low": Urgency.LOW,
    "medium": Urgency.NORMAL,
    "normal": Urgency.NORMAL,
    "high": Urgency.TIME_SENSITIVE,
    "urgent": Urgency.TIME_SENSITIVE,
    "time_sensitive": Urgency.TIME_SENSITIVE,
}

LEVEL_COMPLEXITY: dict[str, Complexity] = {
    "elementary": Complexity.BASIC,
    "high_school": Complexity.INTERMEDIATE,
    "undergraduate": Complexity.INTERMEDIATE,
    "graduate": Complexity.ADVANCED,
    "professional": Complexity.ADVANCED,
}


class QueryClassifier:
    """Multi-signal classifier over the declarative rule table."""

    def __init__(self, settings: Settings, intent_scorer: IntentScorer | None = None):
        self.settings = settings
        self.intent_scorer = intent_scorer

    async def _intent_probability(self, message: str) -> float | None:
        if self.intent_scorer is None:
            return None
        try:
            probability = await asyncio.wait_for(
                self.intent_scorer.personal_probability(message),
                timeout=self.settings.CLASSIFIER_TIMEOUT_S,
            )
        except TimeoutError as e:
            raise ClassificationDegraded("intent signal timed out") from e
        except Exception as e:
            raise ClassificationDegraded(f"intent signal failed: {e}") from e
        return min(1.0, max(0.0, float(probability)))

    async def classify(self, request: PipelineRequest) -> Classification:
        degraded = False
        try:
            intent = await self._intent_probability(request.message)
        except ClassificationDegraded as e:
            logger.warning(
                f"ClassificationDegraded: {e}; using keyword rules only",
                extra={"request_id": request.request_id},
            )
            intent = None
            degraded = True
        return classify_text(request, self.settings.PERSONAL_SCORE_THRESHOLD, intent, degraded)


def classify_text(
    request: PipelineRequest,
    threshold: float = 0.5,
    intent_probability: float | None = None,
    degraded: bool = False,
) -> Classification:
    """Deterministic classification from rules plus an optional intent probability."""
    text = request.message or ""
    signals, pronoun_cue = score_rules(text)

    lexical = signals.get(PERSONAL, 0.0)
    if intent_probability is None:
        personal_score = lexical
    else:
        personal_score = (1 - INTENT_WEIGHT) * lexical + INTENT_WEIGHT * intent_probability

    is_personal = personal_score >= threshold
    if not is_personal and pronoun_cue and threshold - personal_score <= TIE_MARGIN:
        # Ties resolve to personal
        is_personal = True

    subject, topic, _ = match_topic(text)
    if request.topic:
        topic = request.topic
        subject = subject_for_topic(request.topic) or subject
    if request.subject:
        subject = request.subject
    if topic == GENERAL and subject != GENERAL and not request.topic:
        topic = subject

    complexity = _complexity(signals, request.academic_level)
    urgency = _urgency(signals, request.urgency)

    if degraded:
        level = ValidationLevel.BASIC
    elif (
        urgency == Urgency.TIME_SENSITIVE
        or complexity == Complexity.ADVANCED
        or signals.get(VERIFY, 0.0) >= 0.5
    ):
        level = ValidationLevel.ENHANCED
    else:
        level = ValidationLevel.STANDARD

    return Classification(
        is_personal_query=is_personal,
        topic=topic,
        subject=subject,
        complexity=complexity,
        urgency=urgency,
        required_validation_level=level,
        personal_score=round(min(1.0, personal_score), 4),
        degraded=degraded,
    )


def _complexity(signals: dict[str, float], academic_level: str | None) -> Complexity:
    if academic_level and academic_level in LEVEL_COMPLEXITY:
        hinted = LEVEL_COMPLEXITY[academic_level]
        if hinted != Complexity.INTERMEDIATE:
            return hinted
    advanced = signals.get(ADVANCED, 0.0)
    basic = signals.get(BASIC, 0.0)
    if advanced >= 0.5 and advanced >= basic:
        return Complexity.ADVANCED
    if basic >= 0.4 and basic > advanced:
        return Complexity.BASIC
    return Complexity.INTERMEDIATE


def _urgency(signals: dict[str, float], hint: str | None) -> Urgency:
    if hint and hint.lower() in URGENCY_HINTS:
        return URGENCY_HINTS[hint.lower()]
    if signals.get(URGENT, 0.0) >= 0.5:
        return Urgency.TIME_SENSITIVE
    if signals.get(RELAXED, 0.0) >= 0.5:
        return Urgency.LOW
    return Urgency.NORMAL
