"""Personalization & feedback engine.

Turns completed interactions and feedback into:
- memories (the interaction itself, corrections)
- incremental profile updates (bounded EMA on style weights and topic proficiency)
- patterns over a rolling window of adaptation events
- suggestions for the next response

Every update for one owner runs under the memory store's owner lock.
Handlers are idempotent per source id, so at-least-once redelivery is safe.
"""

from __future__ import annotations

import re
from collections import Counter
from uuid import NAMESPACE_URL, uuid5

from tutor_guard.core.config import Settings
from tutor_guard.core.logging import get_logger
from tutor_guard.core.memory_storage import build_memory
from tutor_guard.core.schemas_memory import MemoryPriority, MemoryRetention, MemoryType, utcnow
from tutor_guard.core.schemas_personalization import (
    AdaptationEvent,
    CompletedInteraction,
    FeedbackRecord,
    FeedbackType,
    LearningStyle,
    PersonalizationProfile,
    PersonalizationUpdate,
)
from tutor_guard.core.schemas_pipeline import Classification, PersonalizationSummary
from tutor_guard.db.memory_store import MemoryStore, ProfileStore

logger = get_logger(__name__)

MAX_HISTORY = 200
MAX_PROCESSED_IDS = 1_000
DEFAULT_PROFICIENCY = 0.5

HIGH_ENGAGEMENT = 0.7
LOW_ENGAGEMENT = 0.3
STRUGGLING = 0.4
STYLE_SIGNAL = 0.6

# Query cues that hint at a learning style (pattern -> style)
STYLE_CUES: tuple[tuple[str, LearningStyle], ...] = (
    (r"\b(diagram|picture|chart|graph|visuali[sz]e|draw|show me|image)\b", LearningStyle.VISUAL),
    (r"\b(explain|tell me|talk|discuss|say it|sound|pronounce)\b", LearningStyle.AUDITORY),
    (r"\b(step[- ]by[- ]step|practice|exercise|try|hands[- ]on|how do i|example)\b", LearningStyle.KINESTHETIC),
    (r"\b(summar(y|ize|ise)|notes|define|definition|list|read|write)\b", LearningStyle.READING_WRITING),
)

# Behaviour metric -> learning style it evidences
STYLE_METRICS: dict[str, LearningStyle] = {
    "visual_interaction": LearningStyle.VISUAL,
    "audio_playback": LearningStyle.AUDITORY,
    "practice_attempts": LearningStyle.KINESTHETIC,
    "notes_taken": LearningStyle.READING_WRITING,
    "reading_time": LearningStyle.READING_WRITING,
}

STYLE_SUGGESTIONS: dict[str, str] = {
    LearningStyle.VISUAL.value: "Use diagrams, charts or visual examples.",
    LearningStyle.AUDITORY.value: "Use conversational, spoken-style explanations.",
    LearningStyle.KINESTHETIC.value: "Use hands-on examples and practical exercises.",
    LearningStyle.READING_WRITING.value: "Use written summaries and structured notes.",
}

PATTERN_SUGGESTIONS: dict[str, str] = {
    "high_engagement": "Engagement is high; offer stretch material.",
    "low_engagement": "Engagement is low; keep answers shorter and more interactive.",
    "visual_preference": "Prefer visual explanations for this student.",
    "frequent_corrections": "The student often corrects answers; double-check facts.",
}


def memory_id_for(kind: str, source_id: str) -> str:
    """Deterministic memory id so redelivered messages upsert the same record."""
    return str(uuid5(NAMESPACE_URL, f"tutor-guard:{kind}:{source_id}"))


def ema(current: float, observed: float, learning_rate: float) -> float:
    """Bounded exponential moving average step."""
    updated = current + learning_rate * (observed - current)
    return min(1.0, max(0.0, updated))


def style_signals_from_text(text: str) -> dict[str, float]:
    lowered = (text or "").lower()
    return {style.value: 1.0 for pattern, style in STYLE_CUES if re.search(pattern, lowered)}


def style_signals_from_metrics(metrics: dict[str, float]) -> dict[str, float]:
    signals: dict[str, float] = {}
    for key, style in STYLE_METRICS.items():
        if key in metrics:
            value = min(1.0, max(0.0, float(metrics[key])))
            signals[style.value] = max(signals.get(style.value, 0.0), value)
    return signals


def engagement_from_metrics(metrics: dict[str, float]) -> float | None:
    if "engagement" in metrics:
        return min(1.0, max(0.0, float(metrics["engagement"])))
    if "time_on_response" in metrics:
        # Seconds spent on the answer; two minutes counts as fully engaged
        return min(1.0, max(0.0, float(metrics["time_on_response"]) / 120.0))
    return None


def apply_signals(
    profile: PersonalizationProfile,
    style_signals: dict[str, float],
    topic: str | None,
    observed: float | None,
    learning_rate: float,
) -> dict[str, float]:
    """Apply EMA updates in place. Returns per-key deltas."""
    deltas: dict[str, float] = {}

    for style, value in style_signals.items():
        current = profile.learning_style_weights.get(style, DEFAULT_PROFICIENCY)
        updated = ema(current, value, learning_rate)
        if updated != current:
            profile.learning_style_weights[style] = updated
            deltas[f"style:{style}"] = round(updated - current, 4)

    if topic and topic != "general" and observed is not None:
        current = profile.topic_proficiency.get(topic, DEFAULT_PROFICIENCY)
        updated = ema(current, observed, learning_rate)
        profile.topic_proficiency[topic] = updated
        if updated != current:
            deltas[f"topic:{topic}"] = round(updated - current, 4)

    return deltas


def detect_patterns(
    events: list[AdaptationEvent], style_weights: dict[str, float], window: int, min_events: int
) -> list[str]:
    """Threshold rolling aggregates over the last ``window`` events."""
    recent = events[-window:]
    patterns: list[str] = []

    engagement = [e.engagement for e in recent if e.engagement is not None]
    if len(engagement) >= min_events:
        mean = sum(engagement) / len(engagement)
        if mean >= HIGH_ENGAGEMENT:
            patterns.append("high_engagement")
        elif mean <= LOW_ENGAGEMENT:
            patterns.append("low_engagement")

    visual = [e for e in recent if e.style_signals.get(LearningStyle.VISUAL.value, 0.0) >= STYLE_SIGNAL]
    dominant = max(style_weights, key=style_weights.get, default=None)
    if len(visual) >= min_events and dominant == LearningStyle.VISUAL.value:
        patterns.append("visual_preference")

    if sum(1 for e in recent if e.is_correction) >= min_events:
        patterns.append("frequent_corrections")

    struggling = Counter(
        e.topic for e in recent if e.topic and e.observed is not None and e.observed <= STRUGGLING
    )
    for topic, count in sorted(struggling.items()):
        if count >= min_events:
            patterns.append(f"struggling_topic:{topic}")

    return patterns


def weak_topics(profile: PersonalizationProfile, limit: int | None = 3) -> list[tuple[str, float]]:
    """Topics below the struggling threshold, weakest first."""
    weakest = sorted(profile.topic_proficiency.items(), key=lambda kv: kv[1])
    weak = [(topic, proficiency) for topic, proficiency in weakest if proficiency < STRUGGLING]
    return weak if limit is None else weak[:limit]


def profile_guidance(profile: PersonalizationProfile, topic: str | None = None) -> str | None:
    """
    Render what the profile says about how to answer this student.

    Args:
        profile: The owner's personalization profile
        topic: Topic of the current request

    Returns:
        Guidance text, or None when the profile is still neutral
    """
    lines: list[str] = []

    dominant = profile.dominant_style()
    if dominant in STYLE_SUGGESTIONS and profile.learning_style_weights[dominant] >= STYLE_SIGNAL:
        label = dominant.replace("_", "/")
        lines.append(f"Preferred learning style: {label}. {STYLE_SUGGESTIONS[dominant]}")

    if topic and topic in profile.topic_proficiency:
        lines.append(f"Proficiency in {topic}: {profile.topic_proficiency[topic]:.0%}.")

    weak = weak_topics(profile)
    if weak:
        listed = ", ".join(f"{t} ({p:.0%})" for t, p in weak)
        lines.append(f"Weak topics: {listed}. Build up from the fundamentals when they come up.")

    return "\n".join(lines) or None


def build_suggestions(profile: PersonalizationProfile, max_items: int = 4) -> list[str]:
    suggestions: list[str] = []

    for pattern in profile.patterns:
        if pattern.startswith("struggling_topic:"):
            topic = pattern.split(":", 1)[1]
            suggestions.append(f"Review the fundamentals of {topic} before advancing.")
        elif pattern in PATTERN_SUGGESTIONS:
            suggestions.append(PATTERN_SUGGESTIONS[pattern])

    dominant = profile.dominant_style()
    if dominant in STYLE_SUGGESTIONS and profile.learning_style_weights[dominant] >= 0.7:
        suggestions.append(STYLE_SUGGESTIONS[dominant])

    for topic, proficiency in weak_topics(profile, limit=None):
        text = f"Revisit {topic}; proficiency is {proficiency:.0%}."
        if not any(topic in s for s in suggestions):
            suggestions.append(text)

    return list(dict.fromkeys(suggestions))[:max_items]


class PersonalizationEngine:
    """Owns profile and memory updates that follow an interaction."""

    def __init__(self, settings: Settings, memory_store: MemoryStore, profile_store: ProfileStore):
        self.settings = settings
        self.memory_store = memory_store
        self.profile_store = profile_store

    async def load_profile(self, owner_id: str) -> PersonalizationProfile:
        """Stored profile, or a fresh (unsaved) one on first interaction."""
        profile = await self.profile_store.get_profile(owner_id)
        return profile or PersonalizationProfile(owner_id=owner_id)

    def preview(
        self, profile: PersonalizationProfile, message: str, classification: Classification
    ) -> PersonalizationSummary:
        """What recording this interaction will change, without saving anything."""
        scratch = profile.model_copy(deep=True)
        delta = apply_signals(
            scratch,
            style_signals_from_text(message),
            classification.topic,
            None,
            self.settings.LEARNING_RATE,
        )
        return PersonalizationSummary(suggestions=build_suggestions(scratch), profile_delta=delta)

    def _record_event(self, profile: PersonalizationProfile, event: AdaptationEvent) -> None:
        profile.adaptation_history.append(event)
        profile.adaptation_history = profile.adaptation_history[-MAX_HISTORY:]
        profile.processed_ids.append(event.source_id)
        profile.processed_ids = profile.processed_ids[-MAX_PROCESSED_IDS:]
        profile.patterns = detect_patterns(
            profile.adaptation_history,
            profile.learning_style_weights,
            self.settings.PATTERN_WINDOW,
            self.settings.PATTERN_MIN_EVENTS,
        )
        profile.updated_at = utcnow()

    async def record_interaction(self, interaction: CompletedInteraction) -> PersonalizationUpdate:
        """
        Store the interaction as memories and fold it into the profile.

        Args:
            interaction: The completed pipeline run

        Returns:
            PersonalizationUpdate (skipped=True when already processed)
        """
        owner_id = interaction.owner_id
        async with self.memory_store.owner_lock(owner_id):
            profile = await self.load_profile(owner_id)
            if profile.has_processed(interaction.interaction_id):
                return PersonalizationUpdate(owner_id=owner_id, skipped=True)

            created: list[str] = []
            retention = (
                MemoryRetention.LONG_TERM if interaction.is_personal_query else MemoryRetention.SHORT_TERM
            )

            if interaction.is_personal_query:
                record = build_memory(
                    owner_id,
                    interaction.message,
                    MemoryType.USER_QUERY,
                    MemoryPriority.HIGH,
                    retention,
                    memory_id=memory_id_for("user_query", interaction.interaction_id),
                    topic=interaction.topic,
                    conversation_id=interaction.conversation_id,
                )
                created.append(await self.memory_store.upsert(record))

            # Only accepted answers are remembered
            if interaction.response and interaction.is_valid:
                record = build_memory(
                    owner_id,
                    interaction.response,
                    MemoryType.AI_RESPONSE,
                    MemoryPriority.MEDIUM,
                    retention,
                    memory_id=memory_id_for("ai_response", interaction.interaction_id),
                    response=interaction.response,
                    confidence=interaction.confidence,
                    topic=interaction.topic,
                    conversation_id=interaction.conversation_id,
                    processing_ms=interaction.processing_ms,
                )
                created.append(await self.memory_store.upsert(record))

            signals = style_signals_from_text(interaction.message)
            deltas = apply_signals(
                profile, signals, interaction.topic, None, self.settings.LEARNING_RATE
            )
            profile.interaction_count += 1
            self._record_event(
                profile,
                AdaptationEvent(
                    source="interaction",
                    source_id=interaction.interaction_id,
                    topic=interaction.topic,
                    style_signals=signals,
                    deltas=deltas,
                ),
            )
            await self.profile_store.save_profile(profile)

        logger.info(
            f"Recorded interaction {interaction.interaction_id}",
            extra={"owner_id": owner_id, "memories": len(created), "patterns": profile.patterns},
        )
        return PersonalizationUpdate(
            owner_id=owner_id,
            profile_delta=deltas,
            patterns=profile.patterns,
            suggestions=build_suggestions(profile),
            memories_created=created,
        )

    def _topic_for(self, profile: PersonalizationProfile, feedback: FeedbackRecord) -> str | None:
        if feedback.topic:
            return feedback.topic
        for event in reversed(profile.adaptation_history):
            if event.source == "interaction" and event.source_id == feedback.interaction_id:
                return event.topic
        return None

    async def apply_feedback(self, feedback: FeedbackRecord) -> PersonalizationUpdate:
        """
        Fold one feedback record into the owner's profile.

        Ratings map to (rating - 1) / 4, corrections to 0.0 plus a correction
        memory that supersedes the remembered answer, behaviour metrics to
        engagement and style observations.
        """
        owner_id = feedback.owner_id
        async with self.memory_store.owner_lock(owner_id):
            profile = await self.load_profile(owner_id)
            if profile.has_processed(feedback.id):
                return PersonalizationUpdate(owner_id=owner_id, skipped=True)

            topic = self._topic_for(profile, feedback)
            observed: float | None = None
            engagement: float | None = None
            style_signals: dict[str, float] = {}
            created: list[str] = []
            is_correction = feedback.type == FeedbackType.CORRECTION

            if feedback.rating is not None:
                observed = (feedback.rating - 1) / 4
                engagement = observed

            if feedback.behavior_metrics:
                style_signals = style_signals_from_metrics(feedback.behavior_metrics)
                measured = engagement_from_metrics(feedback.behavior_metrics)
                if measured is not None:
                    engagement = measured

            if is_correction:
                observed = 0.0
                if feedback.correction_text:
                    record = build_memory(
                        owner_id,
                        feedback.correction_text,
                        MemoryType.CORRECTION,
                        MemoryPriority.HIGH,
                        MemoryRetention.LONG_TERM,
                        memory_id=memory_id_for("correction", feedback.id),
                        topic=topic,
                        tags={"correction"},
                    )
                    created.append(await self.memory_store.upsert(record))
                await self.memory_store.expire(
                    [memory_id_for("ai_response", feedback.interaction_id)]
                )

            deltas = apply_signals(profile, style_signals, topic, observed, self.settings.LEARNING_RATE)
            self._record_event(
                profile,
                AdaptationEvent(
                    source="feedback",
                    source_id=feedback.id,
                    topic=topic,
                    observed=observed,
                    engagement=engagement,
                    style_signals=style_signals,
                    is_correction=is_correction,
                    deltas=deltas,
                ),
            )
            await self.profile_store.save_profile(profile)

        logger.info(
            f"Applied {feedback.type.value} feedback {feedback.id}",
            extra={"owner_id": owner_id, "deltas": deltas, "patterns": profile.patterns},
        )
        return PersonalizationUpdate(
            owner_id=owner_id,
            profile_delta=deltas,
            patterns=profile.patterns,
            suggestions=build_suggestions(profile),
            memories_created=created,
        )
