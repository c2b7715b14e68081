"""Declarative classification rules and the subject/topic taxonomy.

Every lexical signal the query classifier uses lives in these tables; the
classifier itself only evaluates them.
"""

import re
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class ClassificationRule:
    """A regex that contributes ``weight`` to ``signal`` when it matches."""

    pattern: str
    signal: str
    weight: float
    pronoun_cue: bool = False

    def compiled(self) -> re.Pattern[str]:
        return _compile(self.pattern)


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


PERSONAL = "personal"
URGENT = "urgency:time_sensitive"
RELAXED = "urgency:low"
ADVANCED = "complexity:advanced"
BASIC = "complexity:basic"
VERIFY = "validation:enhanced"


CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    # Personal-reference cues
    ClassificationRule(r"\bmy\b", PERSONAL, 0.6, pronoun_cue=True),
    ClassificationRule(r"\b(mine|myself)\b", PERSONAL, 0.5, pronoun_cue=True),
    ClassificationRule(r"\b(i am|i'm|im|i was)\b", PERSONAL, 0.4, pronoun_cue=True),
    ClassificationRule(r"\bi\b", PERSONAL, 0.2, pronoun_cue=True),
    ClassificationRule(r"\b(me)\b", PERSONAL, 0.2, pronoun_cue=True),
    ClassificationRule(
        r"\bmy (name|age|grade|score|scores|performance|progress|class|school|exam|goal|goals)\b",
        PERSONAL,
        0.4,
    ),
    ClassificationRule(r"\bi (feel|think|believe|want|like|prefer|struggle)\b", PERSONAL, 0.3),
    ClassificationRule(r"\b(about me|for me|my learning|my understanding|my knowledge)\b", PERSONAL, 0.5),
    ClassificationRule(r"\b(remember|do you know who i am|last time|we discussed)\b", PERSONAL, 0.4),
    # Urgency
    ClassificationRule(r"\b(urgent|asap|immediately|right now|quickly)\b", URGENT, 0.6),
    ClassificationRule(r"\b(exam|test|quiz) (is )?(tomorrow|tonight|today|in an hour)\b", URGENT, 0.8),
    ClassificationRule(r"\b(deadline|due (tomorrow|tonight|today))\b", URGENT, 0.6),
    ClassificationRule(r"\b(latest|currently|current|today|this week|this year|news)\b", URGENT, 0.5),
    ClassificationRule(r"\b(no rush|whenever|just curious|just wondering)\b", RELAXED, 0.7),
    # Complexity
    ClassificationRule(r"\b(prove|proof|derive|derivation|theorem|rigorous)\b", ADVANCED, 0.6),
    ClassificationRule(
        r"\b(differential|quantum|asymptotic|eigen\w*|thermodynamic\w*|stochastic)\b", ADVANCED, 0.5
    ),
    ClassificationRule(r"\b(compare and contrast|critically|evaluate|analy[sz]e)\b", ADVANCED, 0.3),
    ClassificationRule(r"\b(what is|what are|define|definition of)\b", BASIC, 0.4),
    ClassificationRule(r"\b(simple|simply|basic|beginner|like i'm five|eli5)\b", BASIC, 0.5),
    # Verification demand
    ClassificationRule(r"\b(is it true|fact|facts|statistic\w*|cite|source|sources)\b", VERIFY, 0.5),
    ClassificationRule(r"\b(when did|when was|how many|how much|what year)\b", VERIFY, 0.5),
    ClassificationRule(r"\b(latest|currently|current|as of)\b", VERIFY, 0.5),
)


# subject -> topic -> keywords; order is the tie-break order
TOPIC_TAXONOMY: dict[str, dict[str, tuple[str, ...]]] = {
    "mathematics": {
        "algebra": ("algebra", "equation", "polynomial", "quadratic", "linear equation", "factor"),
        "geometry": ("geometry", "triangle", "angle", "circle", "perimeter", "area", "pythagoras"),
        "calculus": ("calculus", "derivative", "integral", "limit", "differentiation", "integration"),
        "statistics": ("statistics", "probability", "mean", "median", "variance", "distribution"),
    },
    "science": {
        "physics": ("physics", "force", "velocity", "gravity", "newton", "momentum", "energy", "quantum"),
        "chemistry": ("chemistry", "molecule", "atom", "reaction", "acid", "element", "periodic table"),
        "biology": ("biology", "cell", "photosynthesis", "dna", "evolution", "organism", "protein", "gene"),
    },
    "history": {
        "ancient_history": ("ancient", "roman", "rome", "egypt", "pharaoh", "greek", "dynasty"),
        "modern_history": ("world war", "revolution", "treaty", "cold war", "independence", "empire"),
    },
    "literature": {
        "literature": ("poem", "poetry", "novel", "shakespeare", "metaphor", "plot", "theme", "character"),
    },
    "language": {
        "grammar": ("grammar", "verb", "noun", "adjective", "tense", "syntax", "punctuation"),
        "vocabulary": ("vocabulary", "synonym", "antonym", "meaning of the word", "spelling"),
    },
    "social_studies": {
        "civics": ("government", "democracy", "constitution", "election", "citizenship", "parliament"),
        "economics": ("economy", "economics", "inflation", "market", "supply", "demand", "gdp"),
        "geography": ("geography", "capital", "continent", "river", "mountain", "climate", "country"),
    },
    "computing": {
        "programming": ("python", "javascript", "code", "programming", "function", "loop", "compile"),
        "algorithms": ("algorithm", "sorting", "recursion", "complexity", "data structure", "graph"),
    },
}

GENERAL = "general"


def score_rules(
    text: str, rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES
) -> tuple[dict[str, float], bool]:
    """Sum rule weights per signal.

    Returns:
        Tuple of (signal -> clamped score, whether any pronoun cue matched)
    """
    scores: dict[str, float] = {}
    pronoun = False
    for rule in rules:
        if rule.compiled().search(text):
            scores[rule.signal] = scores.get(rule.signal, 0.0) + rule.weight
            pronoun = pronoun or rule.pronoun_cue
    return {k: min(1.0, v) for k, v in scores.items()}, pronoun


def match_topic(
    text: str, taxonomy: dict[str, dict[str, tuple[str, ...]]] = TOPIC_TAXONOMY
) -> tuple[str, str, int]:
    """Keyword-cluster the text against the taxonomy.

    Returns:
        Tuple of (subject, topic, hits); ("general", "general", 0) when nothing matches
    """
    best = (GENERAL, GENERAL, 0)
    for subject, topics in taxonomy.items():
        for topic, keywords in topics.items():
            hits = sum(1 for kw in keywords if _compile(rf"\b{re.escape(kw)}s?\b").search(text))
            if hits > best[2]:
                best = (subject, topic, hits)
    return best


def subject_for_topic(topic: str) -> str | None:
    for subject, topics in TOPIC_TAXONOMY.items():
        if topic in topics:
            return subject
    return None
