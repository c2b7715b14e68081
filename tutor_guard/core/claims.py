"""Text analysis shared by classification, retrieval and validation.

Sentence splitting, claim extraction, content tokens, polarity and
hedging detection. Pure functions, no I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

STOPWORDS: frozenset[str] = frozenset(
    """
    a an the and or but if then so of to in on at by for with from as into onto about
    is are was were be been being am do does did has have had having it its it's this
    that these those there here what which who whom whose when where why how can could
    would should will shall may might must i me my mine myself you your yours yourself
    we us our ours he him his she her hers they them their theirs also just very really
    than too more most some any each other such only own same both all own up down out
    over under again further once please tell let know i'm i've i'd i'll you're you've
    we're they're that's what's there's let's
    """.split()
)

NEGATIONS: frozenset[str] = frozenset(
    {"not", "no", "never", "none", "nobody", "nothing", "neither", "nor", "cannot", "without"}
)
NEGATIVE_TRUTH: frozenset[str] = frozenset({"false", "incorrect", "wrong", "untrue"})
POSITIVE_TRUTH: frozenset[str] = frozenset({"true", "correct", "right"})
ABSOLUTES: frozenset[str] = frozenset({"always", "never", "all", "none", "every", "everyone"})

HEDGE_PHRASES: tuple[str, ...] = (
    "not entirely sure",
    "not sure",
    "not certain",
    "i think",
    "i believe",
    "i guess",
    "as far as i know",
    "if i recall",
    "it seems",
    "it appears",
    "might",
    "may be",
    "could be",
    "possibly",
    "perhaps",
    "maybe",
    "likely",
    "probably",
    "roughly",
    "unclear",
)

TEMPORAL_MARKERS: tuple[str, ...] = (
    "latest",
    "currently",
    "current",
    "right now",
    "nowadays",
    "today",
    "recently",
    "recent",
    "this year",
    "as of",
    "up to date",
    "newest",
    "at the moment",
    "so far",
)

FILLER_PATTERNS: tuple[str, ...] = (
    r"^(hi|hello|hey|thanks|thank you|great question|good question)\b",
    r"\b(hope (this|that) helps|let me know|feel free|happy to help)\b",
    r"^(sure|okay|ok|certainly|of course)[.!]?$",
)

_TOKEN_RE = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+|\n+")
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
_YEAR_RE = re.compile(r"\b(1[0-9]{3}|20[0-9]{2})\b")
_NUMBER_RE = re.compile(r"\b\d+(?:\.\d+)?\b")
_COPULA_RE = re.compile(
    r"^(?P<subject>.+?)\s+(?P<verb>is|are|was|were|equals|has|have|had)\s+(?P<predicate>.+)$"
)


def normalize(text: str) -> str:
    """Lowercase, unify apostrophes and collapse whitespace."""
    text = text.replace("’", "'").replace("‘", "'").lower()
    return re.sub(r"\s+", " ", text).strip()


def words(text: str) -> list[str]:
    return _TOKEN_RE.findall(normalize(text))


def _stem(token: str) -> str:
    if token.endswith("'s"):
        token = token[:-2]
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def content_tokens(text: str) -> list[str]:
    """Meaning-bearing tokens: stopwords, negations and truth words removed."""
    out = []
    for token in words(text):
        if token.endswith("n't"):
            continue
        if token in STOPWORDS or token in NEGATIONS:
            continue
        if token in NEGATIVE_TRUTH or token in POSITIVE_TRUTH:
            continue
        out.append(_stem(token))
    return out


def token_set(text: str) -> frozenset[str]:
    return frozenset(content_tokens(text))


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def coverage(claim: frozenset[str], evidence: frozenset[str]) -> float:
    """Share of the claim's tokens present in the evidence."""
    if not claim:
        return 0.0
    return len(claim & evidence) / len(claim)


def split_sentences(text: str) -> list[str]:
    sentences = []
    for part in _SENTENCE_RE.split(text or ""):
        part = _BULLET_RE.sub("", part).strip()
        if part:
            sentences.append(part)
    return sentences


def is_filler(sentence: str) -> bool:
    lowered = normalize(sentence)
    return any(re.search(p, lowered) for p in FILLER_PATTERNS)


def extract_claims(text: str, min_words: int = 3) -> list[str]:
    """Declarative sentences that assert something checkable."""
    claims = []
    for sentence in split_sentences(text):
        if sentence.endswith("?") or is_filler(sentence):
            continue
        if len(words(sentence)) < min_words or not content_tokens(sentence):
            continue
        claims.append(sentence)
    return claims


def is_negative(sentence: str) -> bool:
    """True when the sentence asserts the negation of its content."""
    flips = 0
    for token in words(sentence):
        if token in NEGATIONS or token.endswith("n't") or token in NEGATIVE_TRUTH:
            flips += 1
    return flips % 2 == 1


def find_hedges(text: str) -> list[str]:
    lowered = normalize(text)
    return [p for p in HEDGE_PHRASES if re.search(rf"\b{re.escape(p)}\b", lowered)]


def find_temporal_markers(text: str) -> list[str]:
    lowered = normalize(text)
    return [m for m in TEMPORAL_MARKERS if re.search(rf"\b{re.escape(m)}\b", lowered)]


def years(text: str) -> set[str]:
    return set(_YEAR_RE.findall(text or ""))


def numbers(text: str) -> set[str]:
    return set(_NUMBER_RE.findall(text or ""))


def has_absolute(text: str) -> bool:
    return any(t in ABSOLUTES for t in words(text))


@dataclass(frozen=True)
class Statement:
    """A claim decomposed for comparison."""

    text: str
    tokens: frozenset[str]
    negative: bool
    subject: frozenset[str] = field(default_factory=frozenset)
    predicate: frozenset[str] = field(default_factory=frozenset)
    predicate_text: str = ""


def parse_statement(sentence: str) -> Statement:
    """Split a claim into subject/predicate around its copula when possible."""
    tokens = token_set(sentence)
    negative = is_negative(sentence)
    match = _COPULA_RE.match(normalize(sentence).rstrip(".!"))
    if not match:
        return Statement(text=sentence, tokens=tokens, negative=negative)
    return Statement(
        text=sentence,
        tokens=tokens,
        negative=negative,
        subject=token_set(match.group("subject")),
        predicate=token_set(match.group("predicate")),
        predicate_text=match.group("predicate"),
    )
