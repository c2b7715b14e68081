"""Request understanding and context assembly for the answer pipeline.

This module provides:
- Rule-table query classification with an optional embedding intent signal
- Topic taxonomy lookup
- Budgeted, weighted generation context building
- Character or token budget counting
"""

from tutor_guard.context.context_builder import ContextBuilder, memory_weight
from tutor_guard.context.intent_classifier import EmbeddingIntentScorer, IntentScorer
from tutor_guard.context.query_classifier import QueryClassifier, classify_text
from tutor_guard.context.token_budget import BudgetCounter

__all__ = [
    # Classification
    "QueryClassifier",
    "classify_text",
    "IntentScorer",
    "EmbeddingIntentScorer",
    # Context assembly
    "ContextBuilder",
    "memory_weight",
    "BudgetCounter",
]
