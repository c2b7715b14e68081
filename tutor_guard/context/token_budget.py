"""Size accounting for the generation context budget.

The budget is a character or token ceiling. Tokens are counted with tiktoken
(cl100k_base) only when the unit is "tokens".
"""

from typing import Literal

import tiktoken

BudgetUnit = Literal["chars", "tokens"]

ELLIPSIS = "..."


class BudgetCounter:
    """Counts and truncates text in one budget unit."""

    def __init__(self, unit: BudgetUnit = "chars"):
        if unit not in ("chars", "tokens"):
            raise ValueError(f"Unknown budget unit: {unit}")
        self.unit = unit
        self._encoder = tiktoken.get_encoding("cl100k_base") if unit == "tokens" else None

    def count(self, text: str) -> int:
        """Size of text in this counter's unit.

        Args:
            text: Text to measure

        Returns:
            Character or token count
        """
        if not text:
            return 0
        if self._encoder is None:
            return len(text)
        return len(self._encoder.encode(text))

    def truncate(self, text: str, limit: int) -> str:
        """Truncate text so that ``count(result) <= limit``.

        Args:
            text: Text to truncate
            limit: Maximum size allowed

        Returns:
            Truncated text (with ... suffix if truncated and room allows)
        """
        if limit <= 0 or not text:
            return ""
        if self.count(text) <= limit:
            return text

        if self._encoder is None:
            if limit <= len(ELLIPSIS):
                return text[:limit]
            return text[: limit - len(ELLIPSIS)] + ELLIPSIS

        tokens = self._encoder.encode(text)
        # Leave room for the ellipsis token, then re-check since decoding can merge
        keep = max(limit - 1, 0)
        while keep > 0:
            candidate = self._encoder.decode(tokens[:keep]) + ELLIPSIS
            if self.count(candidate) <= limit:
                return candidate
            keep -= 1
        return ""
