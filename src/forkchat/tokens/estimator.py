"""Character-based token approximation."""

from __future__ import annotations

import math
from collections.abc import Iterable

from forkchat.models.message import Turn

CHARS_PER_TOKEN = 4


class TokenEstimator:
    """
    Crude token counting: ``ceil(len(text) / 4)``.

    Deliberately model-agnostic. Budgets in forkchat are soft ceilings used to
    decide what to trim, not provider-accurate limits. Image parts count as
    zero; only text contributes.
    """

    def __init__(self, chars_per_token: int = CHARS_PER_TOKEN) -> None:
        self._chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        """Estimate the token count for a string. Empty text is zero tokens."""
        if not text:
            return 0
        return math.ceil(len(text) / self._chars_per_token)

    def estimate_turn(self, turn: Turn) -> int:
        return self.estimate(turn.text())

    def estimate_turns(self, turns: Iterable[Turn]) -> int:
        """Sum of per-turn estimates across every turn, system included."""
        return sum(self.estimate_turn(t) for t in turns)
