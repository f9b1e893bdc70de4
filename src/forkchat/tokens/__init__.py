"""Token estimation."""

from forkchat.tokens.estimator import CHARS_PER_TOKEN, TokenEstimator

__all__ = ["CHARS_PER_TOKEN", "TokenEstimator"]
