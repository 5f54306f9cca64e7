"""Small numeric and label helpers shared by the insight builders."""

from __future__ import annotations

import math
from typing import Iterable


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero for positives.

    Python's built-in ``round`` uses banker's rounding (``round(6.5) == 6``);
    scores and prices here round halves upward.
    """
    return int(math.floor(value + 0.5))


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def average(values: Iterable[float], fallback: float = 0.0) -> float:
    finite = [float(value) for value in values if math.isfinite(float(value))]
    if not finite:
        return fallback
    return sum(finite) / len(finite)


def capitalize_words(label: str | None) -> str:
    """Upper-case the first letter of every space separated word."""
    if not label:
        return ""
    return " ".join(word[:1].upper() + word[1:] for word in label.split(" ")).strip()
