"""Severity and confidence scoring helpers."""

import math
from collections import Counter

from mobaudit.models import Confidence

DEFAULT_ENTROPY_THRESHOLD = 3.5

# Below the threshold by at most this many bits per character still counts
# as MEDIUM confidence.
ENTROPY_MARGIN = 1.0


def shannon_entropy(data: str) -> float:
    if not data:
        return 0.0
    counts = Counter(data)
    length = len(data)
    return -sum(
        (count / length) * math.log2(count / length) for count in counts.values()
    )


def score_confidence(
    value: str,
    structural: bool,
    threshold: float = DEFAULT_ENTROPY_THRESHOLD,
    verify_entropy: bool = True,
) -> Confidence:
    """Score how likely ``value`` is a real credential.

    A structural match (vendor prefix, fixed length, key block header) starts
    at HIGH and drops to MEDIUM only when the value is suspiciously regular.
    A name-based match (``password = "..."``) is graded purely on entropy:
    HIGH at or above ``threshold``, MEDIUM within ``ENTROPY_MARGIN`` of it,
    LOW below that.
    """
    if structural and not verify_entropy:
        return Confidence.HIGH

    entropy = shannon_entropy(value)
    if structural:
        if entropy >= threshold - ENTROPY_MARGIN:
            return Confidence.HIGH
        return Confidence.MEDIUM

    if entropy >= threshold:
        return Confidence.HIGH
    if entropy >= threshold - ENTROPY_MARGIN:
        return Confidence.MEDIUM
    return Confidence.LOW
