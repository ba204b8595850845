"""Parsing of annotation frequency strings ("35.5%", "1/4", "frequent", ...)."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

PERCENT_PATTERN = re.compile(r"(\d+)\.?(\d*)\s*%")
FRACTION_PATTERN = re.compile(r"(\d+)/(\d+)")

FREQUENCY_LABELS = {
    "very rare": 0.01,
    "rare": 0.05,
    "occasional": 0.075,
    "frequent": 0.33,
    "typical": 0.50,
    "common": 0.75,
    "hallmark": 0.90,
    "obligate": 1.0,
}


def parse_frequency(text: str | None) -> float:
    """
    Map a frequency annotation to a probability.

    Percentages and fractions are matched anywhere in the string, labels
    case-insensitively. Missing values mean the annotation always holds.
    Unparseable values are logged and treated as 1.0.

    Args:
        text: Raw frequency annotation, or None.

    Returns:
        Probability in [0, 1] (fractions above one are not clipped).
    """
    if text is None:
        return 1.0
    text = text.strip()
    if not text:
        return 1.0

    match = PERCENT_PATTERN.search(text)
    if match:
        whole, fraction = match.groups()
        value = float(whole)
        if fraction:
            value += int(fraction) / 10 ** len(fraction)
        return value / 100

    match = FRACTION_PATTERN.search(text)
    if match:
        numerator, denominator = (int(g) for g in match.groups())
        if denominator == 0:
            logger.warning("Frequency %r has a zero denominator, assuming 1.0", text)
            return 1.0
        return numerator / denominator

    label = FREQUENCY_LABELS.get(text.lower())
    if label is not None:
        return label

    logger.warning("Unknown frequency %r, assuming 1.0", text)
    return 1.0


__all__ = ["FREQUENCY_LABELS", "parse_frequency"]
