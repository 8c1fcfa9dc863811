import math
import logging

from dealflow.core.types import ProbabilityState

logger = logging.getLogger(__name__)

# Totals within this distance of 100 are rounded in place instead of rescaled
NEAR_HUNDRED_TOLERANCE: float = 0.5


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves going up (2.5 -> 3), unlike the built-in banker's rounding."""
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


def normalize_probability_distribution(
    catastrophic: float,
    bear: float,
    base: float,
    bull: float,
) -> ProbabilityState:
    """
    Turn four raw scenario weights into integer percentages summing to exactly 100.

    Negative weights are clamped to 0 and an all-zero input becomes an even
    25/25/25/25 split. CATASTROPHIC, BULL and BASE are rounded independently;
    BEAR takes the remainder, so it absorbs the rounding error (it is the
    least decision-relevant branch).

    Two paths:
    - total already within 0.5 of 100: round in place
    - otherwise: rescale by 100/total, then round

    When the three rounded branches overshoot 100 (each can round up by up to
    0.5), the excess is taken from the largest of them, ties resolved in the
    order CATASTROPHIC, BULL, BASE, so BEAR is never negative.
    """
    catastrophic = max(0.0, catastrophic)
    bear = max(0.0, bear)
    base = max(0.0, base)
    bull = max(0.0, bull)

    total = catastrophic + bear + base + bull
    if total == 0:
        return ProbabilityState(catastrophic=25, bear=25, base=25, bull=25)

    factor = 1.0 if abs(total - 100) < NEAR_HUNDRED_TOLERANCE else 100 / total
    rounded = {
        "catastrophic": round_half_up(catastrophic * factor),
        "bull": round_half_up(bull * factor),
        "base": round_half_up(base * factor),
    }

    overshoot = sum(rounded.values()) - 100
    if overshoot > 0:
        largest = max(rounded, key=lambda k: rounded[k])
        logger.debug("Rounding overshoot of %s taken from %s", overshoot, largest)
        rounded[largest] -= overshoot

    return ProbabilityState(
        catastrophic=rounded["catastrophic"],
        bear=100 - sum(rounded.values()),
        base=rounded["base"],
        bull=rounded["bull"],
    )
