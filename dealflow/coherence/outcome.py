import logging
from typing import Dict, Any, List, Mapping

from dealflow.core.types import ProbabilityWeightedOutcome, SCENARIO_NAMES
from dealflow.coherence.extractors import number_at
from dealflow.coherence.normalization import round_half_up
from dealflow.coherence.rules import DEFAULT_POLICY

logger = logging.getLogger(__name__)

# Assumed holding period for the IRR estimate; scenario-specific holding
# periods are deliberately ignored
DEFAULT_HOLDING_PERIOD_YEARS: int = 5

# Expected outcome is trusted only above this coherence score (and below the
# policy reliability threshold for skepticism)
RELIABLE_MIN_COHERENCE: float = 60.0


def recalculate_outcome(
    scenarios: List[Dict[str, Any]],
    scepticism: float,
    coherence_score: float,
    holding_period_years: int = DEFAULT_HOLDING_PERIOD_YEARS,
    reliability_threshold: float = DEFAULT_POLICY.reliability_threshold,
) -> ProbabilityWeightedOutcome:
    """
    Recompute the probability-weighted expected multiple and IRR.

    expected_multiple = sum(probability / 100 * multiple)
    expected_irr = (expected_multiple ** (1 / years) - 1) * 100, or -100 when
    the expected multiple is not positive (total loss). Only the four known
    branches are weighted; other entries sit outside the distribution.

    Args:
        scenarios: Adjusted scenario dicts
        scepticism: Effective skepticism score
        coherence_score: Pre-adjustment coherence score
        holding_period_years: Holding period assumed for every scenario
        reliability_threshold: Skepticism at or above which the outcome is unreliable

    Returns:
        ProbabilityWeightedOutcome with the multiple rounded to 2 decimals and
        the IRR to 1 decimal
    """
    weighted = [
        (number_at(s, "probability", "value"), number_at(s, "investorReturn", "multiple"))
        for s in scenarios
        if isinstance(s, Mapping) and s.get("name") in SCENARIO_NAMES
    ]
    expected_multiple = sum(p / 100 * m for p, m in weighted)
    terms = " + ".join(f"{p}%×{m:.1f}x" for p, m in weighted)

    if expected_multiple > 0:
        expected_irr = (expected_multiple ** (1 / holding_period_years) - 1) * 100
    else:
        expected_irr = -100.0

    reliable = scepticism < reliability_threshold and coherence_score > RELIABLE_MIN_COHERENCE
    logger.debug(
        "Recalculated probability-weighted outcome",
        extra={"expected_multiple": expected_multiple, "expected_irr": expected_irr, "reliable": reliable},
    )
    return ProbabilityWeightedOutcome(
        expected_multiple=round_half_up(expected_multiple, 2),
        expected_multiple_calculation=f"{terms} = {expected_multiple:.2f}x",
        expected_irr=round_half_up(expected_irr, 1),
        reliable=reliable,
    )


def missing_outcome() -> ProbabilityWeightedOutcome:
    """Placeholder outcome when no scenarios were produced."""
    return ProbabilityWeightedOutcome(
        expected_multiple=0,
        expected_multiple_calculation="N/A - scenarios missing",
        expected_irr=0,
        reliable=False,
    )
