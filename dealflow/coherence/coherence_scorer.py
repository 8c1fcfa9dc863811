import logging
from typing import Optional, Dict, Any, List

from dealflow.core.types import SCENARIO_CATASTROPHIC, SCENARIO_BASE, SCENARIO_BULL
from dealflow.coherence.extractors import number_at
from dealflow.coherence.rules import index_scenarios

logger = logging.getLogger(__name__)


class CoherenceScorer:
    """Diagnostic score (0-100) of how consistent the raw Batch 1 outputs were.

    The score is computed from the scenario modeler's figures BEFORE any
    coherence rule runs, so it characterizes disagreement between the agents,
    not the quality of the correction. 100 means fully consistent.

    Penalties (subtracted from 100, total floored at 0):
      - skepticism > 70 and BULL probability > 20: min(30, (bull - 20) * 2)
      - skepticism > 70 and BASE probability > 30: min(20, base - 30)
      - skepticism > 80 and CATASTROPHIC probability < 30: min(25, 30 - cat)
      - Tier-1 average < 40: 15 if BULL multiple > 5, 10 if BASE multiple > 3
      - more than 3 CRITICAL red flags and CATASTROPHIC < 25: min(20, flags * 3)
    """

    HIGH_SCEPTICISM: float = 70.0
    VERY_HIGH_SCEPTICISM: float = 80.0
    BULL_PROBABILITY_LIMIT: float = 20.0
    BASE_PROBABILITY_LIMIT: float = 30.0
    CATASTROPHIC_PROBABILITY_FLOOR: float = 30.0
    WEAK_T1_AVERAGE: float = 40.0
    OPTIMISTIC_BULL_MULTIPLE: float = 5.0
    OPTIMISTIC_BASE_MULTIPLE: float = 3.0
    CRITICAL_RED_FLAG_THRESHOLD: int = 3
    RED_FLAG_CATASTROPHIC_FLOOR: float = 25.0

    def penalties(
        self,
        scenarios: List[Dict[str, Any]],
        scepticism: float,
        t1_average: Optional[float],
        critical_red_flags: int,
    ) -> Dict[str, float]:
        """Return each triggered penalty keyed by the inconsistency it reflects."""
        by_name = index_scenarios(scenarios)
        bull_probability = number_at(by_name.get(SCENARIO_BULL), "probability", "value")
        base_probability = number_at(by_name.get(SCENARIO_BASE), "probability", "value")
        cat_probability = number_at(by_name.get(SCENARIO_CATASTROPHIC), "probability", "value")
        bull_multiple = number_at(by_name.get(SCENARIO_BULL), "investorReturn", "multiple")
        base_multiple = number_at(by_name.get(SCENARIO_BASE), "investorReturn", "multiple")

        penalties: Dict[str, float] = {}
        if scepticism > self.HIGH_SCEPTICISM and bull_probability > self.BULL_PROBABILITY_LIMIT:
            penalties["sceptical_but_bull_heavy"] = min(30, (bull_probability - self.BULL_PROBABILITY_LIMIT) * 2)
        if scepticism > self.HIGH_SCEPTICISM and base_probability > self.BASE_PROBABILITY_LIMIT:
            penalties["sceptical_but_base_heavy"] = min(20, base_probability - self.BASE_PROBABILITY_LIMIT)
        if scepticism > self.VERY_HIGH_SCEPTICISM and cat_probability < self.CATASTROPHIC_PROBABILITY_FLOOR:
            penalties["sceptical_but_catastrophic_light"] = min(25, self.CATASTROPHIC_PROBABILITY_FLOOR - cat_probability)
        if t1_average is not None and t1_average < self.WEAK_T1_AVERAGE:
            if bull_multiple > self.OPTIMISTIC_BULL_MULTIPLE:
                penalties["weak_t1_but_bull_multiple"] = 15
            if base_multiple > self.OPTIMISTIC_BASE_MULTIPLE:
                penalties["weak_t1_but_base_multiple"] = 10
        if critical_red_flags > self.CRITICAL_RED_FLAG_THRESHOLD and cat_probability < self.RED_FLAG_CATASTROPHIC_FLOOR:
            penalties["red_flags_but_catastrophic_light"] = min(20, critical_red_flags * 3)
        return penalties

    def score(
        self,
        scenarios: List[Dict[str, Any]],
        scepticism: float,
        t1_average: Optional[float],
        critical_red_flags: int,
    ) -> float:
        penalties = self.penalties(scenarios, scepticism, t1_average, critical_red_flags)
        if penalties:
            logger.debug("Coherence penalties: %s", penalties)
        return max(0, 100 - sum(penalties.values()))


def compute_coherence_score(
    scenarios: List[Dict[str, Any]],
    scepticism: float,
    t1_average: Optional[float],
    critical_red_flags: int,
) -> float:
    """Pre-adjustment coherence score (0-100) with the default thresholds."""
    return CoherenceScorer().score(scenarios, scepticism, t1_average, critical_red_flags)
