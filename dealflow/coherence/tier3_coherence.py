import logging
from typing import Optional, List

from dealflow.core.config import CoherenceConfig
from dealflow.core.types import CoherenceResult, CoherenceSignals, SCENARIO_NAMES
from dealflow.coherence.extractors import AgentResults, extract_signals
from dealflow.coherence.rules import CoherencePolicy, DEFAULT_POLICY, apply_coherence_rules
from dealflow.coherence.coherence_scorer import compute_coherence_score
from dealflow.coherence.outcome import recalculate_outcome, missing_outcome

logger = logging.getLogger(__name__)

WARNING_NO_SCENARIOS = "scenario-modeler produced no scenarios - coherence check impossible"
WARNING_NO_SCEPTICISM = (
    "devils-advocate produced no skepticism score - partial coherence "
    "(neutral {neutral:g} assumed)"
)


class Tier3CoherenceEngine:
    """
    Deterministic (no LLM) reconciliation of Tier-3 Batch 1 outputs.

    Runs after the scenario modeler, devil's advocate and contradiction
    detector have completed and before the synthesis scorer reads their
    results. Checks the scenario probabilities and multiples against the
    skepticism score, the Tier-1 average and the CRITICAL red-flag count, and
    corrects them with the rules in `dealflow.coherence.rules`.

    States of one invocation:
      1. no scenarios          -> unreliable zero result + warning, no rules run
      2. skepticism missing    -> neutral default + warning, rules still run
      3. all signals available -> full rule evaluation
    Every path returns a CoherenceResult; nothing here raises on missing or
    failed upstream agents. Same inputs always give identical outputs.
    """

    def __init__(
        self,
        deal_id: str,
        policy: Optional[CoherencePolicy] = None,
        config: Optional[CoherenceConfig] = None,
    ):
        if not deal_id:
            raise ValueError("deal_id is required")
        self.deal_id = deal_id
        self.policy = policy or DEFAULT_POLICY
        self.config = config or CoherenceConfig()

    def _unknown_scenario_warnings(self, signals: CoherenceSignals) -> List[str]:
        names = [s.get("name") for s in signals.scenarios if isinstance(s, dict)]
        return [
            f"scenario-modeler returned unknown scenario {name!r} - passed through unchanged"
            for name in names if name not in SCENARIO_NAMES
        ]

    def _log_adjustments(self, result: CoherenceResult) -> None:
        if not result.adjustments:
            logger.info(
                "No coherence adjustments needed (coherence score: %s/100)", result.coherence_score,
                extra={"deal_id": self.deal_id},
            )
            return
        logger.info(
            "Applied %d coherence adjustments (coherence score was %s/100)",
            len(result.adjustments), result.coherence_score,
            extra={"deal_id": self.deal_id},
        )
        for a in result.adjustments:
            logger.info("  [%s] %s: %s -> %s (%s)", a.rule, a.field, a.before, a.after, a.reason)

    def run(self, all_results: AgentResults) -> CoherenceResult:
        """Compute the coherence result for the current agent-result snapshot."""
        logger.debug("Running Tier-3 coherence for %s", self.deal_id)
        signals = extract_signals(all_results)
        warnings: List[str] = []

        if not signals.scenarios:
            warnings.append(WARNING_NO_SCENARIOS)
            logger.info("Coherence skipped: %s", WARNING_NO_SCENARIOS, extra={"deal_id": self.deal_id})
            return CoherenceResult(
                adjusted=False,
                adjustments=[],
                adjusted_scenarios=[],
                adjusted_probability_weighted_outcome=missing_outcome(),
                coherence_score=0,
                warnings=warnings,
                summary_text=WARNING_NO_SCENARIOS,
            )

        if signals.scepticism is None:
            warnings.append(WARNING_NO_SCEPTICISM.format(neutral=self.config.neutral_scepticism))
        warnings.extend(self._unknown_scenario_warnings(signals))

        scepticism = signals.scepticism if signals.scepticism is not None else self.config.neutral_scepticism

        coherence_score = compute_coherence_score(
            signals.scenarios, scepticism, signals.t1_average, signals.critical_red_flags
        )
        adjusted_scenarios, adjustments = apply_coherence_rules(
            signals.scenarios, scepticism, signals.t1_average, signals.critical_red_flags, self.policy
        )
        outcome = recalculate_outcome(
            adjusted_scenarios, scepticism, coherence_score,
            holding_period_years=self.config.irr_holding_years,
            reliability_threshold=self.policy.reliability_threshold,
        )

        if adjustments:
            summary = f"Applied {len(adjustments)} adjustments (coherence score was {coherence_score:g}/100)"
        else:
            summary = f"No adjustments needed (coherence score: {coherence_score:g}/100)"

        result = CoherenceResult(
            adjusted=bool(adjustments),
            adjustments=adjustments,
            adjusted_scenarios=adjusted_scenarios,
            adjusted_probability_weighted_outcome=outcome,
            coherence_score=coherence_score,
            warnings=warnings,
            summary_text=summary,
        )
        self._log_adjustments(result)
        return result


def apply_tier3_coherence(
    all_results: AgentResults,
    deal_id: str = "unknown-deal",
    policy: Optional[CoherencePolicy] = None,
) -> CoherenceResult:
    """Run the coherence engine once with default configuration."""
    return Tier3CoherenceEngine(deal_id, policy=policy).run(all_results)
