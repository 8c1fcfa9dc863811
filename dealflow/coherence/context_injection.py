"""Write coherence results back into the scenario modeler's result.

This is the only place the coherence engine mutates state it does not own.
`build_coherence_patch` is pure and names the exact values to write;
`inject_coherence_into_context` applies that patch to the in-memory agent
result map, which callers must not touch concurrently.
"""
import logging
from typing import Optional, Any, Mapping, MutableMapping

from dealflow.core.types import CoherenceResult, CoherencePatch, SCENARIO_AGENT
from dealflow.coherence.extractors import AgentResults, get_result_data

logger = logging.getLogger(__name__)


def build_coherence_patch(result: CoherenceResult) -> Optional[CoherencePatch]:
    """Return the values to inject, or None when no adjustment was made."""
    if not result.adjusted:
        return None
    outcome = result.adjusted_probability_weighted_outcome
    return CoherencePatch(
        scenarios=result.adjusted_scenarios,
        expected_multiple=outcome.expected_multiple,
        expected_multiple_calculation=outcome.expected_multiple_calculation,
        coherence_score=result.coherence_score,
    )


def _tag_result(agent_result: Any, coherence_score: float) -> None:
    if isinstance(agent_result, MutableMapping):
        agent_result["coherenceApplied"] = True
        agent_result["coherenceScore"] = coherence_score
    else:
        agent_result.coherence_applied = True
        agent_result.coherence_score = coherence_score


def inject_coherence_into_context(all_results: AgentResults, result: CoherenceResult) -> bool:
    """
    Apply the coherence patch to the scenario modeler's result in place.

    Overwrites:
      - data.findings.scenarios (replaced by the adjusted list object itself)
      - data.findings.probabilityWeightedOutcome.expectedMultiple
      - data.findings.probabilityWeightedOutcome.expectedMultipleCalculation
        (other keys of that sub-object are kept)
      - coherenceApplied / coherenceScore tags on the agent result

    Returns:
        True when the patch was written, False for a no-op (result not
        adjusted, scenario modeler missing or failed, or no findings)
    """
    patch = build_coherence_patch(result)
    if patch is None:
        return False

    data = get_result_data(all_results, SCENARIO_AGENT)
    findings = data.get("findings") if data is not None else None
    if not isinstance(findings, MutableMapping):
        logger.debug("Scenario modeler result has no findings; coherence not injected")
        return False

    findings["scenarios"] = patch.scenarios
    previous_outcome = findings.get("probabilityWeightedOutcome")
    outcome = dict(previous_outcome) if isinstance(previous_outcome, Mapping) else {}
    outcome["expectedMultiple"] = patch.expected_multiple
    outcome["expectedMultipleCalculation"] = patch.expected_multiple_calculation
    findings["probabilityWeightedOutcome"] = outcome

    _tag_result(all_results[SCENARIO_AGENT], patch.coherence_score)
    logger.info(
        "Injected coherence adjustments into %s", SCENARIO_AGENT,
        extra={"coherence_score": patch.coherence_score, "scenarios": len(patch.scenarios)},
    )
    return True
