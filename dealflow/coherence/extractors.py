"""Narrow, null-tolerant readers for the upstream agent payloads.

Each extractor reads one signal and ignores the rest of the payload. A
missing or failed agent is a normal pipeline condition, so every function
here returns None (or 0) instead of raising.
"""
import logging
from typing import Optional, Dict, Any, List, Mapping, Union

from dealflow.core.types import (
    AgentResult, CoherenceSignals,
    SCENARIO_AGENT, SCEPTICISM_AGENT, CONTRADICTION_AGENT,
    TIER1_AGENT_NAMES, SEVERITY_CRITICAL,
)

logger = logging.getLogger(__name__)

AgentResultLike = Union[AgentResult, Mapping[str, Any]]
AgentResults = Mapping[str, AgentResultLike]


def is_number(value: Any) -> bool:
    """True for ints and floats (bools excluded)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def dig(payload: Any, *path: str) -> Any:
    """Walk nested dict keys, returning None at the first missing or non-dict level."""
    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def number_at(payload: Any, *path: str, default: float = 0) -> float:
    """Numeric value at `path`, or `default` when absent or not a number."""
    value = dig(payload, *path)
    return value if is_number(value) else default


def get_result_data(all_results: AgentResults, agent_name: str) -> Optional[Dict[str, Any]]:
    """Return the payload of a successful agent, else None."""
    result = all_results.get(agent_name) if all_results else None
    if result is None:
        return None
    if isinstance(result, Mapping):
        success = result.get("success", False)
        data = result.get("data")
    else:
        success = getattr(result, "success", False)
        data = getattr(result, "data", None)
    if not success or not isinstance(data, Mapping):
        return None
    return data


def extract_scepticism_score(all_results: AgentResults) -> Optional[float]:
    """Skepticism score (0-100) from the devil's advocate, None when unavailable."""
    data = get_result_data(all_results, SCEPTICISM_AGENT)
    if data is None:
        return None
    score = dig(data, "findings", "skepticismAssessment", "score")
    if is_number(score):
        return score
    fallback = dig(data, "score", "value")
    return fallback if is_number(fallback) else None


def extract_scenarios(all_results: AgentResults) -> Optional[List[Dict[str, Any]]]:
    """Scenario list from the scenario modeler, None when absent or empty."""
    data = get_result_data(all_results, SCENARIO_AGENT)
    if data is None:
        return None
    scenarios = dig(data, "findings", "scenarios")
    if not isinstance(scenarios, list) or not scenarios:
        return None
    return scenarios


def extract_t1_average_score(all_results: AgentResults) -> Optional[float]:
    """Mean top-level score across the Tier-1 analyst roster."""
    scores = []
    for name in TIER1_AGENT_NAMES:
        score = dig(get_result_data(all_results, name), "score", "value")
        if is_number(score):
            scores.append(score)
    if not scores:
        return None
    return sum(scores) / len(scores)


def extract_critical_red_flag_count(all_results: AgentResults) -> int:
    data = get_result_data(all_results, CONTRADICTION_AGENT)
    red_flags = dig(data, "redFlags")
    if not isinstance(red_flags, list):
        return 0
    return sum(
        1 for rf in red_flags
        if isinstance(rf, Mapping)
        and isinstance(rf.get("severity"), str)
        and rf["severity"].upper() == SEVERITY_CRITICAL
    )


def extract_signals(all_results: AgentResults) -> CoherenceSignals:
    """Run every extractor and bundle the results."""
    signals = CoherenceSignals(
        scepticism=extract_scepticism_score(all_results),
        scenarios=extract_scenarios(all_results),
        t1_average=extract_t1_average_score(all_results),
        critical_red_flags=extract_critical_red_flag_count(all_results),
    )
    logger.debug(
        "Extracted coherence signals",
        extra={
            "scepticism": signals.scepticism,
            "scenario_count": len(signals.scenarios) if signals.scenarios else 0,
            "t1_average": signals.t1_average,
            "critical_red_flags": signals.critical_red_flags,
        },
    )
    return signals
