import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Tuple, Callable, Mapping

from dealflow.core.types import (
    SCENARIO_CATASTROPHIC, SCENARIO_BEAR, SCENARIO_BASE, SCENARIO_BULL,
    SCENARIO_NAMES, PESSIMISTIC_SCENARIOS,
    ProbabilityState, CoherenceAdjustment,
)
from dealflow.coherence.extractors import is_number, number_at
from dealflow.coherence.normalization import normalize_probability_distribution, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoherencePolicy:
    """Thresholds and coefficients of the Tier-3 coherence rules.

    ═══════════════════════════════════════════════════════════════════════════
    POLICY PARAMETERS (cannot be derived from data)
    ═══════════════════════════════════════════════════════════════════════════
    Skepticism gates (0-100 devil's advocate score):
      > 50  redistribute mass from BULL/BASE toward CATASTROPHIC
      > 60  damp BASE/BULL multiples; BULL/BASE no longer reliable
      > 70  hard cap BASE probability
      > 80  force BULL probability strictly under 5
      > 90  force CATASTROPHIC probability strictly over 60
    Tier-1 average < 40 makes CATASTROPHIC dominant and caps BULL.
    More than 3 CRITICAL red flags add 5 points of CATASTROPHIC per extra flag.

    Values are calibrated on reviewed deals; change them here, never in the
    rule functions.
    ═══════════════════════════════════════════════════════════════════════════
    """
    # Rule 1: redistribution
    redistribution_threshold: float = 50.0
    catastrophic_shift_per_point: float = 0.8
    catastrophic_ceiling: float = 80.0
    bull_floor: float = 2.0
    base_floor: float = 10.0

    # Rules 2-4: hard limits
    base_cap_threshold: float = 70.0
    base_cap: float = 20.0
    bull_cap_threshold: float = 80.0
    bull_cap_trigger: float = 5.0
    bull_cap: float = 4.0
    catastrophic_floor_threshold: float = 90.0
    catastrophic_floor_trigger: float = 60.0
    catastrophic_floor: float = 65.0

    # Rule 5: weak Tier-1 analysis
    t1_average_threshold: float = 40.0
    t1_catastrophic_trigger: float = 40.0
    t1_catastrophic_floor: float = 45.0
    t1_bull_cap: float = 5.0

    # Rule 6: critical red flags
    critical_red_flag_threshold: int = 3
    critical_red_flag_boost_per_flag: float = 5.0
    critical_red_flag_max_boost: float = 20.0

    # Multiple capping and reliability
    multiple_cap_threshold: float = 60.0
    base_multiple_floor: float = 1.0
    bull_multiple_floor: float = 2.0
    multiple_change_tolerance: float = 0.1
    reliability_threshold: float = 60.0


DEFAULT_POLICY = CoherencePolicy()

# Used when the scenario modeler omits a branch
DEFAULT_RAW_PROBABILITIES = ProbabilityState(catastrophic=10, bear=20, base=40, bull=30)


@dataclass(frozen=True)
class RuleInputs:
    """Signals the rules are gated on (skepticism already defaulted)."""
    scepticism: float
    t1_average: Optional[float] = None
    critical_red_flags: int = 0


RuleStep = Callable[[ProbabilityState, RuleInputs, CoherencePolicy], Tuple[ProbabilityState, List[CoherenceAdjustment]]]


def _fmt(value: float) -> str:
    return f"{value:g}"


def _change(
    adjustments: List[CoherenceAdjustment],
    rule: str,
    scenario_name: str,
    before: float,
    after: float,
    reason: str,
) -> float:
    """Record an adjustment when the value actually moves; return the new value."""
    if after != before:
        adjustments.append(CoherenceAdjustment(
            rule=rule,
            field=f"{scenario_name}.probability",
            before=before,
            after=after,
            reason=reason,
        ))
    return after


def index_scenarios(scenarios: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Index scenarios by branch name (later duplicates win)."""
    return {s["name"]: s for s in scenarios if isinstance(s, dict) and isinstance(s.get("name"), str)}


def raw_probabilities(scenarios: List[Dict[str, Any]]) -> ProbabilityState:
    """Read the four raw probabilities, defaulting missing branches."""
    by_name = index_scenarios(scenarios)
    return ProbabilityState(**{
        name.lower(): number_at(
            by_name.get(name), "probability", "value", default=DEFAULT_RAW_PROBABILITIES.get(name),
        )
        for name in SCENARIO_NAMES
    })


# ═══════════════════════════════════════════════════════════════════════════
# Probability rules
# ═══════════════════════════════════════════════════════════════════════════

def scepticism_redistribution(state: ProbabilityState, inputs: RuleInputs, policy: CoherencePolicy):
    """Rule 1: shift mass from BULL and BASE toward CATASTROPHIC above the redistribution gate."""
    adjustments: List[CoherenceAdjustment] = []
    s = inputs.scepticism
    if s <= policy.redistribution_threshold:
        return state, adjustments

    excess = s - policy.redistribution_threshold
    gate = _fmt(policy.redistribution_threshold)
    catastrophic = _change(
        adjustments, f"SCEPTICISM_>{gate}_CAT", SCENARIO_CATASTROPHIC, state.catastrophic,
        min(policy.catastrophic_ceiling, state.catastrophic + excess * policy.catastrophic_shift_per_point),
        f"Skepticism {_fmt(s)} > {gate} -> raise CATASTROPHIC",
    )
    bull = _change(
        adjustments, f"SCEPTICISM_>{gate}_BULL", SCENARIO_BULL, state.bull,
        max(policy.bull_floor, state.bull * (1 - s / 100) ** 2),
        f"Skepticism {_fmt(s)} > {gate} -> lower BULL",
    )
    base = _change(
        adjustments, f"SCEPTICISM_>{gate}_BASE", SCENARIO_BASE, state.base,
        max(policy.base_floor, state.base * (1 - excess / 100)),
        f"Skepticism {_fmt(s)} > {gate} -> lower BASE",
    )
    return state.replace(catastrophic=catastrophic, bull=bull, base=base), adjustments


def scepticism_base_cap(state: ProbabilityState, inputs: RuleInputs, policy: CoherencePolicy):
    """Rule 2: hard cap on BASE probability."""
    adjustments: List[CoherenceAdjustment] = []
    s = inputs.scepticism
    if s <= policy.base_cap_threshold or state.base <= policy.base_cap:
        return state, adjustments
    gate = _fmt(policy.base_cap_threshold)
    base = _change(
        adjustments, f"SCEPTICISM_>{gate}_BASE_CAP", SCENARIO_BASE, state.base, policy.base_cap,
        f"Skepticism {_fmt(s)} > {gate} -> BASE probability capped at {_fmt(policy.base_cap)}%",
    )
    return state.replace(base=base), adjustments


def scepticism_bull_cap(state: ProbabilityState, inputs: RuleInputs, policy: CoherencePolicy):
    """Rule 3: force BULL strictly under the trigger value."""
    adjustments: List[CoherenceAdjustment] = []
    s = inputs.scepticism
    if s <= policy.bull_cap_threshold or state.bull < policy.bull_cap_trigger:
        return state, adjustments
    gate = _fmt(policy.bull_cap_threshold)
    bull = _change(
        adjustments, f"SCEPTICISM_>{gate}_BULL_CAP", SCENARIO_BULL, state.bull, policy.bull_cap,
        f"Skepticism {_fmt(s)} > {gate} -> BULL probability < {_fmt(policy.bull_cap_trigger)}%",
    )
    return state.replace(bull=bull), adjustments


def scepticism_catastrophic_floor(state: ProbabilityState, inputs: RuleInputs, policy: CoherencePolicy):
    """Rule 4: force CATASTROPHIC strictly over the trigger value."""
    adjustments: List[CoherenceAdjustment] = []
    s = inputs.scepticism
    if s <= policy.catastrophic_floor_threshold or state.catastrophic > policy.catastrophic_floor_trigger:
        return state, adjustments
    gate = _fmt(policy.catastrophic_floor_threshold)
    catastrophic = _change(
        adjustments, f"SCEPTICISM_>{gate}_CAT_FLOOR", SCENARIO_CATASTROPHIC, state.catastrophic,
        policy.catastrophic_floor,
        f"Skepticism {_fmt(s)} > {gate} -> CATASTROPHIC above {_fmt(policy.catastrophic_floor_trigger)}%",
    )
    return state.replace(catastrophic=catastrophic), adjustments


def t1_average_floor(state: ProbabilityState, inputs: RuleInputs, policy: CoherencePolicy):
    """Rule 5: weak Tier-1 analysis makes CATASTROPHIC dominant and caps BULL."""
    adjustments: List[CoherenceAdjustment] = []
    t1 = inputs.t1_average
    if t1 is None or t1 >= policy.t1_average_threshold:
        return state, adjustments

    gate = _fmt(policy.t1_average_threshold)
    catastrophic = state.catastrophic
    bull = state.bull
    if catastrophic < policy.t1_catastrophic_trigger:
        catastrophic = _change(
            adjustments, f"T1_AVG_<{gate}_CAT", SCENARIO_CATASTROPHIC, catastrophic,
            max(catastrophic, policy.t1_catastrophic_floor),
            f"Average T1 score {t1:.0f} < {gate} -> CATASTROPHIC dominant",
        )
    if bull > policy.t1_bull_cap:
        bull = _change(
            adjustments, f"T1_AVG_<{gate}_BULL", SCENARIO_BULL, bull, policy.t1_bull_cap,
            f"Average T1 score {t1:.0f} < {gate} -> BULL <= {_fmt(policy.t1_bull_cap)}%",
        )
    return state.replace(catastrophic=catastrophic, bull=bull), adjustments


def critical_red_flag_boost(state: ProbabilityState, inputs: RuleInputs, policy: CoherencePolicy):
    """Rule 6: each CRITICAL red flag beyond the threshold adds CATASTROPHIC mass."""
    adjustments: List[CoherenceAdjustment] = []
    count = inputs.critical_red_flags
    if count <= policy.critical_red_flag_threshold:
        return state, adjustments
    boost = min(
        policy.critical_red_flag_max_boost,
        (count - policy.critical_red_flag_threshold) * policy.critical_red_flag_boost_per_flag,
    )
    catastrophic = _change(
        adjustments, f"CRITICAL_RF_>{policy.critical_red_flag_threshold}", SCENARIO_CATASTROPHIC,
        state.catastrophic, min(policy.catastrophic_ceiling, state.catastrophic + boost),
        f"{count} CRITICAL red flags -> +{_fmt(boost)}% CATASTROPHIC",
    )
    return state.replace(catastrophic=catastrophic), adjustments


# ═══════════════════════════════════════════════════════════════════════════
# Normalization steps
# ═══════════════════════════════════════════════════════════════════════════

def normalize_step(state: ProbabilityState, inputs: RuleInputs, policy: CoherencePolicy):
    """Renormalize to integers summing to 100 (no audit records)."""
    return normalize_probability_distribution(state.catastrophic, state.bear, state.base, state.bull), []


def enforce_hard_limits(state: ProbabilityState, inputs: RuleInputs, policy: CoherencePolicy):
    """Re-apply rules 2-4 after rescaling pushed values back across their limits.

    Surplus removed from capped branches goes to BEAR; mass added to lift
    CATASTROPHIC is taken from BEAR (never below 0).
    """
    s = inputs.scepticism
    catastrophic, bear, base, bull = state.catastrophic, state.bear, state.base, state.bull
    overflow = 0.0
    if s > policy.base_cap_threshold and base > policy.base_cap:
        overflow += base - policy.base_cap
        base = policy.base_cap
    if s > policy.bull_cap_threshold and bull >= policy.bull_cap_trigger:
        overflow += bull - policy.bull_cap
        bull = policy.bull_cap
    if s > policy.catastrophic_floor_threshold and catastrophic <= policy.catastrophic_floor_trigger:
        overflow -= policy.catastrophic_floor - catastrophic
        catastrophic = policy.catastrophic_floor

    if overflow > 0:
        bear += overflow
    elif overflow < 0:
        bear = max(0.0, bear + overflow)
    if overflow:
        logger.debug("Hard limits re-applied after normalization; BEAR absorbed %s", overflow)
    return ProbabilityState(catastrophic=catastrophic, bear=bear, base=base, bull=bull), []


# Order is part of the contract: later steps read the output of earlier ones
PROBABILITY_PIPELINE: Tuple[RuleStep, ...] = (
    scepticism_redistribution,
    scepticism_base_cap,
    scepticism_bull_cap,
    scepticism_catastrophic_floor,
    t1_average_floor,
    critical_red_flag_boost,
    normalize_step,
    enforce_hard_limits,
    normalize_step,
)


def run_probability_pipeline(
    state: ProbabilityState,
    inputs: RuleInputs,
    policy: CoherencePolicy = DEFAULT_POLICY,
    steps: Tuple[RuleStep, ...] = PROBABILITY_PIPELINE,
) -> Tuple[ProbabilityState, List[CoherenceAdjustment]]:
    """Fold the probability steps left to right, collecting their audit records."""
    adjustments: List[CoherenceAdjustment] = []
    for step in steps:
        state, emitted = step(state, inputs, policy)
        adjustments.extend(emitted)
    return state, adjustments


# ═══════════════════════════════════════════════════════════════════════════
# Multiple capping
# ═══════════════════════════════════════════════════════════════════════════

def cap_multiples(
    scenarios: List[Dict[str, Any]],
    inputs: RuleInputs,
    policy: CoherencePolicy = DEFAULT_POLICY,
) -> Tuple[Dict[str, Dict[str, float]], List[CoherenceAdjustment]]:
    """
    Damp optimistic BASE/BULL money multiples under high skepticism.

    damping = (1 - (s - 60) / 100) ** 2, applied to the raw multiple with a
    floor of 1x (BASE) or 2x (BULL). Capped values are rounded to one decimal;
    changes of 0.1 or less are ignored.

    Returns:
        Tuple of ({scenario_name: {"before", "after"}}, adjustments)
    """
    capped: Dict[str, Dict[str, float]] = {}
    adjustments: List[CoherenceAdjustment] = []
    s = inputs.scepticism
    if s <= policy.multiple_cap_threshold:
        return capped, adjustments

    damping = (1 - (s - policy.multiple_cap_threshold) / 100) ** 2
    floors = {SCENARIO_BASE: policy.base_multiple_floor, SCENARIO_BULL: policy.bull_multiple_floor}
    gate = _fmt(policy.multiple_cap_threshold)

    for scenario in scenarios:
        name = scenario.get("name") if isinstance(scenario, dict) else None
        floor = floors.get(name) if isinstance(name, str) else None
        if floor is None:
            continue
        raw_multiple = number_at(scenario, "investorReturn", "multiple")
        if raw_multiple <= floor:
            continue
        capped_value = max(floor, raw_multiple * damping)
        if abs(capped_value - raw_multiple) <= policy.multiple_change_tolerance:
            continue
        after = round_half_up(capped_value, 1)
        capped[name] = {"before": raw_multiple, "after": after}
        adjustments.append(CoherenceAdjustment(
            rule=f"SCEPTICISM_>{gate}_MULTIPLE_CAP",
            field=f"{name}.multiple",
            before=raw_multiple,
            after=after,
            reason=f"Skepticism {_fmt(s)} > {gate} -> cap {name} multiple",
        ))
    return capped, adjustments


# ═══════════════════════════════════════════════════════════════════════════
# Assembly
# ═══════════════════════════════════════════════════════════════════════════

def is_reliable(scenario_name: Optional[str], scepticism: float, policy: CoherencePolicy = DEFAULT_POLICY) -> bool:
    return scepticism < policy.reliability_threshold or scenario_name in PESSIMISTIC_SCENARIOS


def build_adjusted_scenarios(
    scenarios: List[Dict[str, Any]],
    state: ProbabilityState,
    capped_multiples: Dict[str, Dict[str, float]],
    inputs: RuleInputs,
    policy: CoherencePolicy = DEFAULT_POLICY,
) -> List[Dict[str, Any]]:
    """Copy each input scenario with its final probability/multiple and audit tags.

    Input dicts are never mutated. Branches outside the four known names pass
    through with their original figures.
    """
    adjusted: List[Dict[str, Any]] = []
    for scenario in scenarios:
        if not isinstance(scenario, dict):
            continue
        name = scenario.get("name") if isinstance(scenario.get("name"), str) else None
        # Malformed sub-objects (scalars, lists) are replaced, not copied
        raw_probability = scenario.get("probability")
        raw_return = scenario.get("investorReturn")
        probability = dict(raw_probability) if isinstance(raw_probability, Mapping) else {}
        investor_return = dict(raw_return) if isinstance(raw_return, Mapping) else {}
        original_probability = probability.get("value")

        new_probability = state.get(name) if name in SCENARIO_NAMES else original_probability
        probability_changed = new_probability != original_probability
        cap = capped_multiples.get(name)

        probability["value"] = new_probability
        if probability_changed and is_number(original_probability):
            note = f"[ADJUSTED: tier-3 coherence, original: {original_probability}%]"
            rationale = probability.get("rationale")
            probability["rationale"] = f"{rationale} {note}" if rationale else note

        investor_return["multiple"] = cap["after"] if cap else number_at(scenario, "investorReturn", "multiple")
        if cap:
            note = f"[ADJUSTED: tier-3 coherence, original: {_fmt(cap['before'])}x]"
            calculation = investor_return.get("multipleCalculation")
            investor_return["multipleCalculation"] = f"{calculation} {note}" if calculation else note

        entry = dict(scenario)
        entry["probability"] = probability
        entry["investorReturn"] = investor_return
        entry["adjusted"] = probability_changed or cap is not None
        entry["reliable"] = is_reliable(name, inputs.scepticism, policy)
        if probability_changed:
            entry["originalProbability"] = original_probability
        if cap:
            entry["originalMultiple"] = cap["before"]
        adjusted.append(entry)
    return adjusted


def apply_coherence_rules(
    scenarios: List[Dict[str, Any]],
    scepticism: float,
    t1_average: Optional[float],
    critical_red_flags: int,
    policy: CoherencePolicy = DEFAULT_POLICY,
) -> Tuple[List[Dict[str, Any]], List[CoherenceAdjustment]]:
    """
    Run probability rules, renormalization and multiple capping.

    Args:
        scenarios: Raw scenario dicts from the scenario modeler
        scepticism: Effective skepticism score (already defaulted when missing)
        t1_average: Mean Tier-1 score, or None to skip the Tier-1 rule
        critical_red_flags: Count of CRITICAL red flags
        policy: Rule thresholds

    Returns:
        Tuple of (adjusted scenario dicts, ordered adjustments)
    """
    inputs = RuleInputs(scepticism=scepticism, t1_average=t1_average, critical_red_flags=critical_red_flags)
    state, adjustments = run_probability_pipeline(raw_probabilities(scenarios), inputs, policy)
    capped_multiples, multiple_adjustments = cap_multiples(scenarios, inputs, policy)
    adjustments.extend(multiple_adjustments)
    return build_adjusted_scenarios(scenarios, state, capped_multiples, inputs, policy), adjustments
