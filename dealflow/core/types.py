from datetime import datetime
from dataclasses import dataclass, field, replace as dataclass_replace
from typing import Optional, List, Dict, Any

# Scenario branches, ordered from most to least pessimistic
SCENARIO_CATASTROPHIC = "CATASTROPHIC"
SCENARIO_BEAR = "BEAR"
SCENARIO_BASE = "BASE"
SCENARIO_BULL = "BULL"
SCENARIO_NAMES = (SCENARIO_CATASTROPHIC, SCENARIO_BEAR, SCENARIO_BASE, SCENARIO_BULL)

# Branches whose figures stay trusted whatever the skepticism level
PESSIMISTIC_SCENARIOS = frozenset({SCENARIO_CATASTROPHIC, SCENARIO_BEAR})

# Agent names whose payload shape the coherence engine knows
SCENARIO_AGENT = "scenario-modeler"
SCEPTICISM_AGENT = "devils-advocate"
CONTRADICTION_AGENT = "contradiction-detector"

TIER1_AGENT_NAMES = (
    "financial-auditor", "deck-forensics", "team-investigator",
    "market-intelligence", "competitive-intel", "exit-strategist",
    "tech-stack-dd", "tech-ops-dd", "legal-regulatory",
    "gtm-analyst", "customer-intel", "cap-table-auditor",
)

SEVERITY_CRITICAL = "CRITICAL"


# --- Upstream agent results ---
@dataclass
class AgentResult:
    """Result record produced by one analysis agent.

    `data` is the agent's raw JSON payload (camelCase keys, agent-specific
    shape). The coherence engine reads a handful of fields from it and treats
    the rest as opaque.
    """
    agent_name: str
    success: bool
    execution_time_ms: float = 0.0
    cost: float = 0.0
    error: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    # Tags written by the coherence context injector
    coherence_applied: bool = False
    coherence_score: Optional[float] = None

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> 'AgentResult':
        """Build from the upstream camelCase record."""
        return cls(
            agent_name=record.get("agentName", ""),
            success=bool(record.get("success", False)),
            execution_time_ms=record.get("executionTimeMs", 0.0) or 0.0,
            cost=record.get("cost", 0.0) or 0.0,
            error=record.get("error"),
            data=record.get("data"),
            coherence_applied=bool(record.get("coherenceApplied", False)),
            coherence_score=record.get("coherenceScore"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the upstream camelCase record."""
        record: Dict[str, Any] = {
            "agentName": self.agent_name,
            "success": self.success,
            "executionTimeMs": self.execution_time_ms,
            "cost": self.cost,
        }
        if self.error is not None:
            record["error"] = self.error
        if self.data is not None:
            record["data"] = self.data
        if self.coherence_applied:
            record["coherenceApplied"] = True
            record["coherenceScore"] = self.coherence_score
        return record


# --- Coherence engine ---
@dataclass
class CoherenceSignals:
    """Signals read from upstream agents before any rule runs."""
    scepticism: Optional[float]  # 0-100, None when the critic failed or is absent
    scenarios: Optional[List[Dict[str, Any]]]  # Raw scenario dicts, None when unavailable
    t1_average: Optional[float] = None  # Mean Tier-1 score, None when no analyst contributed
    critical_red_flags: int = 0


@dataclass(frozen=True)
class ProbabilityState:
    """Working values of the four scenario probabilities (percent)."""
    catastrophic: float
    bear: float
    base: float
    bull: float

    def get(self, scenario_name: str) -> float:
        return getattr(self, scenario_name.lower())

    def replace(self, **changes: float) -> 'ProbabilityState':
        return dataclass_replace(self, **changes)

    def total(self) -> float:
        return self.catastrophic + self.bear + self.base + self.bull

    def as_dict(self) -> Dict[str, float]:
        return {name: self.get(name) for name in SCENARIO_NAMES}


@dataclass
class CoherenceAdjustment:
    """Audit record for one numeric change made by a coherence rule"""
    rule: str  # e.g. "SCEPTICISM_>70_BASE_CAP"
    field: str  # e.g. "BASE.probability" | "BULL.multiple"
    before: float
    after: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "field": self.field,
            "before": self.before,
            "after": self.after,
            "reason": self.reason,
        }


@dataclass
class ProbabilityWeightedOutcome:
    """Expected return recomputed from the (possibly adjusted) scenarios"""
    expected_multiple: float
    expected_multiple_calculation: str
    expected_irr: float  # percent; -100 means total loss
    reliable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expectedMultiple": self.expected_multiple,
            "expectedMultipleCalculation": self.expected_multiple_calculation,
            "expectedIRR": self.expected_irr,
            "reliable": self.reliable,
        }


@dataclass
class CoherenceResult:
    """Output of the Tier-3 coherence engine.

    `coherence_score` describes the raw Batch 1 outputs BEFORE any rule ran;
    a low score alongside many adjustments is the expected pairing.
    `adjusted_scenarios` holds scenario dicts in the upstream shape, each
    tagged with `adjusted` / `reliable` (and `originalProbability` /
    `originalMultiple` when those values changed).
    """
    adjusted: bool
    adjustments: List[CoherenceAdjustment]
    adjusted_scenarios: List[Dict[str, Any]]
    adjusted_probability_weighted_outcome: ProbabilityWeightedOutcome
    coherence_score: float  # 0-100
    warnings: List[str] = field(default_factory=list)
    summary_text: str = ""
    created_at: Optional[str] = None

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase shape consumed by the synthesis step."""
        return {
            "adjusted": self.adjusted,
            "adjustments": [a.to_dict() for a in self.adjustments],
            "adjustedScenarios": self.adjusted_scenarios,
            "adjustedProbabilityWeightedOutcome": self.adjusted_probability_weighted_outcome.to_dict(),
            "coherenceScore": self.coherence_score,
            "warnings": list(self.warnings),
        }


@dataclass
class CoherencePatch:
    """Exact set of values the context injector writes into the scenario agent's result.

    Written fields:
      - data.findings.scenarios                                  <- scenarios
      - data.findings.probabilityWeightedOutcome.expectedMultiple <- expected_multiple
      - data.findings.probabilityWeightedOutcome.expectedMultipleCalculation
                                                                  <- expected_multiple_calculation
      - coherenceApplied / coherenceScore tags on the result record
    """
    scenarios: List[Dict[str, Any]]
    expected_multiple: float
    expected_multiple_calculation: str
    coherence_score: float
