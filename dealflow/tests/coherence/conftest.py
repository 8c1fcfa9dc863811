"""Shared test fixtures for Tier-3 coherence tests."""
import pytest

from dealflow.core.types import AgentResult, TIER1_AGENT_NAMES

COHERENCE_ENV_VARS = (
    'COHERENCE_ENABLED',
    'COHERENCE_INJECT_RESULTS',
    'COHERENCE_NEUTRAL_SCEPTICISM',
    'COHERENCE_NEUTRAL_SKEPTICISM',
    'COHERENCE_IRR_HOLDING_YEARS',
)


@pytest.fixture
def clean_env(monkeypatch):
    """Unset coherence env vars so configs start from their defaults."""
    for name in COHERENCE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def _scenario(name, probability, multiple):
    return {
        'name': name,
        'description': f'{name} scenario',
        'probability': {'value': probability, 'rationale': 'test', 'source': 'test'},
        'assumptions': [],
        'metrics': [],
        'exitOutcome': {
            'type': 'acquisition_strategic',
            'timing': '5 years',
            'exitValuation': 10_000_000,
            'exitMultiple': multiple,
        },
        'investorReturn': {
            'initialInvestment': 100_000,
            'ownershipAtEntry': 5,
            'dilutionToExit': 50,
            'grossProceeds': multiple * 100_000,
            'multiple': multiple,
            'multipleCalculation': f'{multiple}x',
            'irr': 30,
            'holdingPeriodYears': 5,
        },
        'keyRisks': [],
        'keyDrivers': [],
    }


@pytest.fixture
def make_scenario():
    """Factory for a scenario dict in the scenario modeler's shape."""
    return _scenario


@pytest.fixture
def default_scenarios():
    """Optimistic distribution: CATASTROPHIC 10 / BEAR 20 / BASE 40 / BULL 30."""
    return [
        _scenario('CATASTROPHIC', 10, 0),
        _scenario('BEAR', 20, 0.5),
        _scenario('BASE', 40, 4.5),
        _scenario('BULL', 30, 15.8),
    ]


@pytest.fixture
def make_scenario_modeler_result():
    def _make(scenarios):
        return AgentResult(
            agent_name='scenario-modeler',
            success=True,
            execution_time_ms=1000,
            cost=0.01,
            data={
                'score': {'value': 60, 'grade': 'C', 'breakdown': []},
                'findings': {
                    'scenarios': scenarios,
                    'sensitivityAnalysis': [],
                    'probabilityWeightedOutcome': {
                        'expectedMultiple': 5,
                        'expectedMultipleCalculation': 'test',
                        'expectedIRR': 30,
                        'expectedIRRCalculation': 'test',
                        'riskAdjustedAssessment': 'test',
                    },
                    'mostLikelyScenario': 'BASE',
                },
                'redFlags': [],
            },
        )
    return _make


@pytest.fixture
def make_devils_advocate_result():
    def _make(scepticism):
        return AgentResult(
            agent_name='devils-advocate',
            success=True,
            execution_time_ms=1000,
            cost=0.01,
            data={
                'score': {'value': scepticism, 'grade': 'C', 'breakdown': []},
                'findings': {
                    'counterArguments': [],
                    'skepticismAssessment': {
                        'score': scepticism,
                        'verdict': 'VERY_SKEPTICAL' if scepticism > 70 else 'CAUTIOUS',
                    },
                },
                'redFlags': [],
            },
        )
    return _make


@pytest.fixture
def make_t1_result():
    def _make(agent_name, score):
        return AgentResult(
            agent_name=agent_name,
            success=True,
            execution_time_ms=500,
            cost=0.005,
            data={'score': {'value': score, 'grade': 'C'}, 'findings': {}, 'redFlags': []},
        )
    return _make


@pytest.fixture
def make_contradiction_detector_result():
    def _make(critical_count, other_flags=None):
        red_flags = [
            {'severity': 'CRITICAL', 'title': f'Critical red flag {i + 1}', 'description': 'test'}
            for i in range(critical_count)
        ]
        red_flags.extend(other_flags or [])
        return AgentResult(
            agent_name='contradiction-detector',
            success=True,
            execution_time_ms=500,
            cost=0.005,
            data={'redFlags': red_flags, 'contradictions': [], 'consistencyScore': 50},
        )
    return _make


@pytest.fixture
def build_results(
    default_scenarios,
    make_scenario_modeler_result,
    make_devils_advocate_result,
    make_t1_result,
    make_contradiction_detector_result,
):
    """Factory for a full agent-result map; omitted signals leave their agent out."""
    def _build(scepticism=None, scenarios=None, t1_score=None, critical_red_flags=None):
        results = {
            'scenario-modeler': make_scenario_modeler_result(
                scenarios if scenarios is not None else [dict(s) for s in default_scenarios]
            ),
        }
        if scepticism is not None:
            results['devils-advocate'] = make_devils_advocate_result(scepticism)
        if t1_score is not None:
            for name in TIER1_AGENT_NAMES:
                results[name] = make_t1_result(name, t1_score)
        if critical_red_flags is not None:
            results['contradiction-detector'] = make_contradiction_detector_result(critical_red_flags)
        return results
    return _build


@pytest.fixture
def failed_scenario_modeler():
    return AgentResult(
        agent_name='scenario-modeler',
        success=False,
        execution_time_ms=0,
        cost=0,
        error='Failed',
    )
