"""Tests for Tier3CoherenceEngine."""
import logging

import pytest

from dealflow.core.config import CoherenceConfig
from dealflow.coherence.rules import CoherencePolicy
from dealflow.coherence.tier3_coherence import (
    Tier3CoherenceEngine,
    apply_tier3_coherence,
    WARNING_NO_SCENARIOS,
)


def probabilities(result):
    return {s['name']: s['probability']['value'] for s in result.adjusted_scenarios}


def multiples(result):
    return {s['name']: s['investorReturn']['multiple'] for s in result.adjusted_scenarios}


class TestTier3CoherenceEngine:
    """Test suite for the coherence engine state machine."""

    def test_requires_deal_id(self):
        with pytest.raises(ValueError):
            Tier3CoherenceEngine('')

    def test_no_scenarios(self, build_results):
        result = Tier3CoherenceEngine('deal-1').run(build_results(scepticism=80, scenarios=[]))

        assert result.adjusted is False
        assert result.adjustments == []
        assert result.adjusted_scenarios == []
        assert result.coherence_score == 0
        assert result.warnings == [WARNING_NO_SCENARIOS]
        outcome = result.adjusted_probability_weighted_outcome
        assert outcome.expected_multiple_calculation == 'N/A - scenarios missing'
        assert outcome.reliable is False

    def test_failed_modeler_same_as_no_scenarios(self, failed_scenario_modeler, make_devils_advocate_result):
        all_results = {
            'scenario-modeler': failed_scenario_modeler,
            'devils-advocate': make_devils_advocate_result(90),
        }
        result = apply_tier3_coherence(all_results)
        assert result.coherence_score == 0
        assert result.warnings == [WARNING_NO_SCENARIOS]

    def test_coherent_inputs_need_no_adjustment(self, build_results):
        result = apply_tier3_coherence(build_results(scepticism=30))

        assert result.adjusted is False
        assert result.adjustments == []
        assert result.coherence_score == 100
        assert result.warnings == []
        assert probabilities(result) == {'CATASTROPHIC': 10, 'BEAR': 20, 'BASE': 40, 'BULL': 30}
        assert result.adjusted_probability_weighted_outcome.expected_multiple == pytest.approx(6.64)
        assert result.adjusted_probability_weighted_outcome.reliable is True
        assert result.summary_text == 'No adjustments needed (coherence score: 100/100)'

    def test_high_scepticism(self, build_results):
        result = apply_tier3_coherence(build_results(scepticism=75))

        assert result.adjusted is True
        assert probabilities(result) == {'CATASTROPHIC': 42, 'BEAR': 35, 'BASE': 20, 'BULL': 3}
        assert multiples(result)['BASE'] == pytest.approx(3.3)
        assert multiples(result)['BULL'] == pytest.approx(11.4)
        assert [a.rule for a in result.adjustments] == [
            'SCEPTICISM_>50_CAT',
            'SCEPTICISM_>50_BULL',
            'SCEPTICISM_>50_BASE',
            'SCEPTICISM_>70_BASE_CAP',
            'SCEPTICISM_>60_MULTIPLE_CAP',
            'SCEPTICISM_>60_MULTIPLE_CAP',
        ]
        assert result.coherence_score == 70
        assert result.summary_text == 'Applied 6 adjustments (coherence score was 70/100)'

        outcome = result.adjusted_probability_weighted_outcome
        assert outcome.expected_multiple == pytest.approx(1.18)
        assert outcome.expected_irr == pytest.approx(3.3)
        assert outcome.reliable is False
        assert all(s['adjusted'] for s in result.adjusted_scenarios)

    @pytest.mark.parametrize('scepticism,expected', [
        (65, (28, 24, 43, 5)),
        (80, (45, 32, 20, 3)),
        (85, (48, 29, 20, 3)),
        (92, (61, 18, 19, 2)),
    ])
    def test_distribution_by_scepticism(self, build_results, scepticism, expected):
        result = apply_tier3_coherence(build_results(scepticism=scepticism))
        p = probabilities(result)
        assert (p['CATASTROPHIC'], p['BEAR'], p['BASE'], p['BULL']) == expected

    def test_monotonic_in_scepticism(self, build_results):
        """CATASTROPHIC rises and BULL never rises with skepticism, checked on the default 10/20/40/30 set only.

        Renormalizing after the BASE cap can lift BULL by a point for other
        distributions (e.g. 1/2/97/0 with many CRITICAL red flags).
        """
        runs = [probabilities(apply_tier3_coherence(build_results(scepticism=s))) for s in (65, 75, 85, 92)]
        catastrophic = [p['CATASTROPHIC'] for p in runs]
        bull = [p['BULL'] for p in runs]
        assert catastrophic == [28, 42, 48, 61]
        assert bull == sorted(bull, reverse=True)

    def test_outcome_under_high_scepticism(self, build_results):
        result = apply_tier3_coherence(build_results(scepticism=80))
        assert multiples(result)['BULL'] < 15.8
        outcome = result.adjusted_probability_weighted_outcome
        assert outcome.expected_multiple < 5
        assert outcome.reliable is False

    def test_only_failed_modeler(self, failed_scenario_modeler):
        result = apply_tier3_coherence({'scenario-modeler': failed_scenario_modeler})
        assert result.adjusted is False
        assert result.coherence_score == 0
        assert 'scenario-modeler' in result.warnings[0]

    def test_hard_limits_hold_after_normalization(self, build_results):
        for s in (71, 75, 81, 85, 91, 95, 100):
            p = probabilities(apply_tier3_coherence(build_results(scepticism=s, critical_red_flags=8)))
            assert sum(p.values()) == 100
            assert p['BASE'] <= 20
            if s > 80:
                assert p['BULL'] < 5
            if s > 90:
                assert p['CATASTROPHIC'] > 60
            assert p['BEAR'] >= 0

    def test_missing_scepticism_uses_neutral_default(self, build_results):
        result = apply_tier3_coherence(build_results(t1_score=30))

        assert len(result.warnings) == 1
        assert 'neutral 50 assumed' in result.warnings[0]
        assert probabilities(result) == {'CATASTROPHIC': 41, 'BEAR': 18, 'BASE': 36, 'BULL': 5}
        assert result.coherence_score == 75
        # Neutral skepticism keeps every branch reliable
        assert all(s['reliable'] for s in result.adjusted_scenarios)

    def test_configured_neutral_default(self, build_results):
        engine = Tier3CoherenceEngine('deal-1', config=CoherenceConfig(neutral_scepticism=75.0))
        result = engine.run(build_results())
        assert 'neutral 75 assumed' in result.warnings[0]
        assert probabilities(result) == {'CATASTROPHIC': 42, 'BEAR': 35, 'BASE': 20, 'BULL': 3}

    def test_critical_red_flags(self, build_results):
        result = apply_tier3_coherence(build_results(scepticism=50, critical_red_flags=5))

        assert [a.rule for a in result.adjustments] == ['CRITICAL_RF_>3']
        assert (result.adjustments[0].before, result.adjustments[0].after) == (10, 20)
        assert probabilities(result) == {'CATASTROPHIC': 18, 'BEAR': 19, 'BASE': 36, 'BULL': 27}
        assert result.coherence_score == 85

    def test_custom_policy(self, build_results):
        result = apply_tier3_coherence(build_results(scepticism=75), policy=CoherencePolicy(base_cap=25.0))
        assert probabilities(result) == {'CATASTROPHIC': 39, 'BEAR': 33, 'BASE': 25, 'BULL': 3}

    def test_configured_holding_period(self, build_results):
        engine = Tier3CoherenceEngine('deal-1', config=CoherenceConfig(irr_holding_years=1))
        result = engine.run(build_results(scepticism=30))
        assert result.adjusted_probability_weighted_outcome.expected_irr == pytest.approx(564.0)

    def test_unknown_scenario_warning(self, build_results, default_scenarios, make_scenario):
        scenarios = default_scenarios + [make_scenario('MOONSHOT', 5, 50)]
        result = apply_tier3_coherence(build_results(scepticism=30, scenarios=scenarios))
        assert len(result.warnings) == 1
        assert "'MOONSHOT'" in result.warnings[0]
        assert len(result.adjusted_scenarios) == 5
        # Unknown branches stay out of the weighted outcome
        assert result.adjusted_probability_weighted_outcome.expected_multiple == pytest.approx(6.64)

    def test_deterministic(self, build_results):
        first = apply_tier3_coherence(build_results(scepticism=83, t1_score=35, critical_red_flags=6))
        second = apply_tier3_coherence(build_results(scepticism=83, t1_score=35, critical_red_flags=6))
        assert first.to_dict() == second.to_dict()

    def test_does_not_mutate_inputs(self, build_results):
        all_results = build_results(scepticism=85)
        scenarios = all_results['scenario-modeler'].data['findings']['scenarios']
        apply_tier3_coherence(all_results)
        assert all_results['scenario-modeler'].data['findings']['scenarios'] is scenarios
        assert [s['probability']['value'] for s in scenarios] == [10, 20, 40, 30]

    def test_to_dict(self, build_results):
        data = apply_tier3_coherence(build_results(scepticism=75)).to_dict()
        assert set(data) == {
            'adjusted', 'adjustments', 'adjustedScenarios',
            'adjustedProbabilityWeightedOutcome', 'coherenceScore', 'warnings',
        }
        assert data['adjustments'][0]['field'] == 'CATASTROPHIC.probability'
        assert data['adjustedProbabilityWeightedOutcome']['expectedIRR'] == pytest.approx(3.3)

    def test_logs_each_adjustment(self, build_results, caplog):
        with caplog.at_level(logging.INFO, logger='dealflow.coherence.tier3_coherence'):
            apply_tier3_coherence(build_results(scepticism=75), deal_id='deal-42')
        assert 'Applied 6 coherence adjustments' in caplog.text
        assert '[SCEPTICISM_>70_BASE_CAP] BASE.probability' in caplog.text

    def test_custom_reliability_threshold_reaches_outcome(self, build_results):
        result = apply_tier3_coherence(
            build_results(scepticism=75), policy=CoherencePolicy(reliability_threshold=80.0)
        )
        assert all(s['reliable'] for s in result.adjusted_scenarios)
        assert result.coherence_score == 70
        assert result.adjusted_probability_weighted_outcome.reliable is True


class TestMalformedScenarios:
    """Scenario payloads with the wrong shape never make the engine raise."""

    def test_scalar_probability_and_list_investor_return(self, build_results, default_scenarios):
        scenarios = [dict(s) for s in default_scenarios]
        scenarios[3]['probability'] = 30
        scenarios[2]['investorReturn'] = [4.5]

        result = apply_tier3_coherence(build_results(scepticism=75, scenarios=scenarios))

        p = probabilities(result)
        assert p == {'CATASTROPHIC': 42, 'BEAR': 35, 'BASE': 20, 'BULL': 3}
        by_name = {s['name']: s for s in result.adjusted_scenarios}
        assert by_name['BULL']['probability'] == {'value': 3}
        assert by_name['BASE']['investorReturn'] == {'multiple': 0}
        # Scalar BULL probability reads as 0 for scoring: only the BASE penalty applies
        assert result.coherence_score == 90
        assert result.adjusted_probability_weighted_outcome.expected_multiple == pytest.approx(0.52)

    def test_non_dict_entries_and_names(self, build_results, default_scenarios):
        scenarios = [dict(s) for s in default_scenarios] + ['BULL', {'name': ['BULL'], 'probability': {'value': 9}}]

        result = apply_tier3_coherence(build_results(scepticism=85, scenarios=scenarios))

        known = [s for s in result.adjusted_scenarios if isinstance(s['name'], str)]
        assert sum(s['probability']['value'] for s in known) == 100
        assert len(result.warnings) == 1
        assert len(result.adjusted_scenarios) == 5
        assert result.adjusted_scenarios[-1]['probability'] == {'value': 9}
