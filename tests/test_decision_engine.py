"""
test_decision_engine.py — Tests for the rebalance decision rule.

Tests:
    1. Worked examples (rebalance at +2.75%, hold at +1.75%)
    2. Holds: no positions, zero value, nothing inside the risk envelope
    3. Risk filtering and protocol exclusions
    4. Deterministic tie breaking
"""

import pytest

from yieldrelay.decision_engine import (
    DEFAULT_RISK_SCORE_LIMIT,
    RebalanceDecisionEngine,
    risk_score_limit,
    weighted_apy,
)
from yieldrelay.models import PortfolioPosition, RiskProfile, UserProfile, YieldOpportunity


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _positions():
    return [
        PortfolioPosition(chain=1, protocol="aave-v3", amount_usd=10, apy=5),
        PortfolioPosition(chain=42161, protocol="aave-v3", amount_usd=5, apy=4),
        PortfolioPosition(chain=8453, protocol="aave-v3", amount_usd=5, apy=3),
    ]


def _opp(apy, chain=137, risk=2, protocol="aave-v3"):
    return YieldOpportunity(protocol=protocol, chain=chain, apy=apy, tvl=1_000_000, risk_score=risk)


BALANCED = UserProfile(risk_profile=RiskProfile.MEDIUM)


# ─── Worked Examples ────────────────────────────────────────────────────────

class TestWorkedExamples:
    def test_weighted_apy(self):
        assert weighted_apy(_positions()) == pytest.approx(4.25)

    def test_rebalances_largest_position_toward_best(self):
        decision = RebalanceDecisionEngine().decide(BALANCED, _positions(), [_opp(7)])
        assert decision.should_rebalance is True
        assert decision.from_chain == 1
        assert decision.to_chain == 137
        assert decision.amount_usd == 10
        assert decision.expected_apy_gain_pct == pytest.approx(2.75)
        assert decision.opportunity.chain == 137

    def test_holds_below_threshold(self):
        decision = RebalanceDecisionEngine().decide(BALANCED, _positions(), [_opp(6)])
        assert decision.should_rebalance is False
        assert "1.75" in decision.reason
        assert decision.from_chain == 0 and decision.to_chain == 0 and decision.amount_usd == 0

    def test_gain_equal_to_threshold_holds(self):
        decision = RebalanceDecisionEngine().decide(BALANCED, _positions(), [_opp(6.25)])
        assert decision.should_rebalance is False

    def test_threshold_is_configurable(self):
        engine = RebalanceDecisionEngine({'decision': {'min_apy_gain_pct': 1.0}})
        decision = engine.decide(BALANCED, _positions(), [_opp(6)])
        assert decision.should_rebalance is True
        assert decision.expected_apy_gain_pct == pytest.approx(1.75)


# ─── Holds ──────────────────────────────────────────────────────────────────

class TestHolds:
    def test_no_positions(self):
        decision = RebalanceDecisionEngine().decide(BALANCED, [], [_opp(20)])
        assert decision.should_rebalance is False
        assert decision.reason == "no positions"

    def test_zero_value_portfolio(self):
        positions = [PortfolioPosition(chain=1, protocol="aave-v3", amount_usd=0, apy=5)]
        decision = RebalanceDecisionEngine().decide(BALANCED, positions, [_opp(20)])
        assert decision.reason == "no positions"

    def test_nothing_inside_risk_envelope(self):
        low = UserProfile(risk_profile=RiskProfile.LOW)
        decision = RebalanceDecisionEngine().decide(low, _positions(), [_opp(30, risk=4), _opp(25, risk=9)])
        assert decision.should_rebalance is False
        assert decision.reason == "no suitable opportunities"

    def test_no_opportunities(self):
        decision = RebalanceDecisionEngine().decide(BALANCED, _positions(), [])
        assert decision.reason == "no suitable opportunities"


# ─── Risk Filtering ─────────────────────────────────────────────────────────

class TestRiskFiltering:
    @pytest.mark.parametrize("profile,limit", [
        (RiskProfile.LOW, 3),
        (RiskProfile.MEDIUM, 6),
        (RiskProfile.HIGH, 10),
        (None, DEFAULT_RISK_SCORE_LIMIT),
    ])
    def test_limits(self, profile, limit):
        assert risk_score_limit(profile) == limit

    def test_candidate_set_grows_with_risk_appetite(self):
        engine = RebalanceDecisionEngine()
        opps = [_opp(5 + r, risk=r) for r in range(1, 11)]
        sizes = [
            len(engine.eligible_opportunities(UserProfile(risk_profile=p), opps))
            for p in (RiskProfile.LOW, RiskProfile.MEDIUM, RiskProfile.HIGH)
        ]
        assert sizes == sorted(sizes)
        assert sizes == [3, 6, 10]

    def test_excluded_protocols_are_skipped(self):
        profile = UserProfile(risk_profile=RiskProfile.MEDIUM, excluded_protocols=frozenset({"morpho"}))
        opps = [_opp(12, protocol="Morpho"), _opp(7, protocol="aave-v3")]
        decision = RebalanceDecisionEngine().decide(profile, _positions(), opps)
        assert decision.opportunity.protocol == "aave-v3"

    def test_unset_profile_uses_default_limit(self):
        decision = RebalanceDecisionEngine().decide(UserProfile(), _positions(), [_opp(9, risk=6)])
        assert decision.reason == "no suitable opportunities"


# ─── Tie Breaking ───────────────────────────────────────────────────────────

class TestTieBreaking:
    def test_lower_risk_wins_equal_apy(self):
        best = RebalanceDecisionEngine.select_best([_opp(8, chain=10, risk=5), _opp(8, chain=137, risk=2)])
        assert best.chain == 137

    def test_first_seen_wins_full_tie(self):
        best = RebalanceDecisionEngine.select_best([_opp(8, chain=10, risk=2), _opp(8, chain=137, risk=2)])
        assert best.chain == 10

    def test_first_largest_position_is_moved(self):
        positions = [
            PortfolioPosition(chain=10, protocol="aave-v3", amount_usd=50, apy=1),
            PortfolioPosition(chain=42161, protocol="aave-v3", amount_usd=50, apy=1),
        ]
        decision = RebalanceDecisionEngine().decide(BALANCED, positions, [_opp(9)])
        assert decision.from_chain == 10

    def test_same_inputs_same_decision(self):
        engine = RebalanceDecisionEngine()
        assert engine.decide(BALANCED, _positions(), [_opp(7)]) == engine.decide(BALANCED, _positions(), [_opp(7)])
