# yieldrelay/decision_engine.py
from typing import Iterable, List, Optional, Sequence

from .models import PortfolioPosition, RebalanceDecision, RiskProfile, UserProfile, YieldOpportunity

# Highest acceptable riskScore per tier; an unset profile sits between medium and low.
RISK_SCORE_LIMITS = {
    RiskProfile.LOW: 3,
    RiskProfile.MEDIUM: 6,
    RiskProfile.HIGH: 10,
}
DEFAULT_RISK_SCORE_LIMIT = 5


def risk_score_limit(profile: Optional[RiskProfile]) -> int:
    if profile is None:
        return DEFAULT_RISK_SCORE_LIMIT
    return RISK_SCORE_LIMITS[profile]


def weighted_apy(positions: Iterable[PortfolioPosition]) -> float:
    """Value-weighted APY across positions. Returns 0.0 for an empty or zero-value portfolio."""
    total = 0.0
    weighted = 0.0
    for p in positions:
        total += p.amount_usd
        weighted += p.apy * p.amount_usd
    if total <= 0:
        return 0.0
    return weighted / total


class RebalanceDecisionEngine:
    """
    Decides whether the portfolio should move to a better yield.
    Pure and deterministic: no I/O, no clock, no state between calls, so the
    same inputs always give the same decision.
    """
    def __init__(self, config: Optional[dict] = None):
        cfg = (config or {}).get('decision', {})
        # Percentage points the best candidate must beat the current weighted APY by
        self.min_gain_pct = float(cfg.get('min_apy_gain_pct', 2.0))

    def eligible_opportunities(self, profile: UserProfile,
                               opportunities: Iterable[YieldOpportunity]) -> List[YieldOpportunity]:
        limit = risk_score_limit(profile.risk_profile)
        excluded = {p.lower() for p in profile.excluded_protocols}
        return [
            o for o in opportunities
            if o.risk_score <= limit and o.protocol.lower() not in excluded
        ]

    @staticmethod
    def select_best(candidates: Sequence[YieldOpportunity]) -> Optional[YieldOpportunity]:
        """Highest APY; ties go to the lower riskScore, then to whichever came first."""
        best = None
        for o in candidates:
            if best is None or o.apy > best.apy or (o.apy == best.apy and o.risk_score < best.risk_score):
                best = o
        return best

    def decide(self, profile: UserProfile, positions: Sequence[PortfolioPosition],
               opportunities: Iterable[YieldOpportunity]) -> RebalanceDecision:
        # 1. Nothing to move
        total_value = sum(p.amount_usd for p in positions)
        if not positions or total_value <= 0:
            return RebalanceDecision.hold("no positions")

        # 2. Where we stand today
        current_apy = weighted_apy(positions)

        # 3-5. Best candidate inside the user's risk envelope
        best = self.select_best(self.eligible_opportunities(profile, opportunities))
        if best is None:
            return RebalanceDecision.hold("no suitable opportunities")

        # 6. Improvement threshold
        gain = best.apy - current_apy
        if gain <= self.min_gain_pct:
            return RebalanceDecision.hold(
                f"APY gain {gain:.2f}% does not exceed threshold {self.min_gain_pct:.2f}% "
                f"(current {current_apy:.2f}%, best {best.protocol} {best.apy:.2f}%)"
            )

        # 7. Move the largest position (first one wins a tie)
        source = positions[0]
        for p in positions[1:]:
            if p.amount_usd > source.amount_usd:
                source = p

        return RebalanceDecision(
            should_rebalance=True,
            reason=(
                f"Move {source.protocol} on chain {source.chain} to {best.protocol} on chain {best.chain} "
                f"for +{gain:.2f}% APY ({current_apy:.2f}% -> {best.apy:.2f}%)"
            ),
            from_chain=source.chain,
            to_chain=best.chain,
            amount_usd=source.amount_usd,
            expected_apy_gain_pct=gain,
            opportunity=best,
        )
