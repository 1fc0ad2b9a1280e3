"""Human-in-the-loop gate for executor and validator decisions.

``HitlPolicy`` combines the inherent risk of the proposed tools with the
model's declared uncertainty into one signal and compares it with the gate of
the configured tier.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from ..schemas.domain import RiskLevel, ToolCall
from .models import RISK_SCORES, TIER_GATES, HitlDecision, HitlTier, tier_from_threshold


class HitlPolicy:
    def __init__(
        self,
        threshold: float,
        *,
        tool_risks: Optional[Mapping[str, RiskLevel]] = None,
        risk_overrides: Optional[Mapping[str, RiskLevel]] = None,
    ) -> None:
        self._tier = tier_from_threshold(threshold)
        self._tool_risks = dict(tool_risks or {})
        self._overrides = dict(risk_overrides or {})

    @property
    def tier(self) -> HitlTier:
        return self._tier

    def classify_risk(self, tool_name: str) -> RiskLevel:
        """
        Classify the risk of calling a tool.

        Checks explicit overrides first, then the risk the tool advertises;
        unknown tools default to low.
        """
        override = self._overrides.get(tool_name)
        if override is not None:
            return override
        return self._tool_risks.get(tool_name, RiskLevel.low)

    def signal(self, calls: Iterable[ToolCall], uncertainty: Optional[float] = None) -> float:
        scores = [RISK_SCORES[self.classify_risk(c.name)] for c in calls]
        if uncertainty is not None:
            scores.append(min(max(float(uncertainty), 0.0), 1.0))
        return max(scores, default=0.0)

    def decide(self, calls: Iterable[ToolCall], *, uncertainty: Optional[float] = None) -> HitlDecision:
        calls = list(calls)
        signal = self.signal(calls, uncertainty)
        gate = TIER_GATES[self._tier]
        if gate is None or signal < gate:
            return HitlDecision(tier=self._tier, signal=signal, require_human=False)
        names = ", ".join(c.name for c in calls) or "task completion"
        return HitlDecision(
            tier=self._tier,
            signal=signal,
            require_human=True,
            reason=f"{names} requires human review (signal {signal:.2f} >= {self._tier.value} gate {gate:.2f})",
        )
