"""Human-in-the-loop policy."""

from .hitl_policy import HitlPolicy
from .models import HitlDecision, HitlTier, ToolRiskKind, risk_from_kind, tier_from_threshold

__all__ = ["HitlDecision", "HitlPolicy", "HitlTier", "ToolRiskKind", "risk_from_kind", "tier_from_threshold"]
