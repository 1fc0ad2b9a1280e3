"""Human-in-the-loop tiers and risk scoring.

The configured ``hitl_threshold`` (0..1) is mapped to a discrete tier using
half-open intervals, so every boundary value belongs to exactly one tier:

==============  ===========
threshold       tier
==============  ===========
``t == 0``      disabled
``(0, 0.25)``   minimal
``[0.25, 0.5)`` moderate
``[0.5, 0.75)`` elevated
``[0.75, 1)``   strict
``t == 1``      always
==============  ===========

Each tier has a gate; a step whose risk/uncertainty signal is at or above the
gate is routed to a human before it proceeds.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..schemas.domain import RiskLevel


class ToolRiskKind(str, Enum):
    """
    Classification of tool operations for risk assessment.

    Attributes:
        read: Read-only operations (low risk).
        write: State-modifying operations (medium risk).
        high: Irreversible operations such as transfers (high risk).
    """

    read = "read"
    write = "write"
    high = "high"


class HitlTier(str, Enum):
    disabled = "disabled"
    minimal = "minimal"
    moderate = "moderate"
    elevated = "elevated"
    strict = "strict"
    always = "always"


RISK_SCORES = {
    RiskLevel.low: 0.2,
    RiskLevel.medium: 0.5,
    RiskLevel.high: 0.9,
}

TIER_GATES: dict[HitlTier, Optional[float]] = {
    HitlTier.disabled: None,
    HitlTier.minimal: 0.9,
    HitlTier.moderate: 0.75,
    HitlTier.elevated: 0.5,
    HitlTier.strict: 0.2,
    HitlTier.always: 0.0,
}

TIER_GUIDANCE = {
    HitlTier.disabled: "Act autonomously; do not ask for human input.",
    HitlTier.minimal: "Ask for human input only before irreversible actions.",
    HitlTier.moderate: "Ask for human input before irreversible actions or when highly uncertain.",
    HitlTier.elevated: "Ask for human input before any state-changing action.",
    HitlTier.strict: "Ask for human input before nearly every action.",
    HitlTier.always: "Ask for human input before every step.",
}


def tier_from_threshold(threshold: float) -> HitlTier:
    """Map a threshold to its tier using half-open intervals."""
    if threshold < 0 or threshold > 1:
        raise ValueError(f"hitl threshold must be within [0, 1], got {threshold}")
    if threshold == 0:
        return HitlTier.disabled
    if threshold < 0.25:
        return HitlTier.minimal
    if threshold < 0.5:
        return HitlTier.moderate
    if threshold < 0.75:
        return HitlTier.elevated
    if threshold < 1:
        return HitlTier.strict
    return HitlTier.always


def risk_from_kind(kind: ToolRiskKind) -> RiskLevel:
    """Map a generic tool risk kind (read/write) to a specific RiskLevel."""
    if kind == ToolRiskKind.read:
        return RiskLevel.low
    if kind == ToolRiskKind.write:
        return RiskLevel.medium
    return RiskLevel.high


@dataclass(frozen=True)
class HitlDecision:
    """
    Result of a human-in-the-loop evaluation for one step.

    Attributes:
        tier: The tier selected by the configured threshold.
        signal: The step's combined risk/uncertainty signal (0..1).
        require_human: Whether the step must pause for human input.
        reason: Human-readable explanation surfaced in the interrupt prompt.
    """

    tier: HitlTier
    signal: float
    require_human: bool
    reason: Optional[str] = None
