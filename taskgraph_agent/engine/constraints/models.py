from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..schemas.config import ToolConstraint
from ..schemas.domain import ToolCall

__all__ = ["ConstraintDecision", "Substitution", "ToolConstraint"]


@dataclass(frozen=True)
class ConstraintDecision:
    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "ConstraintDecision":
        return cls(allowed=True)

    @classmethod
    def reject(cls, reason: str) -> "ConstraintDecision":
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class Substitution:
    """A safe replacement for a rejected call, plus the diagnostic message recorded for the model."""

    original: ToolCall
    call: ToolCall
    reason: str
    message: str
