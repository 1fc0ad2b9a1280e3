"""Execution constraints manager."""

from .manager import END_TASK, ExecutionConstraintsManager
from .models import ConstraintDecision, Substitution, ToolConstraint

__all__ = ["END_TASK", "ConstraintDecision", "ExecutionConstraintsManager", "Substitution", "ToolConstraint"]
