# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from the engine modules -- this prevents circular imports.
"""Typed JSON wire shapes for engine results and API responses."""

from __future__ import annotations

from trellis.types.graph import (
    BottleneckDict,
    CircularDependencyDict,
    CriticalPathDict,
    HealthReportDict,
    InputIssueDict,
)
from trellis.types.readiness import MissingFieldDict, ReadinessDict, TransitionDecisionDict
from trellis.types.review import ReviewActionResultDict, ReviewValidationDict

__all__ = [
    "BottleneckDict",
    "CircularDependencyDict",
    "CriticalPathDict",
    "HealthReportDict",
    "InputIssueDict",
    "MissingFieldDict",
    "ReadinessDict",
    "ReviewActionResultDict",
    "ReviewValidationDict",
    "TransitionDecisionDict",
]
