"""Layered quality gates over agent output."""

from sprintflow.quality.context import GateContext
from sprintflow.quality.gates import (
    FormatGate,
    IntegrationGate,
    QualityGate,
    SecurityGate,
    SemanticGate,
    SyntaxGate,
    default_gates,
)
from sprintflow.quality.issues import FixOutcome, FixReport, GateResult, Issue, Report, Severity
from sprintflow.quality.pipeline import QualityGatePipeline

__all__ = [
    "GateContext",
    "QualityGate",
    "SyntaxGate",
    "FormatGate",
    "SemanticGate",
    "IntegrationGate",
    "SecurityGate",
    "default_gates",
    "Issue",
    "Severity",
    "GateResult",
    "Report",
    "FixOutcome",
    "FixReport",
    "QualityGatePipeline",
]
