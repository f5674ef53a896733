"""Healing loop: classification, remediation, and session control."""

from healwright.agents.healers.applier import (
    FixApplier,
    LLMFixApplier,
    SourceFixApplier,
    check_proposal,
)
from healwright.agents.healers.classifier import RULES, FailureClassifier
from healwright.agents.healers.controller import HealingController, SessionAbortedError
from healwright.agents.healers.report import build_failing_case_reports

__all__ = [
    "RULES",
    "FailureClassifier",
    "FixApplier",
    "HealingController",
    "LLMFixApplier",
    "SessionAbortedError",
    "SourceFixApplier",
    "build_failing_case_reports",
    "check_proposal",
]
