"""Data models for healwright."""

from healwright.models.healing import (
    DEFAULT_MAX_ATTEMPTS,
    Classification,
    FailingCaseReport,
    FailureCategory,
    FailureEvidence,
    HealingAttempt,
    HealingSession,
    Remediation,
    SessionOutcome,
    StepContext,
    TerminationCause,
    TestCase,
    TestStep,
)

__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "Classification",
    "FailingCaseReport",
    "FailureCategory",
    "FailureEvidence",
    "HealingAttempt",
    "HealingSession",
    "Remediation",
    "SessionOutcome",
    "StepContext",
    "TerminationCause",
    "TestCase",
    "TestStep",
]
