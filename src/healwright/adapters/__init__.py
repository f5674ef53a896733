"""Test runner boundary and its implementations."""

from healwright.adapters.base import (
    CaseResult,
    CaseStatus,
    EnvironmentResult,
    RunnerContext,
    RunnerError,
    RunResult,
    TestRunner,
    aggregate_case,
)

__all__ = [
    "CaseResult",
    "CaseStatus",
    "EnvironmentResult",
    "RunResult",
    "RunnerContext",
    "RunnerError",
    "TestRunner",
    "aggregate_case",
]
