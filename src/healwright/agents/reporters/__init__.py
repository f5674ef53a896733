"""Reporters for healing sessions."""

from __future__ import annotations

from healwright.agents.reporters.json_reporter import JSONReporter
from healwright.agents.reporters.terminal import CLIReporter, reporter

__all__ = [
    "CLIReporter",
    "JSONReporter",
    "reporter",
]
