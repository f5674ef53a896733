"""JSON reporter: serializes a healing session for downstream tooling."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from healwright import __version__

if TYPE_CHECKING:
    from pathlib import Path

    from healwright.adapters.base import RunResult
    from healwright.models.healing import HealingAttempt, HealingSession

logger = logging.getLogger(__name__)


class JSONReporter:
    """Generate a structured JSON document from a ``HealingSession``."""

    def generate(
        self,
        output_path: Path,
        session: HealingSession,
        *,
        extra: dict[str, Any] | None = None,
    ) -> Path:
        """Write the session report to *output_path* and return the path."""
        report = build_report(session, extra=extra)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(
            json.dumps(report, indent=2, ensure_ascii=False, default=str),
            encoding="utf-8",
        )
        logger.info("JSON report written to %s", output_path)
        return output_path

    def generate_string(
        self,
        session: HealingSession,
        *,
        extra: dict[str, Any] | None = None,
    ) -> str:
        """Return the session report as a JSON string."""
        report = build_report(session, extra=extra)
        return json.dumps(report, indent=2, ensure_ascii=False, default=str)


def build_report(
    session: HealingSession,
    *,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the JSON report structure."""
    report: dict[str, Any] = {
        "tool": "healwright",
        "version": __version__,
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "outcome": session.outcome.value,
        "termination_cause": session.termination_cause.value,
        "max_attempts": session.max_attempts,
        "attempts_run": session.attempts_run,
        "duration_ms": session.duration_ms,
        "attempts": [_serialize_attempt(a) for a in session.attempts],
        "failing_cases": [entry.to_dict() for entry in session.failing_cases],
    }
    if extra:
        report.update(extra)
    return report


def _serialize_attempt(attempt: HealingAttempt) -> dict[str, Any]:
    return {
        "attempt_number": attempt.attempt_number,
        "passed": attempt.passed,
        "failed": attempt.failed,
        "failing_ids": attempt.failing_ids,
        "runner_retries": attempt.run_result.runner_retries,
        "duration_ms": attempt.run_result.duration_ms,
        "remediations": [
            {
                "test_case_id": r.test_case_id,
                "category": r.category.value,
                "description": r.description,
                "applied": r.applied,
            }
            for r in attempt.remediations
        ],
    }


def serialize_run_result(result: RunResult) -> dict[str, Any]:
    """Serialize a single ``RunResult`` (used by ``healwright run``)."""
    return {
        "summary": {
            "total": result.total,
            "passed": result.passed,
            "failed": result.failed,
            "skipped": result.skipped,
            "runner_retries": result.runner_retries,
            "duration_ms": result.duration_ms,
            "success": result.success,
        },
        "cases": [
            {
                "test_case_id": case_id,
                "status": case.status.value,
                "failed_environments": case.failed_environments,
                "error_message": case.evidence.error_message if case.evidence else "",
            }
            for case_id, case in result.cases.items()
        ],
    }
