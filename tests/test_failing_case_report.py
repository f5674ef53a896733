"""Tests for failing-case report entries and recommended commands."""

from __future__ import annotations

from pathlib import Path

from healwright.adapters.base import CaseResult, CaseStatus, RunnerContext, RunResult
from healwright.adapters.e2e.auth import AuthSession
from healwright.agents.healers.classifier import FailureClassifier
from healwright.agents.healers.report import build_failing_case_reports, recommended_commands
from healwright.models.healing import (
    FailureCategory,
    FailureEvidence,
    HealingAttempt,
    HealingSession,
    Remediation,
    TestCase,
)
from tests.conftest import make_run_result

CASE = TestCase(
    id="cart.spec.ts::adds (1) product",
    source_path="e2e/tests/cart.spec.ts",
    title="adds (1) product",
)


def _failing(message: str, *, environment: str = "chromium") -> RunResult:
    evidence = FailureEvidence(
        error_message=message,
        environment=environment,
        artifacts=("test-results/cart/trace.zip", "test-results/cart/shot.png"),
    )
    return RunResult(
        cases={CASE.id: CaseResult(CASE.id, CaseStatus.FAILED, evidence=evidence)}
    )


# ── recommended_commands ─────────────────────────────────────────────


def test_commands_reproduce_in_failing_project() -> None:
    evidence = FailureEvidence(error_message="boom", environment="mobile-safari")

    commands = recommended_commands(CASE, evidence, FailureCategory.UNKNOWN)

    assert commands[0] == (
        "npx playwright test e2e/tests/cart.spec.ts -g 'adds \\(1\\) product' "
        "--project=mobile-safari --retries=0 --debug"
    )
    assert commands[1].endswith("--trace=on")


def test_commands_open_existing_traces() -> None:
    evidence = FailureEvidence(error_message="boom", artifacts=("results/trace.zip",))

    commands = recommended_commands(CASE, evidence, FailureCategory.TIMING_RACE)

    assert "npx playwright show-trace results/trace.zip" in commands


def test_selector_mismatch_suggests_codegen(tmp_path: Path) -> None:
    auth = AuthSession(storage_state=tmp_path / "state.json", base_url="https://shop.test")
    context = RunnerContext(auth=auth)

    commands = recommended_commands(
        CASE, FailureEvidence(error_message=""), FailureCategory.SELECTOR_MISMATCH, context
    )

    assert commands[-1] == (
        f"npx playwright codegen --load-storage={tmp_path / 'state.json'} https://shop.test"
    )


def test_state_isolation_suggests_repeat() -> None:
    commands = recommended_commands(
        CASE, FailureEvidence(error_message=""), FailureCategory.STATE_ISOLATION
    )

    assert commands[-1].endswith("--repeat-each=3 --workers=1")


def test_case_without_source_uses_id_prefix() -> None:
    case = TestCase(id="nav.spec.ts::menu")
    evidence = FailureEvidence(error_message="")

    commands = recommended_commands(case, evidence, FailureCategory.UNKNOWN)

    assert commands[0].startswith("npx playwright test nav.spec.ts -g menu")


# ── build_failing_case_reports ───────────────────────────────────────


def test_report_for_exhausted_case() -> None:
    message = "Error: page.waitForURL: Timeout 10000ms exceeded."
    fix = Remediation(CASE.id, FailureCategory.TIMING_RACE, "Added web-first wait")
    session = HealingSession(
        max_attempts=2,
        attempts=[
            HealingAttempt(1, _failing(message), (fix,)),
            HealingAttempt(2, _failing(message, environment="firefox")),
        ],
    )

    [entry] = build_failing_case_reports(session, [CASE], FailureClassifier())

    assert entry.test_case_id == CASE.id
    assert entry.suspected_category == FailureCategory.TIMING_RACE
    assert entry.remediation_count == 1
    assert entry.no_progress is True
    assert entry.environment == "firefox"
    assert any("Added web-first wait" in s for s in entry.investigation_suggestions)
    assert any("show-trace" in c for c in entry.recommended_next_commands)


def test_changing_error_is_progress() -> None:
    session = HealingSession(
        max_attempts=2,
        attempts=[
            HealingAttempt(1, _failing("Error: element(s) not found")),
            HealingAttempt(2, _failing("Error: expected 1 received 2")),
        ],
    )

    [entry] = build_failing_case_reports(session, [CASE], FailureClassifier())

    assert entry.no_progress is False


def test_passing_cases_get_no_entry() -> None:
    session = HealingSession(attempts=[HealingAttempt(1, make_run_result({CASE.id: None}))])

    assert build_failing_case_reports(session, [CASE], FailureClassifier()) == []


def test_empty_session_has_no_entries() -> None:
    assert build_failing_case_reports(HealingSession(), [CASE], FailureClassifier()) == []
