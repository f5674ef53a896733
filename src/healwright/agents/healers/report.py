"""Per-case report entries for sessions that ran out of budget."""

from __future__ import annotations

import re
import shlex
from typing import TYPE_CHECKING

from healwright.models.healing import FailingCaseReport, FailureCategory, FailureEvidence

if TYPE_CHECKING:
    from collections.abc import Sequence

    from healwright.adapters.base import RunnerContext
    from healwright.agents.healers.classifier import FailureClassifier
    from healwright.models.healing import HealingSession, TestCase

_SUGGESTIONS: dict[FailureCategory, tuple[str, ...]] = {
    FailureCategory.SELECTOR_MISMATCH: (
        "Open the trace and check whether the element was renamed, moved, or removed.",
        "Record a fresh locator with codegen and prefer getByRole or getByLabel.",
        "Check the page object that owns the locator, not only the test.",
    ),
    FailureCategory.TIMING_RACE: (
        "Open the trace and find the action that ran before the page was ready.",
        "Replace one-shot checks with web-first assertions such as toBeVisible().",
        "If the step depends on a request, wait for that response rather than a delay.",
    ),
    FailureCategory.STATE_ISOLATION: (
        "Run the case on its own to confirm it passes without the rest of the suite.",
        "Look for cart, cookie, or storage state created by an earlier case.",
        "Reset the state the case needs at the start of the case.",
    ),
    FailureCategory.ASSERTION_MISMATCH: (
        "Compare the expected and received values against the live storefront.",
        "If the storefront is right, update the expectation; otherwise file a theme bug.",
        "Match values that change with catalogue data (counts, prices) with a pattern.",
    ),
    FailureCategory.ENVIRONMENT_OR_AUTH: (
        "Re-run the global setup so the storage state holds a fresh storefront session.",
        "Check TEST_URL, STORE_PASSWORD and TEST_THEME_ID for this environment.",
        "Confirm the storefront is reachable from this machine.",
    ),
    FailureCategory.UNKNOWN: (
        "Open the trace and read the failing step and its call log.",
        "Run the case in debug mode and step through it.",
    ),
}

_JS_SPECIAL = re.compile(r"[\\^$.*+?()[\]{}|/]")


def build_failing_case_reports(
    session: HealingSession,
    cases: Sequence[TestCase],
    classifier: FailureClassifier,
    *,
    context: RunnerContext | None = None,
) -> list[FailingCaseReport]:
    """One entry per case failing in the final attempt, in case order."""
    last = session.last_attempt
    if last is None:
        return []

    failing = set(last.failing_ids)
    reports: list[FailingCaseReport] = []
    for case in cases:
        if case.id not in failing:
            continue
        evidence = last.run_result.cases[case.id].evidence or FailureEvidence(error_message="")
        category = evidence.suspected_category or classifier.classify(evidence).category
        remediations = [r for r in session.remediations if r.test_case_id == case.id]

        suggestions = list(_SUGGESTIONS[category])
        applied = [r for r in remediations if r.applied]
        if applied:
            suggestions.append(
                f"{len(applied)} automatic fix(es) did not resolve the failure; "
                f"last: {applied[-1].description}."
            )
        declined = [r for r in remediations if not r.applied]
        if declined:
            suggestions.append(f"Automatic fixing declined: {declined[-1].description}.")

        reports.append(
            FailingCaseReport(
                test_case_id=case.id,
                last_error_message=evidence.error_message,
                suspected_category=category,
                investigation_suggestions=suggestions,
                recommended_next_commands=recommended_commands(case, evidence, category, context),
                remediation_count=len(applied),
                no_progress=_no_progress(session, case.id),
                environment=evidence.environment,
            )
        )
    return reports


def recommended_commands(
    case: TestCase,
    evidence: FailureEvidence,
    category: FailureCategory,
    context: RunnerContext | None = None,
) -> list[str]:
    """Shell commands that reproduce and debug one failing case."""
    spec = case.source_path or case.id.split("::", 1)[0]
    grep = _grep_pattern(case.display_title)
    project = f" --project={evidence.environment}" if evidence.environment else ""
    base = f"npx playwright test {shlex.quote(spec)} -g {shlex.quote(grep)}{project}"

    commands = [f"{base} --retries=0 --debug"]
    traces = evidence.trace_artifacts
    if traces:
        commands.extend(f"npx playwright show-trace {shlex.quote(t)}" for t in traces)
    else:
        commands.append(f"{base} --retries=0 --trace=on")

    if category == FailureCategory.SELECTOR_MISMATCH:
        url = context.auth.base_url if context and context.auth else ""
        storage = (
            f" --load-storage={shlex.quote(str(context.auth.storage_state))}"
            if context and context.auth
            else ""
        )
        commands.append(f"npx playwright codegen{storage} {url}".rstrip())
    elif category == FailureCategory.STATE_ISOLATION:
        commands.append(f"{base} --repeat-each=3 --workers=1")
    elif category == FailureCategory.ENVIRONMENT_OR_AUTH:
        commands.append("npx playwright test --list")

    return commands


def _grep_pattern(title: str) -> str:
    return _JS_SPECIAL.sub(r"\\\g<0>", title)


def _no_progress(session: HealingSession, case_id: str) -> bool:
    """True when the case failed with the same message in every attempt."""
    if session.attempts_run < 2:
        return False
    messages: set[str] = set()
    for attempt in session.attempts:
        result = attempt.run_result.cases.get(case_id)
        if result is None or result.evidence is None or case_id not in attempt.failing_ids:
            return False
        messages.add(result.evidence.error_message)
    return len(messages) == 1
