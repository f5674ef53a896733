"""Playwright runner: case discovery, execution, and JSON reporter parsing.

Runs ``npx playwright test --reporter=json`` with one ``--project`` flag per
browser project and folds the per-project outcomes of every spec into one
verdict per case.
"""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from healwright.adapters.base import (
    CaseResult,
    CaseStatus,
    EnvironmentResult,
    RunnerError,
    RunResult,
    TestRunner,
    aggregate_case,
)
from healwright.models.healing import FailureEvidence, TestCase, TestStep
from healwright.parsing.treesitter import detect_language, find_test_calls
from healwright.utils.subprocess_runner import SubprocessError, run_subprocess

if TYPE_CHECKING:
    from collections.abc import Sequence

    from healwright.adapters.base import RunnerContext

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────

_BASE_COMMAND = ("npx", "playwright", "test", "--reporter=json")

_SPEC_GLOBS = ("*.spec.ts", "*.spec.tsx", "*.spec.js", "*.e2e.ts")

_ID_SEPARATOR = "::"

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")

_NOT_REPORTED = "Case was not reported by the Playwright run (title or file may have changed)"


def case_id(spec_file: str, title: str) -> str:
    """Build the identifier of a case from its spec file and title."""
    return f"{spec_file}{_ID_SEPARATOR}{title}"


# ── Discovery ────────────────────────────────────────────────────


def discover_cases(test_dir: Path) -> list[TestCase]:
    """Build ``TestCase`` records from the spec files under *test_dir*.

    Ids are ``<spec path relative to test_dir>::<title>``, matching the
    ``file`` and ``title`` fields of Playwright's JSON report.
    """
    if not test_dir.is_dir():
        logger.warning("Test directory not found: %s", test_dir)
        return []

    spec_files = sorted({p for pattern in _SPEC_GLOBS for p in test_dir.rglob(pattern)})
    cases: list[TestCase] = []
    seen: set[str] = set()

    for spec_path in spec_files:
        language = detect_language(spec_path) or "typescript"
        try:
            source = spec_path.read_bytes()
        except OSError as exc:
            logger.warning("Could not read %s: %s", spec_path, exc)
            continue

        relative = spec_path.relative_to(test_dir).as_posix()
        for call in find_test_calls(source, language):
            cid = case_id(relative, call.title)
            if cid in seen:
                logger.warning(
                    "Duplicate test title %r in %s; keeping the first", call.title, relative
                )
                continue
            seen.add(cid)
            cases.append(
                TestCase(
                    id=cid,
                    steps=tuple(TestStep(description=s) for s in call.steps),
                    suite=call.suite,
                    source_path=str(spec_path),
                    title=call.title,
                )
            )

    logger.info("Discovered %d cases in %d spec files", len(cases), len(spec_files))
    return cases


# ── Runner ───────────────────────────────────────────────────────


class PlaywrightRunner(TestRunner):
    """Runs cases through the Playwright CLI.

    Every browser project in the context is passed as ``--project``; a case
    that fails under any of them is failed.  Playwright's own ``--retries``
    is set from the context and the retries it spent are reported in
    ``RunResult.runner_retries``.
    """

    def __init__(
        self,
        playwright_dir: Path,
        *,
        test_dir: Path | None = None,
        test_timeout_ms: int | None = None,
        workers: int = 0,
    ) -> None:
        self._playwright_dir = playwright_dir
        self._test_dir = test_dir or playwright_dir / "tests"
        self._test_timeout_ms = test_timeout_ms
        self._workers = workers

    @property
    def name(self) -> str:
        return "playwright"

    def build_command(self, cases: Sequence[TestCase], context: RunnerContext) -> list[str]:
        cmd = list(_BASE_COMMAND)
        cmd.extend(f"--project={env}" for env in context.environments)
        cmd.append(f"--retries={context.retries}")
        if self._test_timeout_ms:
            cmd.append(f"--timeout={self._test_timeout_ms}")
        if self._workers:
            cmd.append(f"--workers={self._workers}")
        cmd.extend(self._spec_files(cases))
        return cmd

    def _spec_files(self, cases: Sequence[TestCase]) -> list[str]:
        files: list[str] = []
        for case in cases:
            if not case.source_path:
                return []
            path = Path(case.source_path)
            try:
                relative = path.resolve().relative_to(self._playwright_dir.resolve()).as_posix()
            except ValueError:
                relative = str(path)
            if relative not in files:
                files.append(relative)
        return files

    async def run(self, cases: Sequence[TestCase], context: RunnerContext) -> RunResult:
        cmd = self.build_command(cases, context)
        env = context.auth.as_env() if context.auth else None

        start = time.perf_counter()
        try:
            proc = await run_subprocess(
                cmd, cwd=self._playwright_dir, timeout=context.timeout, env=env
            )
        except SubprocessError as exc:
            raise RunnerError(f"Playwright could not be started: {exc}") from exc

        if proc.timed_out:
            raise RunnerError(f"Playwright run timed out after {context.timeout:.0f}s")

        raw_output = proc.stdout + ("\n" + proc.stderr if proc.stderr else "")
        report = _load_report(proc.stdout)
        if report is None:
            raise RunnerError(
                f"Playwright output is not a JSON report (exit code {proc.returncode}): "
                f"{_tail(raw_output)}"
            )

        result = parse_playwright_report(report, cases, test_dir=self._test_dir)
        result.raw_output = raw_output
        result.duration_ms = (time.perf_counter() - start) * 1000

        if not result.cases and report.get("errors"):
            msg = f"Playwright reported errors and no results: {_report_errors(report)}"
            raise RunnerError(msg)

        logger.info(
            "Playwright run: %d passed, %d failed, %d skipped (%d runner retries)",
            result.passed,
            result.failed,
            result.skipped,
            result.runner_retries,
        )
        return result


# ── Parsing helpers ──────────────────────────────────────────────


def _load_report(raw_stdout: str) -> dict[str, Any] | None:
    """Parse the JSON report, tolerating log lines printed before it."""
    candidates = [raw_stdout]
    brace = raw_stdout.find("\n{")
    if brace != -1:
        candidates.append(raw_stdout[brace + 1 :])
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return cast("dict[str, Any]", data)
    logger.debug("Failed to parse Playwright JSON output")
    return None


def parse_playwright_report(
    report: dict[str, Any],
    cases: Sequence[TestCase] = (),
    *,
    test_dir: Path | None = None,
) -> RunResult:
    """Fold a Playwright JSON report into a ``RunResult``.

    Report shape (abridged)::

        {"suites": [{"file": "...", "specs": [{"title": "...", "file": "...",
          "tests": [{"projectName": "chromium", "status": "expected",
                     "results": [{"status": "passed", "retry": 0,
                                  "error": {"message": "...", "stack": "..."},
                                  "attachments": [{"path": "..."}]}]}]}],
          "suites": [...]}]}

    When *cases* is given, only those ids are kept and any case missing from
    the report is failed.
    """
    per_case: dict[str, list[EnvironmentResult]] = {}
    config = report.get("config")
    root_dir = str(config.get("rootDir", "")) if isinstance(config, dict) else ""

    def _walk(suite: dict[str, Any]) -> None:
        for spec in cast("list[dict[str, Any]]", suite.get("specs", [])):
            raw_file = str(spec.get("file", suite.get("file", "")))
            spec_file = _normalise_file(raw_file, root_dir, test_dir)
            cid = case_id(spec_file, str(spec.get("title", "")))
            for test in cast("list[dict[str, Any]]", spec.get("tests", [])):
                per_case.setdefault(cid, []).append(_environment_result(test))
        for nested in cast("list[dict[str, Any]]", suite.get("suites", [])):
            _walk(nested)

    for suite in cast("list[dict[str, Any]]", report.get("suites", [])):
        _walk(suite)

    result = RunResult()
    wanted = [c.id for c in cases] if cases else list(per_case)
    for cid in wanted:
        environments = per_case.get(cid)
        if environments is None:
            logger.warning("Case %s missing from the Playwright report", cid)
            result.cases[cid] = CaseResult(
                test_case_id=cid,
                status=CaseStatus.FAILED,
                evidence=FailureEvidence(error_message=_NOT_REPORTED),
            )
            continue
        result.cases[cid] = aggregate_case(cid, environments)
        result.runner_retries += sum(e.retries for e in environments)

    return result


def _environment_result(test: dict[str, Any]) -> EnvironmentResult:
    environment = str(test.get("projectName", "")) or "default"
    results = cast("list[dict[str, Any]]", test.get("results", []))
    retries = max(len(results) - 1, 0)
    duration = float(sum(r.get("duration", 0) for r in results))

    status = _map_playwright_status(str(test.get("status", "")))
    evidence = None
    if status == CaseStatus.FAILED:
        evidence = _evidence_from_results(results, environment)

    return EnvironmentResult(
        environment=environment,
        status=status,
        duration_ms=duration,
        evidence=evidence,
        retries=retries,
    )


def _map_playwright_status(status: str) -> CaseStatus:
    """Map a Playwright test outcome to ``CaseStatus``.

    ``flaky`` passed on a runner retry and counts as passed.
    """
    mapping = {
        "expected": CaseStatus.PASSED,
        "flaky": CaseStatus.PASSED,
        "skipped": CaseStatus.SKIPPED,
        "unexpected": CaseStatus.FAILED,
    }
    return mapping.get(status.lower(), CaseStatus.FAILED)


def _evidence_from_results(results: list[dict[str, Any]], environment: str) -> FailureEvidence:
    last = results[-1] if results else {}
    error = last.get("error")
    if not isinstance(error, dict):
        errors = last.get("errors") or [{}]
        error = errors[0] if isinstance(errors[0], dict) else {}

    message = _strip_ansi(str(error.get("message", "") or error.get("value", "")))
    if not message:
        message = f"Test finished with status {last.get('status', 'unknown')}"

    artifacts = tuple(
        str(a["path"])
        for r in results
        for a in r.get("attachments", [])
        if isinstance(a, dict) and a.get("path")
    )

    return FailureEvidence(
        error_message=message,
        stack_trace=_strip_ansi(str(error.get("stack", ""))),
        artifacts=artifacts,
        environment=environment,
    )


def _normalise_file(spec_file: str, root_dir: str, test_dir: Path | None) -> str:
    """Express *spec_file* relative to the test directory."""
    path = Path(spec_file)
    if not path.is_absolute():
        if not root_dir or test_dir is None:
            return path.as_posix()
        path = Path(root_dir) / path
    for base in (test_dir, Path(root_dir) if root_dir else None):
        if base is None:
            continue
        try:
            return path.resolve().relative_to(base.resolve()).as_posix()
        except ValueError:
            continue
    return path.as_posix()


def _strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def _report_errors(report: dict[str, Any]) -> str:
    messages = [
        _strip_ansi(str(e.get("message", e))) if isinstance(e, dict) else str(e)
        for e in report.get("errors", [])
    ]
    return "; ".join(messages)


def _tail(text: str, limit: int = 500) -> str:
    text = text.strip()
    return text if len(text) <= limit else "..." + text[-limit:]
