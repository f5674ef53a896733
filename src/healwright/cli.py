"""healwright CLI: top-level command group."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler

from healwright import __version__
from healwright.adapters.base import RunnerContext, RunnerError
from healwright.adapters.e2e.auth import AuthSessionError, load_auth_session
from healwright.adapters.e2e.playwright_adapter import PlaywrightRunner, discover_cases
from healwright.agents.healers.applier import LLMFixApplier, SourceFixApplier
from healwright.agents.healers.classifier import FailureClassifier
from healwright.agents.healers.controller import HealingController, SessionAbortedError
from healwright.agents.reporters.json_reporter import JSONReporter, serialize_run_result
from healwright.agents.reporters.terminal import reporter
from healwright.config import CONFIG_FILENAME, SentryConfig, load_config, validate_config
from healwright.llm.engine import LLMError
from healwright.llm.factory import create_engine
from healwright.models.healing import FailureEvidence
from healwright.telemetry.sentry_integration import init_sentry, start_span

if TYPE_CHECKING:
    from healwright.agents.healers.applier import FixApplier
    from healwright.config import HealwrightConfig
    from healwright.models.healing import HealingAttempt, HealingSession, TestCase

logger = logging.getLogger(__name__)
console = Console()

_MIN_MASKED_VALUE_LENGTH = 8
_SENSITIVE_CONFIG_KEYS = frozenset({"api_key", "store_password", "dsn", "password", "token"})


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # litellm is chatty at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def _init_sentry_from_env() -> None:
    """Initialize Sentry from environment variables before config is parsed."""
    enabled_raw = os.environ.get("HEALWRIGHT_SENTRY_ENABLED", "").strip().lower()
    if enabled_raw not in {"1", "true", "yes"}:
        return
    dsn = os.environ.get("HEALWRIGHT_SENTRY_DSN", "").strip()
    if not dsn:
        return
    init_sentry(
        SentryConfig(
            enabled=True,
            dsn=dsn,
            traces_sample_rate=float(
                os.environ.get("HEALWRIGHT_SENTRY_TRACES_SAMPLE_RATE", "0.0")
            ),
        )
    )


def _mask_sensitive_values(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Recursively mask secrets in a configuration dict."""
    result = copy.deepcopy(config_dict)

    def _mask_dict(data: dict[str, Any]) -> None:
        for key, value in data.items():
            if key in _SENSITIVE_CONFIG_KEYS and isinstance(value, str) and value:
                if len(value) > _MIN_MASKED_VALUE_LENGTH:
                    data[key] = f"{value[:4]}...{value[-4:]}"
                else:
                    data[key] = "***"
            elif isinstance(value, dict):
                _mask_dict(value)

    _mask_dict(result)
    return result


def _load_or_abort(path: str) -> HealwrightConfig:
    try:
        return load_config(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        reporter.print_error(f"Failed to load configuration: {e}")
        raise click.Abort from e


def _is_ci() -> bool:
    ctx = click.get_current_context(silent=True)
    return bool(ctx and ctx.obj and ctx.obj.get("ci", False))


# ── Run setup ─────────────────────────────────────────────────────


def _prepare_run(
    config: HealwrightConfig,
    projects: tuple[str, ...],
) -> tuple[list[TestCase], PlaywrightRunner, RunnerContext]:
    """Discover cases and build the runner and its context, or abort."""
    project_root = Path(config.project.root)
    playwright_dir = project_root / config.project.playwright_dir
    test_dir = project_root / config.project.test_dir

    if not test_dir.is_dir():
        reporter.print_error(f"Test directory not found: {test_dir}")
        raise click.Abort

    cases = discover_cases(test_dir)
    if not cases:
        reporter.print_error(f"No test cases found under {test_dir}")
        raise click.Abort

    try:
        auth = load_auth_session(
            config.auth, project_root, config.auth.base_url, playwright_dir=playwright_dir
        )
    except AuthSessionError as e:
        reporter.print_error(str(e))
        raise click.Abort from e

    runner = PlaywrightRunner(
        playwright_dir,
        test_dir=test_dir,
        test_timeout_ms=config.runner.test_timeout_ms,
        workers=config.runner.workers,
    )
    context = RunnerContext(
        environments=projects or tuple(config.runner.projects),
        auth=auth,
        timeout=config.runner.timeout,
        retries=config.runner.retries,
    )
    return cases, runner, context


def _build_applier(config: HealwrightConfig, *, use_llm: bool) -> FixApplier:
    project_root = Path(config.project.root)
    page_object_dirs = [project_root / config.project.playwright_dir / "pages"]
    if not use_llm:
        return SourceFixApplier(page_object_dirs=page_object_dirs)

    if not config.llm.is_configured:
        reporter.print_error("LLM fallback requested but llm.model / llm.api_key are not set")
        raise click.Abort
    try:
        engine = create_engine(config.llm)
    except LLMError as e:
        reporter.print_error(f"Failed to create LLM engine: {e}")
        raise click.Abort from e
    return LLMFixApplier(engine, page_object_dirs=page_object_dirs)


def _emit_session(session: HealingSession, json_path: str, *, ci: bool) -> None:
    json_reporter = JSONReporter()
    if json_path:
        json_reporter.generate(Path(json_path), session)
    if ci:
        click.echo(json_reporter.generate_string(session))
        return
    reporter.print_session_summary(session)
    if json_path:
        reporter.print_info(f"JSON report written to {json_path}")


# ── Commands ──────────────────────────────────────────────────────


@click.group()
@click.option(
    "--ci",
    is_flag=True,
    help="CI mode: JSON output on stdout, no progress display, non-zero exit on failure.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option(version=__version__, prog_name="healwright")
@click.pass_context
def cli(ctx: click.Context, *, ci: bool, verbose: bool) -> None:
    """healwright: self-healing loop for Playwright storefront tests."""
    ctx.ensure_object(dict)
    ctx.obj["ci"] = ci
    _configure_logging(verbose=verbose)
    _init_sentry_from_env()


@cli.command()
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
@click.option("--max-attempts", type=int, default=None, help="Attempt budget (default: 5).")
@click.option(
    "--project",
    "projects",
    multiple=True,
    help="Browser project to run under (repeatable; default: all configured).",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Wall-clock budget for the whole session in seconds (0 = none).",
)
@click.option("--json-output", "json_path", default=None, help="Write the session report here.")
@click.option("--llm/--no-llm", "use_llm", default=None, help="Fall back to an LLM rewrite.")
def heal(
    path: str,
    max_attempts: int | None,
    projects: tuple[str, ...],
    timeout: float | None,
    json_path: str | None,
    use_llm: bool | None,
) -> None:
    """Run the suite, classify failures, apply fixes, and retry.

    Exits non-zero when any case still fails after the attempt budget.

    Example:
      healwright heal --project chromium --max-attempts 3
    """
    config = _load_or_abort(path)
    init_sentry(config.sentry)
    ci = _is_ci()

    budget = max_attempts if max_attempts is not None else config.healing.max_attempts
    if budget < 1:
        reporter.print_error(f"--max-attempts must be at least 1 (got {budget})")
        raise click.Abort
    session_timeout = timeout if timeout is not None else config.healing.session_timeout
    llm_enabled = config.healing.use_llm if use_llm is None else use_llm

    cases, runner, context = _prepare_run(config, projects)
    applier = _build_applier(config, use_llm=llm_enabled)

    def _on_attempt(attempt: HealingAttempt) -> None:
        if not ci:
            reporter.print_attempt(attempt, budget)

    controller = HealingController(
        runner, FailureClassifier(), applier, context, on_attempt=_on_attempt
    )

    if not ci:
        reporter.print_session_header(len(cases), context.environments, budget)

    try:
        with start_span("healwright.heal", "healing session"):
            session = asyncio.run(
                controller.run_session(cases, budget, session_timeout=session_timeout or None)
            )
    except SessionAbortedError as e:
        reporter.print_error(str(e))
        raise click.Abort from e

    as_json = ci or config.report.format == "json"
    _emit_session(session, json_path or config.report.json_output, ci=as_json)
    if not session.all_passed:
        sys.exit(1)


@cli.command()
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
@click.option(
    "--project",
    "projects",
    multiple=True,
    help="Browser project to run under (repeatable; default: all configured).",
)
@click.option("--json-output", "as_json", is_flag=True, help="Output results as JSON.")
def run(path: str, projects: tuple[str, ...], *, as_json: bool) -> None:
    """Run the suite once without healing.

    Example:
      healwright run --project mobile-safari
    """
    config = _load_or_abort(path)
    init_sentry(config.sentry)
    cases, runner, context = _prepare_run(config, projects)

    try:
        result = asyncio.run(runner.run(cases, context))
    except RunnerError as e:
        reporter.print_error(f"Runner failed: {e}")
        raise click.Abort from e

    if as_json or _is_ci():
        click.echo(json.dumps(serialize_run_result(result), indent=2))
    else:
        reporter.print_run_result(result)

    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("message")
@click.option("--json-output", "as_json", is_flag=True, help="Output as JSON.")
def classify(message: str, *, as_json: bool) -> None:
    """Classify a Playwright error MESSAGE into a failure category.

    Example:
      healwright classify "locator.click: Timeout 30000ms exceeded"
    """
    classification = FailureClassifier().classify(FailureEvidence(error_message=message))

    if as_json or _is_ci():
        payload = {
            "category": classification.category.value,
            "hint": classification.hint,
            "selector": classification.selector,
        }
        click.echo(json.dumps(payload, indent=2))
        return

    console.print(f"[bold]Category:[/bold] [cyan]{classification.category.value}[/cyan]")
    if classification.selector:
        console.print(f"[bold]Selector:[/bold] {classification.selector}")
    if classification.hint:
        console.print(f"[dim]{classification.hint}[/dim]")


@cli.group("config")
def config_group() -> None:
    """Inspect `.healwright.yml` configuration."""


@config_group.command("show")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
@click.option("--json-output", "as_json", is_flag=True, help="Output as JSON instead of YAML.")
@click.option("--no-mask", is_flag=True, help="Show sensitive values unmasked.")
def config_show(path: str, *, as_json: bool, no_mask: bool) -> None:
    """Display the resolved configuration with secrets masked."""
    config = _load_or_abort(path)

    config_dict = asdict(config)
    config_dict.pop("raw", None)
    config_dict["auth"]["preview_url"] = config.auth.preview_url
    if not no_mask:
        config_dict = _mask_sensitive_values(config_dict)

    if as_json:
        click.echo(json.dumps(config_dict, indent=2))
    else:
        console.print("[bold cyan]Configuration:[/bold cyan]")
        click.echo(yaml.safe_dump(config_dict, sort_keys=False, default_flow_style=False))


@config_group.command("validate")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
def config_validate(path: str) -> None:
    """Validate `.healwright.yml` and report every problem found."""
    config = _load_or_abort(path)
    errors = validate_config(config)

    if not errors:
        reporter.print_success("Configuration is valid!")
        return

    reporter.print_error(f"Found {len(errors)} configuration error(s):")
    for idx, error in enumerate(errors, start=1):
        console.print(f"  {idx}. [red]{error}[/red]")
    console.print(f"\n[dim]Fix these errors in {CONFIG_FILENAME} and validate again.[/dim]")
    raise click.Abort
