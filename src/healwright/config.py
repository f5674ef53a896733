"""Configuration parsing from ``.healwright.yml``."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from healwright.adapters.e2e.auth import storage_state_mismatch
from healwright.models.healing import DEFAULT_MAX_ATTEMPTS
from healwright.utils.ci_context import detect_ci_context

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".healwright.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

DEFAULT_PROJECTS = ["chromium", "firefox", "safari", "mobile-chrome", "mobile-safari"]

_CI_RUNNER_RETRIES = 2
_VALID_REPORT_FORMATS = ("terminal", "json")
_VALID_LLM_PROVIDERS = ("openai", "anthropic", "ollama")


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _resolve_env_vars(item) if isinstance(item, str) else item for item in value
            ]
        else:
            result[key] = value
    return result


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


@dataclass
class ProjectConfig:
    """Project-level configuration."""

    root: str
    """Project root directory."""

    playwright_dir: str = "e2e"
    """Directory holding ``playwright.config.ts`` (relative to root)."""

    test_dir: str = "e2e/tests"
    """Directory holding ``*.spec.ts`` files (relative to root)."""


@dataclass
class RunnerConfig:
    """Playwright runner configuration."""

    projects: list[str] = field(default_factory=lambda: list(DEFAULT_PROJECTS))
    """Browser projects every case runs under."""

    timeout: float = 600.0
    """Maximum seconds for one full runner invocation."""

    test_timeout_ms: int = 30000
    """Per-test timeout passed to Playwright."""

    retries: int = 0
    """Runner-level retries (2 in CI, 0 locally unless set)."""

    workers: int = 0
    """Parallel workers (0 = Playwright default)."""


@dataclass
class HealingConfig:
    """Healing loop configuration."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    """Attempt budget per session."""

    session_timeout: float = 0.0
    """Wall-clock budget in seconds (0 = none)."""

    use_llm: bool = False
    """Fall back to the LLM when no rule-based strategy applies."""


@dataclass
class AuthConfig:
    """Storefront access configuration."""

    base_url: str = ""
    """Storefront URL (``TEST_URL``)."""

    storage_state: str = "e2e/storageState.json"
    """Storage-state snapshot written by the global setup (relative to root)."""

    store_password: str = ""
    """Storefront password (``STORE_PASSWORD``), used by the global setup only."""

    theme_id: str = ""
    """Preview theme id (``TEST_THEME_ID``)."""

    @property
    def preview_url(self) -> str:
        """URL that previews the theme under test."""
        override = os.environ.get("PREVIEW_URL", "")
        if override:
            return override
        return f"{self.base_url}?preview_theme_id={self.theme_id}"


@dataclass
class LLMConfig:
    """LLM configuration for the fallback fix strategy."""

    provider: str = "openai"
    """LLM provider name (openai, anthropic, ollama)."""

    model: str = ""
    """Model identifier."""

    api_key: str = ""
    """API key for the provider (supports ${ENV_VAR} expansion)."""

    base_url: str = ""
    """Custom base URL (useful for Ollama or proxied endpoints)."""

    temperature: float = 0.2
    """Default sampling temperature."""

    max_tokens: int = 4096
    """Default maximum tokens to generate."""

    requests_per_minute: int = 60
    """Rate limit: maximum requests per minute."""

    max_retries: int = 3
    """Maximum number of retry attempts on transient failures."""

    @property
    def is_configured(self) -> bool:
        """Return True when enough info is present for generation."""
        if self.provider == "ollama":
            return bool(self.model)
        return bool(self.model and self.api_key)


@dataclass
class ReportConfig:
    """Reporting and output configuration."""

    format: str = "terminal"
    """Default output format: terminal or json."""

    json_output: str = ""
    """Path of the JSON session report (empty = do not write)."""


@dataclass
class SentryConfig:
    """Sentry error monitoring configuration."""

    enabled: bool = False
    """Opt-in flag. No Sentry data sent unless True."""

    dsn: str = ""
    """Sentry DSN."""

    traces_sample_rate: float = 0.0
    """Fraction of transactions sent for tracing (0.0-1.0)."""

    environment: str = ""
    """Override environment tag (auto-detected if empty)."""


@dataclass
class HealwrightConfig:
    """Complete configuration from ``.healwright.yml``."""

    project: ProjectConfig
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    healing: HealingConfig = field(default_factory=HealingConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    sentry: SentryConfig = field(default_factory=SentryConfig)

    raw: dict[str, Any] = field(default_factory=dict)
    """Raw parsed YAML for extension/debugging."""


def _parse_runner_config(raw: dict[str, Any]) -> RunnerConfig:
    runner_raw = _section(raw, "runner")

    projects_raw = runner_raw.get("projects", DEFAULT_PROJECTS)
    projects = (
        [str(p) for p in projects_raw] if isinstance(projects_raw, list) else list(DEFAULT_PROJECTS)
    )

    default_retries = _CI_RUNNER_RETRIES if detect_ci_context().is_ci else 0

    return RunnerConfig(
        projects=projects,
        timeout=float(runner_raw.get("timeout", 600.0)),
        test_timeout_ms=int(runner_raw.get("test_timeout_ms", 30000)),
        retries=int(runner_raw.get("retries", default_retries)),
        workers=int(runner_raw.get("workers", 0)),
    )


def _parse_healing_config(raw: dict[str, Any]) -> HealingConfig:
    healing_raw = _section(raw, "healing")

    return HealingConfig(
        max_attempts=int(
            healing_raw.get(
                "max_attempts",
                os.environ.get("HEALWRIGHT_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            )
        ),
        session_timeout=float(healing_raw.get("session_timeout", 0.0)),
        use_llm=bool(healing_raw.get("use_llm", False)),
    )


def _parse_auth_config(raw: dict[str, Any]) -> AuthConfig:
    auth_raw = _section(raw, "auth")

    return AuthConfig(
        base_url=str(auth_raw.get("base_url", os.environ.get("TEST_URL", ""))),
        storage_state=str(auth_raw.get("storage_state", "e2e/storageState.json")),
        store_password=str(
            auth_raw.get("store_password", os.environ.get("STORE_PASSWORD", ""))
        ),
        theme_id=str(auth_raw.get("theme_id", os.environ.get("TEST_THEME_ID", ""))),
    )


def _parse_llm_config(raw: dict[str, Any]) -> LLMConfig:
    llm_raw = _section(raw, "llm")

    return LLMConfig(
        provider=str(
            llm_raw.get("provider", os.environ.get("HEALWRIGHT_LLM_PROVIDER", "openai"))
        ),
        model=str(llm_raw.get("model", os.environ.get("HEALWRIGHT_LLM_MODEL", ""))),
        api_key=str(llm_raw.get("api_key", os.environ.get("HEALWRIGHT_LLM_API_KEY", ""))),
        base_url=str(llm_raw.get("base_url", os.environ.get("HEALWRIGHT_LLM_BASE_URL", ""))),
        temperature=float(llm_raw.get("temperature", 0.2)),
        max_tokens=int(llm_raw.get("max_tokens", 4096)),
        requests_per_minute=int(llm_raw.get("requests_per_minute", 60)),
        max_retries=int(llm_raw.get("max_retries", 3)),
    )


def _parse_sentry_config(raw: dict[str, Any]) -> SentryConfig:
    sentry_raw = _section(raw, "sentry")

    enabled_raw = sentry_raw.get("enabled", os.environ.get("HEALWRIGHT_SENTRY_ENABLED", ""))
    enabled = enabled_raw in {True, "true", "1", "yes"}

    return SentryConfig(
        enabled=enabled,
        dsn=str(sentry_raw.get("dsn", os.environ.get("HEALWRIGHT_SENTRY_DSN", ""))),
        traces_sample_rate=float(
            sentry_raw.get(
                "traces_sample_rate",
                os.environ.get("HEALWRIGHT_SENTRY_TRACES_SAMPLE_RATE", "0.0"),
            )
        ),
        environment=str(sentry_raw.get("environment", "")),
    )


def load_config(root: str | Path) -> HealwrightConfig:
    """Load and parse the complete ``.healwright.yml`` configuration.

    Falls back to sensible defaults and environment variables when
    the YAML file is missing or incomplete.
    """
    root_path = Path(root).resolve()
    config_file = root_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_file.is_file():
        parsed = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)

    project_raw = _section(raw, "project")
    project = ProjectConfig(
        root=str(project_raw.get("root", root_path)),
        playwright_dir=str(project_raw.get("playwright_dir", "e2e")),
        test_dir=str(project_raw.get("test_dir", "e2e/tests")),
    )

    report_raw = _section(raw, "report")
    report = ReportConfig(
        format=str(report_raw.get("format", "terminal")),
        json_output=str(report_raw.get("json_output", "")),
    )

    return HealwrightConfig(
        project=project,
        runner=_parse_runner_config(raw),
        healing=_parse_healing_config(raw),
        auth=_parse_auth_config(raw),
        llm=_parse_llm_config(raw),
        report=report,
        sentry=_parse_sentry_config(raw),
        raw=raw,
    )


def _validate_runner_config(runner: RunnerConfig) -> list[str]:
    errors: list[str] = []

    if not runner.projects:
        errors.append("runner.projects must name at least one browser project")

    if len(set(runner.projects)) != len(runner.projects):
        errors.append(f"runner.projects contains duplicates (got: {runner.projects})")

    if runner.timeout <= 0:
        errors.append(f"runner.timeout must be positive (got: {runner.timeout})")

    if runner.test_timeout_ms < 1:
        errors.append(f"runner.test_timeout_ms must be positive (got: {runner.test_timeout_ms})")

    if runner.retries < 0:
        errors.append(f"runner.retries must be non-negative (got: {runner.retries})")

    if runner.workers < 0:
        errors.append(f"runner.workers must be non-negative (got: {runner.workers})")

    return errors


def _validate_healing_config(healing: HealingConfig) -> list[str]:
    errors: list[str] = []

    if healing.max_attempts < 1:
        errors.append(f"healing.max_attempts must be at least 1 (got: {healing.max_attempts})")

    if healing.session_timeout < 0:
        errors.append(
            f"healing.session_timeout must be non-negative (got: {healing.session_timeout})"
        )

    return errors


def _validate_llm_config(llm: LLMConfig, *, required: bool) -> list[str]:
    errors: list[str] = []

    if llm.provider not in _VALID_LLM_PROVIDERS:
        errors.append(
            f"llm.provider not recognized: {llm.provider} "
            f"(should be {', '.join(_VALID_LLM_PROVIDERS)})"
        )

    if required and not llm.is_configured:
        errors.append("llm.model and llm.api_key are required when healing.use_llm is true")

    max_temperature = 2.0
    if llm.temperature < 0 or llm.temperature > max_temperature:
        errors.append(
            f"llm.temperature should be between 0 and {max_temperature} "
            f"(got: {llm.temperature})"
        )

    if llm.max_tokens < 1:
        errors.append(f"llm.max_tokens must be positive (got: {llm.max_tokens})")

    return errors


def _validate_storage_state_wiring(config: HealwrightConfig) -> list[str]:
    """The Playwright config must load the snapshot ``auth.storage_state`` names."""
    if not config.project.root:
        return []
    root = Path(config.project.root)
    mismatch = storage_state_mismatch(
        root / config.auth.storage_state, root / config.project.playwright_dir
    )
    return [mismatch] if mismatch else []


def _validate_sentry_config(sentry: SentryConfig) -> list[str]:
    errors: list[str] = []

    if sentry.enabled and not sentry.dsn:
        errors.append("sentry.dsn is required when sentry.enabled is true")

    if not 0.0 <= sentry.traces_sample_rate <= 1.0:
        errors.append(
            f"sentry.traces_sample_rate must be between 0.0 and 1.0 "
            f"(got: {sentry.traces_sample_rate})"
        )

    return errors


def validate_config(config: HealwrightConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []

    if not config.project.root:
        errors.append("project.root is required")

    if not config.auth.base_url:
        errors.append("auth.base_url is required (or set TEST_URL)")

    if config.report.format not in _VALID_REPORT_FORMATS:
        errors.append(
            f"report.format must be one of: {', '.join(_VALID_REPORT_FORMATS)} "
            f"(got: {config.report.format})"
        )

    errors.extend(_validate_runner_config(config.runner))
    errors.extend(_validate_healing_config(config.healing))
    errors.extend(_validate_llm_config(config.llm, required=config.healing.use_llm))
    errors.extend(_validate_sentry_config(config.sentry))
    errors.extend(_validate_storage_state_wiring(config))

    return errors
