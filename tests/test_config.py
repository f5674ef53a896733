"""Tests for .healwright.yml parsing and validation."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
import yaml

from healwright.config import (
    DEFAULT_PROJECTS,
    AuthConfig,
    HealwrightConfig,
    LLMConfig,
    ProjectConfig,
    SentryConfig,
    _resolve_dict,
    _resolve_env_vars,
    _validate_llm_config,
    _validate_sentry_config,
    load_config,
    validate_config,
)
from healwright.models.healing import DEFAULT_MAX_ATTEMPTS

if TYPE_CHECKING:
    from collections.abc import Iterator

_CI_VARS = ("CI", "GITHUB_ACTIONS", "GITLAB_CI", "CIRCLECI")
_CONFIG_VARS = (
    "TEST_URL",
    "STORE_PASSWORD",
    "TEST_THEME_ID",
    "PREVIEW_URL",
    "HEALWRIGHT_MAX_ATTEMPTS",
    "HEALWRIGHT_LLM_PROVIDER",
    "HEALWRIGHT_LLM_MODEL",
    "HEALWRIGHT_LLM_API_KEY",
    "HEALWRIGHT_SENTRY_ENABLED",
    "HEALWRIGHT_SENTRY_DSN",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for var in _CI_VARS + _CONFIG_VARS:
        monkeypatch.delenv(var, raising=False)
    yield


def _write_config(root: Path, data: dict[str, Any]) -> None:
    (root / ".healwright.yml").write_text(yaml.dump(data), encoding="utf-8")


def _valid_config(tmp_path: Path) -> HealwrightConfig:
    config = load_config(tmp_path)
    config.auth.base_url = "https://shop.test"
    return config


# ── Environment variable resolution ──────────────────────────────────


class TestResolveEnvVars:
    def test_resolves_existing_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_VAR", "hello")
        assert _resolve_env_vars("${MY_VAR}") == "hello"

    def test_missing_var_returns_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MISSING_VAR", raising=False)
        assert _resolve_env_vars("${MISSING_VAR}") == ""

    def test_nested_and_list_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHOP", "shop.test")
        data = {"auth": {"base_url": "https://${SHOP}"}, "projects": ["${SHOP}", 3]}

        assert _resolve_dict(data) == {
            "auth": {"base_url": "https://shop.test"},
            "projects": ["shop.test", 3],
        }


# ── Loading ──────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)

        assert config.project.root == str(tmp_path.resolve())
        assert config.project.test_dir == "e2e/tests"
        assert config.runner.projects == DEFAULT_PROJECTS
        assert config.runner.retries == 0
        assert config.healing.max_attempts == DEFAULT_MAX_ATTEMPTS
        assert config.healing.use_llm is False
        assert config.report.format == "terminal"
        assert config.sentry.enabled is False

    def test_reads_yaml_sections(self, tmp_path: Path) -> None:
        _write_config(
            tmp_path,
            {
                "runner": {"projects": ["chromium", "mobile-safari"], "retries": 1, "workers": 4},
                "healing": {"max_attempts": 3, "session_timeout": 900},
                "auth": {"base_url": "https://shop.test", "theme_id": "12345"},
                "report": {"format": "json", "json_output": "heal.json"},
            },
        )

        config = load_config(tmp_path)

        assert config.runner.projects == ["chromium", "mobile-safari"]
        assert config.runner.retries == 1
        assert config.runner.workers == 4
        assert config.healing.max_attempts == 3
        assert config.healing.session_timeout == 900.0
        assert config.auth.theme_id == "12345"
        assert config.report.json_output == "heal.json"

    def test_env_fallbacks(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEST_URL", "https://env.test")
        monkeypatch.setenv("STORE_PASSWORD", "secret")
        monkeypatch.setenv("TEST_THEME_ID", "777")
        monkeypatch.setenv("HEALWRIGHT_MAX_ATTEMPTS", "2")

        config = load_config(tmp_path)

        assert config.auth.base_url == "https://env.test"
        assert config.auth.store_password == "secret"
        assert config.auth.theme_id == "777"
        assert config.healing.max_attempts == 2

    def test_yaml_wins_over_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEST_URL", "https://env.test")
        _write_config(tmp_path, {"auth": {"base_url": "https://yaml.test"}})

        assert load_config(tmp_path).auth.base_url == "https://yaml.test"

    def test_ci_defaults_runner_retries(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CI", "true")

        assert load_config(tmp_path).runner.retries == 2

    def test_non_mapping_yaml_is_ignored(self, tmp_path: Path) -> None:
        (tmp_path / ".healwright.yml").write_text("- just\n- a list\n", encoding="utf-8")

        assert load_config(tmp_path).raw == {}

    def test_sentry_enabled_from_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HEALWRIGHT_SENTRY_ENABLED", "true")
        monkeypatch.setenv("HEALWRIGHT_SENTRY_DSN", "https://key@sentry.example/1")

        config = load_config(tmp_path)

        assert config.sentry.enabled is True
        assert config.sentry.dsn == "https://key@sentry.example/1"


class TestAuthConfig:
    def test_preview_url(self) -> None:
        auth = AuthConfig(base_url="https://shop.test", theme_id="42")

        assert auth.preview_url == "https://shop.test?preview_theme_id=42"

    def test_preview_url_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PREVIEW_URL", "https://preview.test")

        assert AuthConfig(base_url="https://shop.test").preview_url == "https://preview.test"


# ── Validation ───────────────────────────────────────────────────────


class TestValidateConfig:
    def test_valid(self, tmp_path: Path) -> None:
        assert validate_config(_valid_config(tmp_path)) == []

    def test_missing_base_url(self, tmp_path: Path) -> None:
        errors = validate_config(load_config(tmp_path))

        assert any("auth.base_url" in e for e in errors)

    def test_bad_values(self, tmp_path: Path) -> None:
        config = _valid_config(tmp_path)
        config.healing.max_attempts = 0
        config.runner.projects = ["chromium", "chromium"]
        config.runner.retries = -1
        config.report.format = "html"

        errors = validate_config(config)

        assert any("max_attempts" in e for e in errors)
        assert any("duplicates" in e for e in errors)
        assert any("retries" in e for e in errors)
        assert any("report.format" in e for e in errors)

    def test_empty_projects(self, tmp_path: Path) -> None:
        config = _valid_config(tmp_path)
        config.runner.projects = []

        assert any("at least one" in e for e in validate_config(config))

    def test_llm_required_when_enabled(self, tmp_path: Path) -> None:
        config = _valid_config(tmp_path)
        config.healing.use_llm = True

        assert any("llm.model" in e for e in validate_config(config))

    def test_project_root_required(self) -> None:
        config = HealwrightConfig(
            project=ProjectConfig(root=""), auth=AuthConfig(base_url="https://shop.test")
        )

        assert "project.root is required" in validate_config(config)

    def test_storage_state_must_match_playwright_config(self, tmp_path: Path) -> None:
        e2e = tmp_path / "e2e"
        e2e.mkdir()
        (e2e / "playwright.config.ts").write_text(
            "export default defineConfig({ use: {\n"
            "  storageState: path.resolve(__dirname, 'storageState.json'),\n"
            "} });\n",
            encoding="utf-8",
        )
        config = _valid_config(tmp_path)

        assert validate_config(config) == []

        config.auth.storage_state = "auth/state.json"

        assert any("PLAYWRIGHT_STORAGE_STATE" in e for e in validate_config(config))


class TestValidateLLMConfig:
    def test_unknown_provider(self) -> None:
        errors = _validate_llm_config(LLMConfig(provider="cohere"), required=False)

        assert any("not recognized" in e for e in errors)

    def test_ollama_needs_no_key(self) -> None:
        llm = LLMConfig(provider="ollama", model="llama3")

        assert _validate_llm_config(llm, required=True) == []

    def test_temperature_range(self) -> None:
        errors = _validate_llm_config(LLMConfig(temperature=3.0), required=False)

        assert any("temperature" in e for e in errors)


class TestValidateSentryConfig:
    def test_enabled_without_dsn(self) -> None:
        errors = _validate_sentry_config(SentryConfig(enabled=True))

        assert errors == ["sentry.dsn is required when sentry.enabled is true"]

    def test_sample_rate_range(self) -> None:
        errors = _validate_sentry_config(SentryConfig(traces_sample_rate=1.5))

        assert any("traces_sample_rate" in e for e in errors)
