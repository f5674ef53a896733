"""Tests for the healwright CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from click.testing import CliRunner

from healwright import __version__
from healwright.adapters.base import RunnerError
from healwright.cli import _mask_sensitive_values, cli
from tests.conftest import make_run_result

if TYPE_CHECKING:
    from pathlib import Path

SPEC = """\
import { test, expect } from '@playwright/test';

test('opens menu', async ({ page }) => {
  await page.getByRole('button', { name: 'Menu' }).click();
});
"""

CASE_ID = "header.spec.ts::opens menu"

_RUN = "healwright.cli.PlaywrightRunner.run"

_ENV_VARS = (
    "CI",
    "GITHUB_ACTIONS",
    "GITLAB_CI",
    "CIRCLECI",
    "TEST_URL",
    "STORE_PASSWORD",
    "HEALWRIGHT_MAX_ATTEMPTS",
    "HEALWRIGHT_SENTRY_ENABLED",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def _write_config(root: Path, data: dict[str, Any]) -> None:
    (root / ".healwright.yml").write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A storefront project with one spec, a storage state, and a config."""
    tests = tmp_path / "e2e" / "tests"
    tests.mkdir(parents=True)
    (tests / "header.spec.ts").write_text(SPEC, encoding="utf-8")
    state = {
        "cookies": [{"name": "storefront_digest", "value": "x", "domain": "shop.test"}],
        "origins": [],
    }
    (tmp_path / "e2e" / "storageState.json").write_text(json.dumps(state), encoding="utf-8")
    _write_config(
        tmp_path,
        {
            "auth": {"base_url": "https://shop.test", "store_password": "hunter2hunter2"},
            "runner": {"projects": ["chromium"]},
        },
    )
    return tmp_path


# ── Group ────────────────────────────────────────────────────────────


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    for command in ("heal", "run", "classify", "config"):
        assert command in result.output


# ── classify ─────────────────────────────────────────────────────────


def test_classify_json() -> None:
    message = "Error: locator.click: Timeout 30000ms exceeded.\n  - waiting for getByText('Cart')"

    result = CliRunner().invoke(cli, ["classify", message, "--json-output"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["category"] == "selector_mismatch"
    assert payload["selector"] == "getByText('Cart')"


def test_classify_ci_mode_outputs_json() -> None:
    result = CliRunner().invoke(cli, ["--ci", "classify", "Error: Product already in cart"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["category"] == "state_isolation"


def test_classify_terminal() -> None:
    result = CliRunner().invoke(cli, ["classify", "TypeError: x is undefined"])

    assert result.exit_code == 0
    assert "unknown" in result.output


# ── config ───────────────────────────────────────────────────────────


def test_config_validate_ok(project: Path) -> None:
    result = CliRunner().invoke(cli, ["config", "validate", "--path", str(project)])

    assert result.exit_code == 0, result.output
    assert "valid" in result.output


def test_config_validate_errors(tmp_path: Path) -> None:
    _write_config(tmp_path, {"healing": {"max_attempts": 0}})

    result = CliRunner().invoke(cli, ["config", "validate", "--path", str(tmp_path)])

    assert result.exit_code != 0
    assert "max_attempts" in result.output


def test_config_show_masks_secrets(project: Path) -> None:
    result = CliRunner().invoke(cli, ["config", "show", "--path", str(project), "--json-output"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["auth"]["store_password"] == "hunt...ter2"
    assert data["auth"]["preview_url"].startswith("https://shop.test")
    assert "raw" not in data


def test_config_show_no_mask(project: Path) -> None:
    args = ["config", "show", "--path", str(project), "--json-output", "--no-mask"]

    result = CliRunner().invoke(cli, args)

    assert json.loads(result.output)["auth"]["store_password"] == "hunter2hunter2"


def test_mask_sensitive_values_nested() -> None:
    masked = _mask_sensitive_values({"llm": {"api_key": "short"}, "auth": {"token": ""}})

    assert masked == {"llm": {"api_key": "***"}, "auth": {"token": ""}}


# ── heal ─────────────────────────────────────────────────────────────


def test_heal_all_passed_ci(project: Path) -> None:
    run = AsyncMock(return_value=make_run_result({CASE_ID: None}))

    with patch(_RUN, run):
        result = CliRunner().invoke(cli, ["--ci", "heal", "--path", str(project)])

    assert result.exit_code == 0, result.output
    assert '"outcome": "all_passed"' in result.output
    run.assert_awaited_once()
    cases, context = run.await_args.args
    assert [c.id for c in cases] == [CASE_ID]
    assert context.environments == ("chromium",)


def test_heal_budget_exhausted_exits_non_zero(project: Path) -> None:
    failing = make_run_result({CASE_ID: "TypeError: x is undefined"})
    report = project / "heal.json"
    args = ["--ci", "heal", "--path", str(project), "--max-attempts", "2"]

    with patch(_RUN, AsyncMock(return_value=failing)):
        result = CliRunner().invoke(cli, [*args, "--json-output", str(report)])

    assert result.exit_code == 1
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["outcome"] == "budget_exhausted"
    assert data["attempts_run"] == 2
    assert data["failing_cases"][0]["test_case_id"] == CASE_ID


def test_heal_project_override(project: Path) -> None:
    run = AsyncMock(return_value=make_run_result({CASE_ID: None}))
    args = ["--ci", "heal", "--path", str(project), "--project", "mobile-safari"]

    with patch(_RUN, run):
        CliRunner().invoke(cli, args)

    assert run.await_args.args[1].environments == ("mobile-safari",)


def test_heal_rejects_zero_budget(project: Path) -> None:
    result = CliRunner().invoke(cli, ["heal", "--path", str(project), "--max-attempts", "0"])

    assert result.exit_code != 0


def test_heal_aborts_without_test_dir(tmp_path: Path) -> None:
    _write_config(tmp_path, {"auth": {"base_url": "https://shop.test"}})

    result = CliRunner().invoke(cli, ["heal", "--path", str(tmp_path)])

    assert result.exit_code != 0
    assert "Test directory not found" in result.output


def test_heal_aborts_without_storage_state(project: Path) -> None:
    (project / "e2e" / "storageState.json").unlink()

    result = CliRunner().invoke(cli, ["heal", "--path", str(project)])

    assert result.exit_code != 0
    assert "Storage state not found" in result.output


def test_heal_aborts_on_runner_error(project: Path) -> None:
    with patch(_RUN, AsyncMock(side_effect=RunnerError("npx: command not found"))):
        result = CliRunner().invoke(cli, ["--ci", "heal", "--path", str(project)])

    assert result.exit_code != 0
    assert "npx: command not found" in result.output


def test_heal_llm_requires_configuration(project: Path) -> None:
    result = CliRunner().invoke(cli, ["heal", "--path", str(project), "--llm"])

    assert result.exit_code != 0
    assert "LLM fallback requested" in result.output


# ── run ──────────────────────────────────────────────────────────────


def test_run_json(project: Path) -> None:
    result_obj = make_run_result({CASE_ID: "Error: boom"})

    with patch(_RUN, AsyncMock(return_value=result_obj)):
        result = CliRunner().invoke(cli, ["run", "--path", str(project), "--json-output"])

    assert result.exit_code == 1
    data = json.loads(result.output)
    assert data["summary"]["failed"] == 1
    assert data["cases"][0]["test_case_id"] == CASE_ID
