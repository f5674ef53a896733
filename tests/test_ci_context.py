"""Tests for CI environment detection."""

from __future__ import annotations

import pytest

from healwright.utils.ci_context import detect_ci_context

_CI_VARS = (
    "GITHUB_ACTIONS",
    "GITHUB_HEAD_REF",
    "GITHUB_REF_NAME",
    "GITHUB_SHA",
    "GITLAB_CI",
    "CI_COMMIT_REF_NAME",
    "CI_COMMIT_SHA",
    "CIRCLECI",
    "CIRCLE_BRANCH",
    "CIRCLE_SHA1",
    "CI",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _CI_VARS:
        monkeypatch.delenv(name, raising=False)


def test_local_run_is_not_ci() -> None:
    ctx = detect_ci_context()

    assert ctx.is_ci is False
    assert ctx.provider is None


def test_github_actions(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    monkeypatch.setenv("GITHUB_REF_NAME", "main")
    monkeypatch.setenv("GITHUB_SHA", "abc123")

    ctx = detect_ci_context()

    assert ctx.is_ci
    assert ctx.provider == "github"
    assert ctx.branch == "main"
    assert ctx.commit_sha == "abc123"


def test_github_pull_request_prefers_head_ref(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    monkeypatch.setenv("GITHUB_HEAD_REF", "fix/cart")
    monkeypatch.setenv("GITHUB_REF_NAME", "42/merge")

    assert detect_ci_context().branch == "fix/cart"


def test_gitlab(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITLAB_CI", "true")
    monkeypatch.setenv("CI_COMMIT_REF_NAME", "develop")

    ctx = detect_ci_context()

    assert ctx.provider == "gitlab"
    assert ctx.branch == "develop"


def test_circleci(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CIRCLECI", "true")
    monkeypatch.setenv("CIRCLE_SHA1", "def456")

    ctx = detect_ci_context()

    assert ctx.provider == "circleci"
    assert ctx.commit_sha == "def456"


@pytest.mark.parametrize("value", ["true", "1", "TRUE"])
def test_generic_ci_flag(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("CI", value)

    ctx = detect_ci_context()

    assert ctx.is_ci
    assert ctx.provider is None


def test_ci_flag_false(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CI", "false")

    assert detect_ci_context().is_ci is False
