"""CI environment detection."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class CIContext:
    """Detected CI execution context."""

    is_ci: bool
    """Running in a CI environment."""

    provider: str | None = None
    """CI provider name, when recognised."""

    branch: str | None = None
    """Current branch name."""

    commit_sha: str | None = None
    """Current commit SHA."""


def detect_ci_context() -> CIContext:
    """Detect the CI provider from environment variables.

    Supports GitHub Actions, GitLab CI, CircleCI, and the generic ``CI`` flag.
    """
    if os.getenv("GITHUB_ACTIONS") == "true":
        return CIContext(
            is_ci=True,
            provider="github",
            branch=os.getenv("GITHUB_HEAD_REF") or os.getenv("GITHUB_REF_NAME"),
            commit_sha=os.getenv("GITHUB_SHA"),
        )

    if os.getenv("GITLAB_CI") == "true":
        return CIContext(
            is_ci=True,
            provider="gitlab",
            branch=os.getenv("CI_COMMIT_REF_NAME"),
            commit_sha=os.getenv("CI_COMMIT_SHA"),
        )

    if os.getenv("CIRCLECI") == "true":
        return CIContext(
            is_ci=True,
            provider="circleci",
            branch=os.getenv("CIRCLE_BRANCH"),
            commit_sha=os.getenv("CIRCLE_SHA1"),
        )

    if os.getenv("CI", "").lower() in {"true", "1"}:
        return CIContext(is_ci=True)

    return CIContext(is_ci=False)
