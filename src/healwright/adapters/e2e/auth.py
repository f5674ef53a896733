"""Authenticated-session handle for storefront E2E runs.

The store sits behind Shopify's password gate.  A one-time global setup
enters the password and saves the browser storage state; every case then
reuses that snapshot.  This module only loads and checks the snapshot, it
never performs the login itself.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

if TYPE_CHECKING:
    from healwright.config import AuthConfig

logger = logging.getLogger(__name__)

# Cookie Shopify sets once the storefront password has been accepted.
STOREFRONT_DIGEST_COOKIE = "storefront_digest"

PLAYWRIGHT_CONFIG_NAMES = ("playwright.config.ts", "playwright.config.js", "playwright.config.mjs")
STORAGE_STATE_ENV = "PLAYWRIGHT_STORAGE_STATE"

_RESOLVED_STORAGE_STATE = re.compile(
    r"""storageState\s*:\s*path\.(?:resolve|join)\(\s*__dirname\s*,\s*(['"`])(.+?)\1\s*\)"""
)
_LITERAL_STORAGE_STATE = re.compile(r"""storageState\s*:\s*(['"`])(.+?)\1""")


class AuthSessionError(Exception):
    """Raised when the storage-state snapshot is missing or unusable."""


@dataclass(frozen=True)
class AuthSession:
    """Opaque, read-only handle to an authenticated browser session."""

    storage_state: Path
    """Path of the Playwright storage-state JSON."""

    base_url: str
    """Storefront base URL the snapshot was taken against."""

    theme_id: str = ""
    """Preview theme id appended to gated URLs."""

    @property
    def domain(self) -> str:
        return urlparse(self.base_url).hostname or "localhost"

    def as_env(self) -> dict[str, str]:
        """Environment for the Playwright run.

        The storage-state path only takes effect when the Playwright config
        reads ``PLAYWRIGHT_STORAGE_STATE``; see ``storage_state_mismatch``.
        """
        env = {STORAGE_STATE_ENV: str(self.storage_state)}
        if self.base_url:
            env["TEST_URL"] = self.base_url
        if self.theme_id:
            env["TEST_THEME_ID"] = self.theme_id
        return env


def load_auth_session(
    config: AuthConfig,
    project_root: Path,
    base_url: str,
    *,
    playwright_dir: Path | None = None,
) -> AuthSession:
    """Load and sanity-check the storage-state snapshot named in *config*.

    When *playwright_dir* is given, the Playwright config there must load
    the same snapshot.

    Raises:
        AuthSessionError: If the file is missing, outside the project, not a
            storage-state document, or not the one the Playwright config loads.
    """
    state_path = (project_root / config.storage_state).resolve()
    try:
        state_path.relative_to(project_root.resolve())
    except ValueError:
        msg = f"Storage state must be inside project root: {config.storage_state}"
        raise AuthSessionError(msg) from None

    if not state_path.is_file():
        msg = f"Storage state not found: {state_path} (run the global setup first)"
        raise AuthSessionError(msg)

    if playwright_dir is not None:
        mismatch = storage_state_mismatch(state_path, playwright_dir)
        if mismatch:
            raise AuthSessionError(mismatch)

    try:
        data = json.loads(state_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        msg = f"Storage state is not valid JSON: {exc}"
        raise AuthSessionError(msg) from exc

    if not isinstance(data, dict) or "cookies" not in data:
        msg = f"Storage state has no 'cookies' section: {state_path}"
        raise AuthSessionError(msg)

    session = AuthSession(storage_state=state_path, base_url=base_url, theme_id=config.theme_id)
    if not has_storefront_access(data, session.domain):
        logger.warning(
            "Storage state %s has no %s cookie for %s; cases may land on the password page",
            state_path,
            STOREFRONT_DIGEST_COOKIE,
            session.domain,
        )
    return session


def has_storefront_access(state: dict[str, Any], domain: str) -> bool:
    """Return ``True`` if *state* carries the password-gate cookie for *domain*."""
    cookies = state.get("cookies", [])
    if not isinstance(cookies, list):
        return False
    for cookie in cookies:
        if not isinstance(cookie, dict):
            continue
        if cookie.get("name") != STOREFRONT_DIGEST_COOKIE:
            continue
        cookie_domain = str(cookie.get("domain", "")).lstrip(".")
        if not cookie_domain or domain.endswith(cookie_domain):
            return True
    return False


# ── Playwright config wiring ─────────────────────────────────────────


def find_playwright_config(playwright_dir: Path) -> Path | None:
    for name in PLAYWRIGHT_CONFIG_NAMES:
        candidate = playwright_dir / name
        if candidate.is_file():
            return candidate
    return None


def configured_storage_state(playwright_dir: Path) -> Path | None:
    """Storage-state path hard-coded in the Playwright config, if any.

    Returns ``None`` when there is no config, when it reads
    ``PLAYWRIGHT_STORAGE_STATE``, or when its path is not a plain literal.
    """
    config_path = find_playwright_config(playwright_dir)
    if config_path is None:
        return None
    text = config_path.read_text(encoding="utf-8")
    if STORAGE_STATE_ENV in text:
        return None
    match = _RESOLVED_STORAGE_STATE.search(text) or _LITERAL_STORAGE_STATE.search(text)
    if match is None:
        return None
    # Playwright resolves relative paths against the config directory.
    return (config_path.parent / match.group(2)).resolve()


def storage_state_mismatch(storage_state: Path, playwright_dir: Path) -> str | None:
    """Explain why the Playwright run would not use *storage_state*, or ``None``."""
    hard_coded = configured_storage_state(playwright_dir)
    if hard_coded is None or hard_coded == storage_state.resolve():
        return None
    return (
        f"auth.storage_state is {storage_state} but the Playwright config always loads "
        f"{hard_coded}; read process.env.{STORAGE_STATE_ENV} in the config or point "
        f"auth.storage_state at the hard-coded file"
    )
