"""End-to-end runners for Playwright storefront suites."""

from healwright.adapters.e2e.auth import AuthSession, AuthSessionError, load_auth_session
from healwright.adapters.e2e.inprocess import InProcessRunner
from healwright.adapters.e2e.playwright_adapter import PlaywrightRunner, discover_cases

__all__ = [
    "AuthSession",
    "AuthSessionError",
    "InProcessRunner",
    "PlaywrightRunner",
    "discover_cases",
    "load_auth_session",
]
