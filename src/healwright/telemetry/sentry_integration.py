"""Sentry SDK integration for healwright.

Sentry is strictly opt-in: nothing is sent unless ``sentry.enabled: true``
is set in ``.healwright.yml`` or ``HEALWRIGHT_SENTRY_ENABLED=true``.
Events are scrubbed of store passwords, storage-state cookies, and home
directory paths before they leave the process.
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import nullcontext
from typing import TYPE_CHECKING, Any

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from healwright import __version__
from healwright.utils.ci_context import detect_ci_context

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from healwright.config import SentryConfig

logger = logging.getLogger(__name__)

_init_lock = threading.Lock()
_initialized: dict[str, bool] = {"value": False}

_SENSITIVE_PATTERN = re.compile(
    r"(api[_-]?key|password|secret|token|dsn|authorization|cookie|storefront_digest)"
    r"\s*[:=]\s*\S+",
    re.IGNORECASE,
)

_PATH_HOME_RE = re.compile(r"/(?:home|Users)/[^/]+")

_SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "password",
        "store_password",
        "secret",
        "token",
        "dsn",
        "authorization",
        "cookie",
        "cookies",
        "storage_state",
        "storefront_digest",
    }
)


def init_sentry(config: SentryConfig) -> None:
    """Initialize the Sentry SDK if enabled and configured.

    Idempotent and thread-safe; later calls are no-ops once initialized.
    """
    with _init_lock:
        if _initialized["value"]:
            return
        if not config.enabled:
            logger.debug("Sentry disabled (sentry.enabled is false)")
            return
        if not config.dsn:
            logger.warning("Sentry enabled but no DSN configured")
            return

        ci_ctx = detect_ci_context()
        environment = config.environment or ("ci" if ci_ctx.is_ci else "local")

        sentry_sdk.init(
            dsn=config.dsn,
            release=f"healwright@{__version__}",
            environment=environment,
            traces_sample_rate=config.traces_sample_rate,
            send_default_pii=False,
            server_name="",
            before_send=_before_send,
            before_send_transaction=_before_send,
            in_app_include=["healwright"],
            in_app_exclude=["litellm", "sentry_sdk"],
            integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        )
        _initialized["value"] = True
        logger.info(
            "Sentry initialized (env=%s, tracing=%.2f)", environment, config.traces_sample_rate
        )


def is_sentry_enabled() -> bool:
    """Return whether Sentry has been successfully initialized."""
    return _initialized["value"]


def start_span(op: str, name: str) -> AbstractContextManager[Any]:
    """Start a Sentry span, or a null context when Sentry is disabled."""
    if not _initialized["value"]:
        return nullcontext()
    return sentry_sdk.start_span(op=op, name=name)


# ── Privacy scrubbing ─────────────────────────────────────────────


def _scrub_path(path: str) -> str:
    return _PATH_HOME_RE.sub("/~", path)


def _scrub_string(value: str) -> str:
    return _SENSITIVE_PATTERN.sub("[REDACTED]", value)


def _scrub_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Scrub sensitive keys and values from a dict."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in _SENSITIVE_KEYS:
            result[key] = "[REDACTED]"
        elif isinstance(value, str):
            result[key] = _scrub_string(value)
        elif isinstance(value, dict):
            result[key] = _scrub_dict(value)
        else:
            result[key] = value
    return result


def _scrub_event(event: dict[str, Any]) -> dict[str, Any]:
    """Deep-scrub an event dict in place and return it."""
    exception = event.get("exception")
    if isinstance(exception, dict):
        for value in exception.get("values", []):
            if isinstance(value.get("value"), str):
                value["value"] = _scrub_string(value["value"])
            stacktrace = value.get("stacktrace")
            if not isinstance(stacktrace, dict):
                continue
            for frame in stacktrace.get("frames", []):
                # Locals may hold the store password or cookie values.
                frame.pop("vars", None)
                for key in ("filename", "abs_path"):
                    if isinstance(frame.get(key), str):
                        frame[key] = _scrub_path(frame[key])

    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict):
        for crumb in breadcrumbs.get("values", []):
            if isinstance(crumb.get("message"), str):
                crumb["message"] = _scrub_string(crumb["message"])
            if isinstance(crumb.get("data"), dict):
                crumb["data"] = _scrub_dict(crumb["data"])

    for section in ("tags", "extra", "contexts"):
        if isinstance(event.get(section), dict):
            event[section] = _scrub_dict(event[section])

    event.pop("server_name", None)
    return event


def _before_send(event: dict[str, Any], _hint: dict[str, Any]) -> dict[str, Any] | None:
    return _scrub_event(event)
