"""Sentry initialization and configuration."""

import os
from typing import Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from reporting import __version__
from reporting.config import Settings

logger = structlog.get_logger(__name__)


# Transaction names are route paths (transaction_style="url")
UNTRACED_PATHS = ("/health", "/metrics")


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """Drop 4xx client errors, only server errors are tracked."""
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        status_code = getattr(exc_value, "status_code", None)
        if status_code is not None and 400 <= status_code < 500:
            return None
    return event


def _traces_sampler(settings: Settings):
    def traces_sampler(sampling_context: dict) -> float:
        name = sampling_context.get("transaction_context", {}).get("name", "")
        if name in UNTRACED_PATHS:
            return 0.0
        parent = sampling_context.get("parent_sampled")
        if parent is not None:
            return float(parent)
        return settings.sentry_traces_sample_rate

    return traces_sampler


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry if DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    if not settings.sentry_dsn:
        return False

    # Terminal job failures are logged at error level and become events
    sentry_logging = LoggingIntegration(level=None, event_level="ERROR")

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=os.environ.get("GIT_SHA", f"reporting@{__version__}"),
        integrations=[
            sentry_logging,
            StarletteIntegration(transaction_style="url"),
            FastApiIntegration(transaction_style="url"),
        ],
        traces_sampler=_traces_sampler(settings),
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=_before_send,
    )
    sentry_sdk.set_tag("service", "reporting")

    logger.info(
        "Sentry initialized",
        environment=settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    return True
