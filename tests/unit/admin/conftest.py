"""Fixtures for admin API tests: an app wired to a mocked ReportingContext."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from reporting.config import Settings
from reporting.main import create_app


@pytest.fixture
def settings():
    return Settings(_env_file=None, admin_token="test-token")


@pytest.fixture
def ctx(settings):
    ctx = MagicMock()
    ctx.settings = settings
    for name in (
        "get",
        "list_tasks",
        "list_history",
        "create",
        "edit",
        "delete",
        "enable",
        "disable",
        "unsubscribe",
    ):
        setattr(ctx.tasks, name, AsyncMock())

    ctx.queues.names = ("generation", "cron", "mail")
    for name in (
        "is_paused",
        "queue_info",
        "pause",
        "resume",
        "list_jobs",
        "get_job",
        "retry_job",
        "add_generation",
    ):
        setattr(ctx.queues, name, AsyncMock())
    ctx.queues.is_paused.return_value = False
    return ctx


@pytest.fixture
def client(settings, ctx):
    app = create_app(settings, with_lifespan=False)
    app.state.reporting = ctx
    return TestClient(app)
