"""Shared fixtures for the outreach tests.

Nothing here talks to Redis, Celery brokers, Apify or OpenAI: task
dispatch is patched and the providers are MagicMocks.
"""
from unittest.mock import MagicMock, patch

import pytest

from outreach.apify import SUCCEEDED, ExternalJob, JobStatus
from outreach.models import Profile, Session


@pytest.fixture
def configured(settings):
    """Both external credentials present."""
    settings.APIFY_API_TOKEN = "apify-test-token"
    settings.OPENAI_API_KEY = "sk-test"
    return settings


@pytest.fixture
def scraper_session(db):
    return Session.objects.create(
        name="Scraper One", username="scraper_one", session_token="scrape-cookie", role=Session.SCRAPER
    )


@pytest.fixture
def sender_session(db):
    return Session.objects.create(
        name="Sender One", username="sender_one", session_token="send-cookie", role=Session.SENDER
    )


@pytest.fixture
def profile(db):
    return Profile.objects.create(
        username="jane.doe",
        full_name="Jane Doe",
        bio="Trail runner and coffee nerd",
        followers_count=1200,
        following_count=300,
        status=Profile.DRAFT_READY,
        dm_draft="Hi Jane, loved your trail photos!",
    )


@pytest.fixture
def provider():
    """Apify provider double: launches succeed and runs finish SUCCEEDED with no items."""
    mock = MagicMock()
    mock.launch.return_value = ExternalJob(handle="run-1", dataset_id="ds-1", state="RUNNING")
    mock.wait_for_finish.return_value = JobStatus(state=SUCCEEDED, dataset_id="ds-1", raw_status="SUCCEEDED")
    mock.fetch_results.return_value = []
    return mock


@pytest.fixture
def dispatched():
    """Capture every Celery hand-off instead of sending it to a broker."""
    with patch("outreach.tasks.monitor_scrape_run_task.apply_async") as scrape_monitor, \
            patch("outreach.tasks.process_dm_queue_task.apply_async") as dm_send, \
            patch("outreach.tasks.process_dm_queue_task.delay") as dm_redispatch, \
            patch("outreach.tasks.resume_dm_monitor_task.delay") as dm_resume:
        yield MagicMock(
            scrape_monitor=scrape_monitor,
            dm_send=dm_send,
            dm_redispatch=dm_redispatch,
            dm_resume=dm_resume,
        )
