"""Thin client for the Apify actor platform.

Only the three calls the console needs are wrapped: start an actor run,
read a run's status, and read the items of a run's default dataset. Runs
are started without waiting; reconciliation lives in ``outreach.monitor``.
"""
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests
from django.conf import settings

from .exceptions import ConfigurationError, JobTimeout, LaunchError, MonitorError
from .utils import format_duration

logger = logging.getLogger(__name__)

# Apify caps server-side waiting at 60 seconds per request.
MAX_SERVER_WAIT = 60

RUNNING = "RUNNING"
SUCCEEDED = "SUCCEEDED"
FAILED = "FAILED"

_STATE_MAP = {
    "READY": RUNNING,
    "RUNNING": RUNNING,
    "SUCCEEDED": SUCCEEDED,
    "FAILED": FAILED,
    "TIMING-OUT": FAILED,
    "TIMED-OUT": FAILED,
    "ABORTING": FAILED,
    "ABORTED": FAILED,
}


class JobKind(enum.Enum):
    SCRAPE = "scrape"
    SEND = "send"


@dataclass
class ExternalJob:
    handle: str
    dataset_id: Optional[str]
    state: str


@dataclass
class JobStatus:
    state: str
    message: Optional[str] = None
    dataset_id: Optional[str] = None
    raw_status: Optional[str] = None

    @property
    def is_terminal(self):
        return self.state in (SUCCEEDED, FAILED)


def build_scrape_input(usernames, scrape_type, max_items=0, use_proxy=True):
    payload = {
        "usernames": list(usernames),
        "resultsType": "followers" if scrape_type == "followers" else "following",
        "proxy": {"useApifyProxy": use_proxy},
    }
    if max_items:
        payload["resultsLimit"] = int(max_items)
    return payload


def build_send_input(session_token, recipients, message, use_proxy=True):
    return {
        "sessionCookie": session_token,
        "recipients": list(recipients),
        "message": message,
        "proxy": {"useApifyProxy": use_proxy},
    }


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str):
            return error
    return f"HTTP {response.status_code}: {response.text[:200]}"


class ApifyProvider:
    def __init__(self, token, base_url=None, scraper_actor=None, sender_actor=None,
                 request_timeout=90, http=None):
        if not token:
            raise ConfigurationError("Apify API token not configured")
        self.base_url = (base_url or "https://api.apify.com/v2").rstrip("/")
        self.actors = {
            JobKind.SCRAPE: scraper_actor or "apify/instagram-scraper",
            JobKind.SEND: sender_actor or "your-username/igdm-apify-actor",
        }
        self.request_timeout = request_timeout
        self.http = http or requests.Session()
        self.http.headers.update({"Authorization": f"Bearer {token}"})

    @classmethod
    def from_settings(cls):
        return cls(
            token=getattr(settings, "APIFY_API_TOKEN", ""),
            base_url=settings.APIFY_API_URL,
            scraper_actor=settings.APIFY_SCRAPER_ACTOR,
            sender_actor=settings.APIFY_SENDER_ACTOR,
            request_timeout=settings.APIFY_REQUEST_TIMEOUT,
        )

    def _actor_path(self, kind):
        # Actor names are addressed as "owner~name" in URLs
        return self.actors[kind].replace("/", "~")

    def launch(self, kind, parameters, options=None):
        """Start an actor run and return its handle without waiting for it."""
        params = {k: v for k, v in (options or {}).items() if v}
        url = f"{self.base_url}/acts/{self._actor_path(kind)}/runs"
        try:
            response = self.http.post(url, json=parameters, params=params, timeout=self.request_timeout)
        except requests.RequestException as e:
            raise LaunchError(f"Could not reach Apify: {e}") from e

        if response.status_code >= 400:
            raise LaunchError(_error_message(response))

        data = (response.json() or {}).get("data") or {}
        if not data.get("id"):
            raise LaunchError("Apify did not return a run id")

        logger.info(f"Started {kind.value} actor run {data['id']}")
        return ExternalJob(
            handle=data["id"],
            dataset_id=data.get("defaultDatasetId"),
            state=_STATE_MAP.get(data.get("status"), RUNNING),
        )

    def poll_status(self, handle, wait=0):
        params = {"waitForFinish": min(int(wait), MAX_SERVER_WAIT)} if wait else {}
        response = self.http.get(
            f"{self.base_url}/actor-runs/{handle}",
            params=params,
            timeout=self.request_timeout + (params.get("waitForFinish") or 0),
        )
        if response.status_code >= 400:
            raise MonitorError(_error_message(response))

        data = (response.json() or {}).get("data") or {}
        raw_status = data.get("status")
        return JobStatus(
            state=_STATE_MAP.get(raw_status, RUNNING),
            message=data.get("statusMessage"),
            dataset_id=data.get("defaultDatasetId"),
            raw_status=raw_status,
        )

    def fetch_results(self, dataset_id):
        response = self.http.get(
            f"{self.base_url}/datasets/{dataset_id}/items",
            params={"format": "json", "clean": "true"},
            timeout=self.request_timeout,
        )
        if response.status_code >= 400:
            raise MonitorError(_error_message(response))
        items = response.json()
        return items if isinstance(items, list) else []

    def wait_for_finish(self, handle, ceiling, heartbeat: Optional[Callable] = None,
                        clock: Callable[[], float] = time.monotonic, elapsed: float = 0):
        """Poll until the run is terminal, raising JobTimeout once ``ceiling`` seconds pass.

        ``elapsed`` is time already spent on this job by an earlier monitor; it
        counts against the same ceiling.
        """
        deadline = clock() + ceiling - max(0, elapsed)
        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                raise JobTimeout(f"Timeout after {format_duration(ceiling)}")
            status = self.poll_status(handle, wait=max(1, min(MAX_SERVER_WAIT, int(remaining))))
            if heartbeat:
                heartbeat(status)
            if status.is_terminal:
                return status
