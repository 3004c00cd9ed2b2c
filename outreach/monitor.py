"""Reconcile detached Apify runs into local job records.

Nothing in here raises to its caller: these functions run inside Celery
tasks long after the HTTP request that started the job has returned, so
every failure ends up as a ``failed`` status and an ``error`` text on the
records instead.
"""
import logging

from django.conf import settings
from django.utils import timezone

from .apify import SUCCEEDED, ApifyProvider, JobKind, build_send_input
from .exceptions import MonitorError, NotFoundError
from .models import Campaign, DMQueueEntry, Profile, ScrapeRun
from .normalizer import store_profiles
from .utils import send_alert

logger = logging.getLogger(__name__)


def _error_text(exc, fallback):
    return str(exc) or fallback or exc.__class__.__name__


def run_options():
    return {
        "timeout": getattr(settings, "APIFY_RUN_TIMEOUT", 0),
        "memory": getattr(settings, "APIFY_RUN_MEMORY", 0),
    }


def fail_scrape_runs(runs, error):
    try:
        updated = runs.mark_failed(error)
        if updated:
            send_alert(f"Scraping failed for {updated} run(s): {error}", "error")
        return updated
    except Exception as e:
        logger.error(f"Could not record scrape failure ({error}): {e}", exc_info=True)
        return 0


def reconcile_scrape(run_ids, handle, provider=None, ceiling=None):
    """Wait for a scrape run to finish and write its outcome to every local run sharing it."""
    runs = ScrapeRun.objects.filter(id__in=run_ids)
    ceiling = ceiling or settings.SCRAPE_MONITOR_TIMEOUT

    try:
        if not runs.filter(status=ScrapeRun.RUNNING).exists():
            logger.info(f"Scrape job {handle} has no running records, nothing to reconcile")
            return {"status": "skipped", "handle": handle}

        provider = provider or ApifyProvider.from_settings()
        status = provider.wait_for_finish(handle, ceiling, heartbeat=lambda _: runs.touch())

        if status.state != SUCCEEDED:
            error = status.message or "Scraping failed"
            logger.error(f"Scrape job {handle} ended {status.raw_status or status.state}: {error}")
            fail_scrape_runs(runs, error)
            return {"status": "failed", "handle": handle, "error": error}

        primary = runs.order_by("created_at").first()
        dataset_id = status.dataset_id or (primary.dataset_id if primary else None)
        if not dataset_id:
            raise MonitorError("Run finished without a dataset")

        items = provider.fetch_results(dataset_id)
        processed = store_profiles(items, scrape_run=primary)
        updated = runs.mark_completed(processed)

        logger.info(f"Scraping completed: {processed} profiles saved for job {handle}")
        send_alert(f"Scraping completed: {processed} profiles saved ({updated} run(s))", "info")
        return {"status": "completed", "handle": handle, "items_scraped": processed}

    except Exception as e:
        error = _error_text(e, "Scraping failed")
        logger.error(f"Error monitoring scrape job {handle}: {error}", exc_info=True)
        fail_scrape_runs(runs, error)
        return {"status": "failed", "handle": handle, "error": error}


def fail_queue_entry(queue_id, profile_id, error):
    try:
        updated = DMQueueEntry.objects.filter(id=queue_id).mark_failed(error)
        if updated and profile_id:
            Profile.objects.filter(id=profile_id).mark_failed(error)
        if updated:
            send_alert(f"DM {queue_id} failed: {error}", "error")
        return updated
    except Exception as e:
        logger.error(f"Could not record DM failure for {queue_id} ({error}): {e}", exc_info=True)
        return 0


def refresh_campaign(campaign_id):
    """Advance a campaign to running/completed from the state of its queue entries."""
    if not campaign_id:
        return
    try:
        entries = DMQueueEntry.objects.filter(campaign_id=campaign_id)
        if entries.exclude(status=DMQueueEntry.PENDING).exists():
            Campaign.objects.filter(id=campaign_id, status=Campaign.SCHEDULED).update(status=Campaign.RUNNING)
        if not entries.filter(status__in=DMQueueEntry.ACTIVE_STATUSES).exists():
            Campaign.objects.filter(id=campaign_id).exclude(status=Campaign.COMPLETED).update(
                status=Campaign.COMPLETED
            )
    except Exception as e:
        logger.error(f"Could not refresh campaign {campaign_id}: {e}")


def send_queued_dm(queue_id, provider=None, ceiling=None):
    """Claim a pending queue entry, launch the sender actor and reconcile the result."""
    try:
        entry = DMQueueEntry.objects.select_related("session").filter(id=queue_id).first()
        if entry is None:
            logger.warning(f"Queue entry {queue_id} no longer exists")
            return {"status": "missing", "queue_id": str(queue_id)}

        # Claiming pending -> sending is what keeps a message from going out twice.
        claimed = DMQueueEntry.objects.filter(id=queue_id).mark_sending()
    except Exception as e:
        error = _error_text(e, "DM sending failed")
        logger.error(f"Could not claim queue entry {queue_id}: {error}", exc_info=True)
        return {"status": "failed", "queue_id": str(queue_id), "error": error}

    if not claimed:
        logger.info(f"Queue entry {queue_id} is {entry.status}, not sending")
        return {"status": "skipped", "queue_id": str(queue_id), "reason": entry.status}

    refresh_campaign(entry.campaign_id)
    try:
        if entry.session is None:
            raise NotFoundError("Sender session no longer exists")
        provider = provider or ApifyProvider.from_settings()
        job = provider.launch(
            JobKind.SEND,
            build_send_input(
                entry.session.session_token,
                [entry.profile_username],
                entry.message,
                use_proxy=getattr(settings, "APIFY_USE_PROXY", True),
            ),
            options=run_options(),
        )
    except Exception as e:
        error = _error_text(e, "DM sending failed")
        logger.error(f"Could not start DM to @{entry.profile_username}: {error}")
        fail_queue_entry(queue_id, entry.profile_id, error)
        refresh_campaign(entry.campaign_id)
        return {"status": "failed", "queue_id": str(queue_id), "error": error}

    try:
        DMQueueEntry.objects.filter(id=queue_id).record_handle(job.handle)
    except Exception as e:
        # The actor is already running; keep watching it with the handle in hand.
        logger.error(f"Could not record job {job.handle} for queue entry {queue_id}: {e}", exc_info=True)
    return reconcile_dm(queue_id, job.handle, provider=provider, ceiling=ceiling)


def _seconds_since(moment):
    return (timezone.now() - moment).total_seconds() if moment else 0


def reconcile_dm(queue_id, handle, provider=None, ceiling=None):
    """Wait for a send run and mark the queue entry and its profile sent or failed.

    The ceiling runs from the moment the entry started sending, so a monitor
    resumed after a worker restart only waits for what is left of it.
    """
    try:
        entries = DMQueueEntry.objects.filter(id=queue_id)
        entry = entries.first()
    except Exception as e:
        error = _error_text(e, "DM sending failed")
        logger.error(f"Could not load queue entry {queue_id}: {error}", exc_info=True)
        return {"status": "failed", "queue_id": str(queue_id), "error": error}

    if entry is None or entry.status != DMQueueEntry.SENDING:
        return {"status": "skipped", "queue_id": str(queue_id)}

    ceiling = ceiling or settings.SEND_MONITOR_TIMEOUT
    try:
        provider = provider or ApifyProvider.from_settings()
        status = provider.wait_for_finish(
            handle,
            ceiling,
            heartbeat=lambda _: entries.touch(),
            elapsed=_seconds_since(entry.sending_started_at),
        )
        if status.state != SUCCEEDED:
            raise MonitorError(status.message or "DM sending failed")

        if entries.mark_sent(handle):
            Profile.objects.filter(id=entry.profile_id).mark_sent()
            logger.info(f"DM sent successfully to @{entry.profile_username}")
            send_alert(f"DM sent to @{entry.profile_username} via {entry.session_name}", "info")
        return {"status": "sent", "queue_id": str(queue_id), "handle": handle}

    except Exception as e:
        error = _error_text(e, "DM sending failed")
        logger.error(f"DM to @{entry.profile_username} failed: {error}")
        fail_queue_entry(queue_id, entry.profile_id, error)
        return {"status": "failed", "queue_id": str(queue_id), "error": error}

    finally:
        refresh_campaign(entry.campaign_id)
