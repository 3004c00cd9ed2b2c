import logging
from datetime import timedelta

import redis
from celery import shared_task
from celery.signals import worker_ready
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from .models import Alert, DMQueueEntry, ScrapeRun
from .monitor import fail_queue_entry, fail_scrape_runs, reconcile_dm, reconcile_scrape, send_queued_dm
from .utils import send_alert

redis_client = redis.Redis(host=settings.REDIS_HOST, port=settings.REDIS_PORT, db=0)


@shared_task(bind=True, ignore_result=False)
def monitor_scrape_run_task(self, run_ids, handle):
    """Reconcile one Apify scrape run into every ScrapeRun row that shares it."""
    logging.info(f"Monitoring scrape job {handle} for {len(run_ids)} run(s)")
    return reconcile_scrape(run_ids, handle)


@shared_task(bind=True, ignore_result=False, max_retries=0)
def process_dm_queue_task(self, queue_id):
    logging.info(f"Processing DM queue entry {queue_id}")
    return send_queued_dm(queue_id)


@shared_task(bind=True, ignore_result=False, max_retries=0)
def resume_dm_monitor_task(self, queue_id, handle):
    logging.info(f"Resuming monitor for DM queue entry {queue_id} (job {handle})")
    return reconcile_dm(queue_id, handle)


def dispatch_scrape_monitor(run_ids, handle, countdown=None):
    monitor_scrape_run_task.apply_async(
        args=([str(run_id) for run_id in run_ids], handle),
        countdown=settings.SCRAPE_MONITOR_DELAY if countdown is None else countdown,
    )


def dispatch_dm(entry, countdown=None):
    """Hand a pending entry to the worker, once, unless someone else already did."""
    claimed = DMQueueEntry.objects.filter(
        id=entry.id, status=DMQueueEntry.PENDING, dispatched_at__isnull=True
    ).update(dispatched_at=timezone.now())
    if not claimed:
        return False
    process_dm_queue_task.apply_async(
        args=(str(entry.id),),
        countdown=settings.DM_SEND_DELAY if countdown is None else countdown,
    )
    return True


@shared_task
def dispatch_due_dms_task():
    """Pick up scheduled entries whose time has come."""
    dispatched = 0
    for entry in DMQueueEntry.objects.due().filter(dispatched_at__isnull=True):
        if dispatch_dm(entry, countdown=0):
            dispatched += 1
    if dispatched:
        logging.info(f"Dispatched {dispatched} scheduled DM(s)")
    return dispatched


@shared_task(bind=True)
def recover_stale_jobs_task(self):
    """Resume or fail job records whose monitor stopped reporting (worker restart, lost task)."""
    lock_key = "recover_stale_jobs_lock"
    if not redis_client.set(lock_key, self.request.id or "recovery", nx=True, ex=3600):
        logging.warning("Stale job recovery already running, skipping")
        return {"status": "skipped"}

    try:
        now = timezone.now()
        cutoff = now - timedelta(seconds=settings.STALE_JOB_AFTER)
        stale = Q(last_checked_at__lt=cutoff) | Q(last_checked_at__isnull=True, created_at__lt=cutoff)
        summary = {"scrape_resumed": 0, "scrape_failed": 0, "dm_resumed": 0, "dm_failed": 0, "dm_redispatched": 0}

        # Running scrape jobs: one monitor per external handle
        running = ScrapeRun.objects.filter(stale, status=ScrapeRun.RUNNING, external_job_handle__isnull=False)
        by_handle = {}
        for run_id, handle in running.values_list("id", "external_job_handle"):
            by_handle.setdefault(handle, []).append(run_id)
        for handle, run_ids in by_handle.items():
            ScrapeRun.objects.filter(id__in=run_ids).touch()
            dispatch_scrape_monitor(run_ids, handle, countdown=0)
            summary["scrape_resumed"] += len(run_ids)

        # Pending without a handle: the request died between insert and launch
        orphaned = ScrapeRun.objects.filter(
            status=ScrapeRun.PENDING, external_job_handle__isnull=True, created_at__lt=cutoff
        )
        summary["scrape_failed"] = fail_scrape_runs(orphaned, "Launch interrupted before the job started")

        sending = DMQueueEntry.objects.filter(stale, status=DMQueueEntry.SENDING)
        for entry in sending:
            if entry.external_job_handle:
                DMQueueEntry.objects.filter(id=entry.id).touch()
                resume_dm_monitor_task.delay(str(entry.id), entry.external_job_handle)
                summary["dm_resumed"] += 1
            else:
                # Whether the actor was started is unknown; do not risk a second send.
                summary["dm_failed"] += fail_queue_entry(
                    entry.id, entry.profile_id, "Send interrupted before the job started"
                )

        lost = DMQueueEntry.objects.due(now).filter(dispatched_at__lt=cutoff)
        for entry in lost:
            process_dm_queue_task.delay(str(entry.id))
            DMQueueEntry.objects.filter(id=entry.id).update(dispatched_at=now)
            summary["dm_redispatched"] += 1

        if any(summary.values()):
            send_alert(f"Recovered stale jobs: {summary}", "warning")
        logging.info(f"Completed recover_stale_jobs_task: {summary}")
        return summary

    except Exception as e:
        logging.error(f"Error in recover_stale_jobs_task: {e}", exc_info=True)
        send_alert(f"Error in recover_stale_jobs_task: {e}", "error")
        return {"status": "error", "error": str(e)}

    finally:
        redis_client.delete(lock_key)


@worker_ready.connect
def recover_on_worker_start(sender=None, **kwargs):
    """Jobs whose monitor died with the previous worker are picked up on start."""
    try:
        recover_stale_jobs_task.delay()
    except Exception as e:
        logging.error(f"Could not schedule stale job recovery on startup: {e}")


@shared_task(bind=True)
def clean_alerts_task(self):
    """Trim the alert log to the newest ALERTS_KEEP rows once it reaches ALERTS_MAX."""
    lock_key = "clean_alerts_lock"
    if not redis_client.set(lock_key, self.request.id or "clean", nx=True, ex=3600):
        logging.info("Alert cleanup already in progress, skipping")
        return {"status": "skipped"}

    try:
        total = Alert.objects.count()
        if total < settings.ALERTS_MAX:
            return {"status": "success", "deleted": 0}

        newest = Alert.objects.order_by("-timestamp", "-id").values_list("id", flat=True)[:settings.ALERTS_KEEP]
        deleted, _ = Alert.objects.exclude(id__in=list(newest)).delete()
        logging.info(f"Pruned {deleted} of {total} alerts")
        return {"status": "success", "deleted": deleted}

    finally:
        redis_client.delete(lock_key)
