"""Operations behind the JSON endpoints.

Each function validates its input, mutates the store, and returns plain
dicts. Errors are raised as ``outreach.exceptions`` classes; the views
turn them into HTTP answers.
"""
import logging
from datetime import timedelta

import pandas as pd
from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from . import forms
from .apify import ApifyProvider, JobKind, build_scrape_input
from .drafts import DraftGenerator
from .exceptions import ConfigurationError, LaunchError, NotFoundError, ValidationError
from .models import Alert, Campaign, DMQueueEntry, Profile, ScrapeRun, Session
from .monitor import run_options
from .tasks import dispatch_dm, dispatch_scrape_monitor
from .utils import send_alert

logger = logging.getLogger(__name__)


# ----- configuration -----

def setup_status():
    return {
        "database": bool(getattr(settings, "DATABASE_URL", None)),
        "apify": bool(getattr(settings, "APIFY_API_TOKEN", "")),
        "openai": bool(getattr(settings, "OPENAI_API_KEY", "")),
    }


def _require_apify():
    if not getattr(settings, "APIFY_API_TOKEN", ""):
        raise ConfigurationError("Apify API token not configured")


def _require_openai():
    if not getattr(settings, "OPENAI_API_KEY", ""):
        raise ConfigurationError("OpenAI API key not configured")


# ----- sessions -----

def list_sessions(role=None):
    sessions = Session.objects.all()
    if role:
        if role not in (Session.SCRAPER, Session.SENDER):
            raise ValidationError("Invalid session type")
        sessions = sessions.filter(role=role)
    return [session.as_dict() for session in sessions]


def create_session(data):
    cleaned = forms.validate(forms.SessionForm, data)
    session = Session.objects.create(
        name=cleaned["name"],
        username=cleaned["username"],
        session_token=cleaned["session_id"],
        role=cleaned["type"],
    )
    logger.info(f"Created {session.role} session {session.name} (@{session.username})")
    return {"success": True, "id": str(session.id)}


def delete_session(session_id):
    deleted, _ = Session.objects.filter(id=session_id).delete()
    if not deleted:
        raise NotFoundError("Session not found")
    logger.info(f"Deleted session {session_id}")
    return {"success": True}


def _get_session(session_id, role):
    session = Session.objects.filter(id=session_id, role=role).first()
    if session is None:
        raise NotFoundError(f"Invalid {role} session")
    return session


# ----- scraping -----

def start_scrape(data, provider=None):
    """Create one ScrapeRun per target and launch a single Apify run covering all of them."""
    cleaned = forms.validate(forms.ScrapeForm, data)
    _require_apify()
    session = _get_session(cleaned["session_id"], Session.SCRAPER)

    with transaction.atomic():
        runs = [
            ScrapeRun.objects.create(
                target_username=target,
                scrape_type=cleaned["scrape_type"],
                max_items=cleaned["max_items"],
                session=session,
                session_name=session.name,
            )
            for target in cleaned["targets"]
        ]
    run_ids = [run.id for run in runs]
    records = ScrapeRun.objects.filter(id__in=run_ids)

    try:
        provider = provider or ApifyProvider.from_settings()
        job = provider.launch(
            JobKind.SCRAPE,
            build_scrape_input(
                cleaned["targets"],
                cleaned["scrape_type"],
                cleaned["max_items"],
                use_proxy=getattr(settings, "APIFY_USE_PROXY", True),
            ),
            options=run_options(),
        )
    except Exception as e:
        error = str(e) or "Apify API error"
        logger.error(f"Apify API error starting scrape of {cleaned['targets']}: {error}")
        records.mark_failed(error)
        send_alert(f"Failed to start scraping {', '.join(cleaned['targets'])}: {error}", "error")
        raise LaunchError("Failed to start scraping with Apify", details=error) from e

    records.mark_running(job.handle, job.dataset_id)
    dispatch_scrape_monitor(run_ids, job.handle)
    send_alert(f"Started scraping {', '.join('@' + t for t in cleaned['targets'])} with {session.name}", "info")

    return {
        "success": True,
        "runId": str(run_ids[0]),
        "runIds": [str(run_id) for run_id in run_ids],
        "apifyRunId": job.handle,
        "message": "Scraping started successfully! Results will appear in a few minutes.",
    }


def list_scrape_runs(limit=None):
    limit = limit or settings.SCRAPE_RUNS_LIST_LIMIT
    return [run.as_dict() for run in ScrapeRun.objects.order_by("-created_at")[:limit]]


# ----- profiles & drafts -----

def list_profiles(limit=None, status=None):
    limit = limit or settings.PROFILES_LIST_LIMIT
    profiles = Profile.objects.select_related("assigned_session").order_by("-created_at")
    if status:
        profiles = profiles.filter(status=status)
    return [profile.as_dict() for profile in profiles[:limit]]


def _get_profile(profile_id):
    profile = Profile.objects.filter(id=profile_id).first()
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


def _draft_for_profile(profile, generator):
    if profile.status == Profile.SENT:
        raise ValidationError(f"DM already sent to @{profile.username}")
    text = generator.draft_for(profile)
    Profile.objects.filter(id=profile.id).mark_draft_ready(text)
    return text


def generate_draft(data, generator=None):
    cleaned = forms.validate(forms.GenerateDraftForm, data)
    _require_openai()
    profile = _get_profile(cleaned["profile_id"])
    generator = generator or DraftGenerator()
    text = _draft_for_profile(profile, generator)
    return {"success": True, "message": text}


def generate_drafts(data, generator=None):
    """Generate drafts for many profiles; one failure does not stop the rest."""
    cleaned = forms.validate(forms.BulkDraftForm, data)
    _require_openai()
    generator = generator or DraftGenerator()

    profiles = {p.id: p for p in Profile.objects.filter(id__in=cleaned["profile_ids"])}
    generated, failed = [], []
    for profile_id in cleaned["profile_ids"]:
        profile = profiles.get(profile_id)
        if profile is None:
            failed.append({"profileId": str(profile_id), "error": "Profile not found"})
            continue
        try:
            _draft_for_profile(profile, generator)
            generated.append(str(profile_id))
        except Exception as e:
            logger.error(f"Error generating DM for @{profile.username}: {e}")
            failed.append({"profileId": str(profile_id), "error": str(e)})

    return {"success": not failed, "generated": generated, "failed": failed}


def update_draft(data):
    cleaned = forms.validate(forms.UpdateDraftForm, data)
    profile = _get_profile(cleaned["profile_id"])
    if not Profile.objects.filter(id=profile.id).mark_draft_ready(cleaned["draft"]):
        raise ValidationError(f"DM already sent to @{profile.username}")
    return {"success": True}


EXPORT_COLUMNS = {
    "username": "Username",
    "full_name": "Full Name",
    "bio": "Bio",
    "followers_count": "Followers",
    "following_count": "Following",
    "status": "Status",
    "dm_draft": "Draft",
    "sent_at": "Sent At",
    "created_at": "Scraped At",
}


def export_profiles_csv(status=None):
    profiles = Profile.objects.order_by("-created_at")
    if status:
        profiles = profiles.filter(status=status)
    df = pd.DataFrame.from_records(
        list(profiles.values(*EXPORT_COLUMNS.keys())), columns=list(EXPORT_COLUMNS.keys())
    )
    for column in ("sent_at", "created_at"):
        df[column] = pd.to_datetime(df[column], utc=True).dt.strftime("%Y-%m-%d %H:%M")
    return df.rename(columns=EXPORT_COLUMNS).to_csv(index=False)


# ----- DM queue -----

def _enqueue(profile, session, scheduled_for, campaign=None):
    entry = DMQueueEntry.objects.create(
        profile=profile,
        profile_username=profile.username,
        message=profile.dm_draft,
        session=session,
        session_name=session.name,
        campaign=campaign,
        scheduled_for=scheduled_for,
    )
    Profile.objects.filter(id=profile.id).update(assigned_session=session)
    return entry


def queue_dm(data):
    """Queue the profile's draft for sending, now or at ``schedule``."""
    cleaned = forms.validate(forms.QueueDMForm, data)
    _require_apify()
    profile = Profile.objects.filter(id=cleaned["profile_id"]).first()
    session = Session.objects.filter(id=cleaned["session_id"], role=Session.SENDER).first()
    if profile is None or session is None:
        raise NotFoundError("Profile or session not found")
    if profile.status == Profile.SENT:
        raise ValidationError(f"DM already sent to @{profile.username}")
    if not profile.dm_draft:
        raise ValidationError("No DM draft available")

    schedule = cleaned.get("schedule")
    entry = _enqueue(profile, session, schedule or timezone.now())
    if not schedule:
        dispatch_dm(entry)

    logger.info(f"Queued DM to @{profile.username} via {session.name}")
    return {"success": True, "queueId": str(entry.id)}


def list_queue(status=None):
    entries = DMQueueEntry.objects.order_by("-created_at")
    if status:
        entries = entries.filter(status=status)
    return [entry.as_dict() for entry in entries]


def _rate(sent, failed):
    finished = sent + failed
    return round(sent * 100 / finished) if finished else 0


def dm_stats():
    counts = DMQueueEntry.objects.aggregate(
        sent=Count("id", filter=Q(status=DMQueueEntry.SENT)),
        failed=Count("id", filter=Q(status=DMQueueEntry.FAILED)),
        pending=Count("id", filter=Q(status__in=DMQueueEntry.ACTIVE_STATUSES)),
    )
    return {
        "totalSent": counts["sent"],
        "totalFailed": counts["failed"],
        "totalPending": counts["pending"],
        "successRate": _rate(counts["sent"], counts["failed"]),
    }


# ----- campaigns -----

def create_campaign(data):
    """Queue the drafts of many profiles under one named campaign."""
    cleaned = forms.validate(forms.CampaignForm, data)
    _require_apify()
    session = _get_session(cleaned["session_id"], Session.SENDER)
    profiles = list(Profile.objects.filter(id__in=cleaned["profile_ids"]))

    ready = [p for p in profiles if p.dm_draft and p.status != Profile.SENT]
    if not ready:
        raise ValidationError("None of the selected profiles has a DM draft ready")

    scheduled_for = cleaned.get("schedule") or timezone.now()
    with transaction.atomic():
        campaign = Campaign.objects.create(
            name=cleaned["name"],
            session=session,
            session_name=session.name,
            scheduled_for=scheduled_for,
        )
        entries = [_enqueue(profile, session, scheduled_for, campaign=campaign) for profile in ready]

    if not cleaned.get("schedule"):
        for entry in entries:
            dispatch_dm(entry)

    skipped = len(cleaned["profile_ids"]) - len(ready)
    send_alert(f"Campaign '{campaign.name}' queued {len(entries)} DM(s), skipped {skipped}", "info")
    return {"success": True, "campaignId": str(campaign.id), "queued": len(entries), "skipped": skipped}


def list_campaigns():
    campaigns = Campaign.objects.annotate(
        total=Count("queue_entries"),
        sent=Count("queue_entries", filter=Q(queue_entries__status=DMQueueEntry.SENT)),
        failed=Count("queue_entries", filter=Q(queue_entries__status=DMQueueEntry.FAILED)),
    ).order_by("-created_at")
    return [
        {
            "id": str(c.id),
            "name": c.name,
            "status": c.status,
            "totalProfiles": c.total,
            "sentCount": c.sent,
            "failedCount": c.failed,
            "scheduledFor": c.scheduled_for.isoformat(),
            "sessionName": c.session_name,
            "createdAt": c.created_at.isoformat(),
        }
        for c in campaigns
    ]


# ----- analytics -----

def _daily_counts(timestamps, days, today):
    index = pd.date_range(end=pd.Timestamp(today), periods=days, freq="D").date
    if not timestamps:
        return pd.Series(0, index=index)
    dates = pd.to_datetime(pd.Series(timestamps), utc=True).dt.date
    return dates.value_counts().reindex(index, fill_value=0)


def analytics(days=14):
    today = timezone.now().date()
    since = timezone.now() - timedelta(days=days)

    stats = dm_stats()
    sent_times = list(
        DMQueueEntry.objects.filter(status=DMQueueEntry.SENT, sent_at__gte=since).values_list("sent_at", flat=True)
    )
    scraped_times = list(Profile.objects.filter(created_at__gte=since).values_list("created_at", flat=True))
    sent = _daily_counts(sent_times, days, today)
    scraped = _daily_counts(scraped_times, days, today)

    return {
        "totalProfiles": Profile.objects.count(),
        "totalSent": stats["totalSent"],
        "totalFailed": stats["totalFailed"],
        "successRate": stats["successRate"],
        "campaignStats": [
            {
                "name": c["name"],
                "sent": c["sentCount"],
                "total": c["totalProfiles"],
                "successRate": _rate(c["sentCount"], c["failedCount"]),
            }
            for c in list_campaigns()
        ],
        "dailyActivity": [
            {"date": day.isoformat(), "sent": int(sent[day]), "scraped": int(scraped[day])}
            for day in sent.index
        ],
    }


def recent_alerts(limit=20):
    return [
        {
            "timestamp": alert.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            "severity": alert.severity.upper(),
            "message": alert.message,
        }
        for alert in Alert.objects.order_by("-timestamp")[:limit]
    ]
