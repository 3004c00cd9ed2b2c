import uuid

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models
from django.db.models import F
from django.utils import timezone


def _iso(value):
    return value.isoformat() if value else None


class Session(models.Model):
    """Stored credential bundle for one Instagram account."""

    SCRAPER = "scraper"
    SENDER = "sender"
    ROLE_CHOICES = [
        (SCRAPER, "Scraper"),
        (SENDER, "Sender"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    username = models.CharField(max_length=255)
    session_token = models.TextField()  # sessionid cookie handed to the Apify actors
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)
    status = models.CharField(
        max_length=20,
        choices=[("active", "Active"), ("inactive", "Inactive")],
        default="active",
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["role"])]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            stored_role = Session.objects.filter(pk=self.pk).values_list("role", flat=True).first()
            if stored_role and stored_role != self.role:
                raise DjangoValidationError("Session role cannot be changed after creation")
        super().save(*args, **kwargs)

    def as_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "username": self.username,
            "type": self.role,
            "status": self.status,
            "created_at": _iso(self.created_at),
        }

    def __str__(self):
        return f"{self.name} (@{self.username}, {self.role})"


class ScrapeRunQuerySet(models.QuerySet):
    # Every transition is a single conditional UPDATE so a terminal row is never rewritten.

    def mark_running(self, handle, dataset_id=None):
        now = timezone.now()
        return self.filter(status=ScrapeRun.PENDING).update(
            status=ScrapeRun.RUNNING,
            external_job_handle=handle,
            dataset_id=dataset_id,
            last_checked_at=now,
        )

    def mark_completed(self, items_scraped):
        now = timezone.now()
        return self.filter(status=ScrapeRun.RUNNING).update(
            status=ScrapeRun.COMPLETED,
            items_scraped=items_scraped,
            completed_at=now,
            last_checked_at=now,
        )

    def mark_failed(self, error):
        now = timezone.now()
        return self.filter(status__in=ScrapeRun.ACTIVE_STATUSES).update(
            status=ScrapeRun.FAILED,
            error=error,
            completed_at=now,
            last_checked_at=now,
        )

    def touch(self):
        return self.filter(status__in=ScrapeRun.ACTIVE_STATUSES).update(last_checked_at=timezone.now())


class ScrapeRun(models.Model):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (RUNNING, "Running"),
        (COMPLETED, "Completed"),
        (FAILED, "Failed"),
    ]
    ACTIVE_STATUSES = (PENDING, RUNNING)

    FOLLOWERS = "followers"
    FOLLOWING = "following"
    SCRAPE_TYPE_CHOICES = [
        (FOLLOWERS, "Followers"),
        (FOLLOWING, "Following"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    target_username = models.CharField(max_length=255)
    scrape_type = models.CharField(max_length=20, choices=SCRAPE_TYPE_CHOICES, default=FOLLOWERS)
    max_items = models.PositiveIntegerField(default=0)  # 0 = unlimited
    session = models.ForeignKey(
        Session, on_delete=models.SET_NULL, null=True, blank=True, related_name="scrape_runs"
    )
    session_name = models.CharField(max_length=255)
    external_job_handle = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    dataset_id = models.CharField(max_length=100, null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    items_scraped = models.IntegerField(default=0)
    error = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)

    objects = ScrapeRunQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["status"])]

    @property
    def is_terminal(self):
        return self.status in (self.COMPLETED, self.FAILED)

    def as_dict(self):
        return {
            "id": str(self.id),
            "target_username": self.target_username,
            "scrape_type": self.scrape_type,
            "max_items": self.max_items,
            "session_id": str(self.session_id) if self.session_id else None,
            "session_name": self.session_name,
            "apify_run_id": self.external_job_handle,
            "status": self.status,
            "items_scraped": self.items_scraped,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
        }

    def __str__(self):
        return f"@{self.target_username} {self.scrape_type} ({self.status})"


class ProfileQuerySet(models.QuerySet):
    def mark_draft_ready(self, draft):
        return self.exclude(status=Profile.SENT).update(dm_draft=draft, status=Profile.DRAFT_READY, error=None)

    def mark_sent(self):
        return self.update(status=Profile.SENT, sent_at=timezone.now(), error=None)

    def mark_failed(self, error):
        return self.exclude(status=Profile.SENT).update(status=Profile.FAILED, error=error)


class Profile(models.Model):
    NOT_GENERATED = "not_generated"
    DRAFT_READY = "draft_ready"
    SENT = "sent"
    FAILED = "failed"
    STATUS_CHOICES = [
        (NOT_GENERATED, "Not generated"),
        (DRAFT_READY, "Draft ready"),
        (SENT, "Sent"),
        (FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = models.CharField(max_length=255, unique=True)
    full_name = models.CharField(max_length=255, blank=True, default="")
    profile_pic = models.TextField(blank=True, default="")
    bio = models.TextField(blank=True, default="")
    followers_count = models.IntegerField(default=0)
    following_count = models.IntegerField(default=0)
    scrape_run = models.ForeignKey(
        ScrapeRun, on_delete=models.SET_NULL, null=True, blank=True, related_name="profiles"
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=NOT_GENERATED)
    dm_draft = models.TextField(null=True, blank=True)
    assigned_session = models.ForeignKey(
        Session, on_delete=models.SET_NULL, null=True, blank=True, related_name="assigned_profiles"
    )
    sent_at = models.DateTimeField(null=True, blank=True)
    error = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    objects = ProfileQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"]),
            models.Index(fields=["scrape_run"]),
        ]

    def as_dict(self):
        return {
            "id": str(self.id),
            "username": self.username,
            "full_name": self.full_name,
            "profile_pic": self.profile_pic,
            "bio": self.bio,
            "followers_count": self.followers_count,
            "following_count": self.following_count,
            "scrape_run_id": str(self.scrape_run_id) if self.scrape_run_id else None,
            "status": self.status,
            "dm_draft": self.dm_draft,
            "assigned_session_id": str(self.assigned_session_id) if self.assigned_session_id else None,
            "session_name": self.assigned_session.name if self.assigned_session_id else None,
            "sent_at": _iso(self.sent_at),
            "error": self.error,
            "created_at": _iso(self.created_at),
        }

    def __str__(self):
        return f"@{self.username} ({self.status})"


class Campaign(models.Model):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STATUS_CHOICES = [
        (SCHEDULED, "Scheduled"),
        (RUNNING, "Running"),
        (PAUSED, "Paused"),
        (COMPLETED, "Completed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    session = models.ForeignKey(
        Session, on_delete=models.SET_NULL, null=True, blank=True, related_name="campaigns"
    )
    session_name = models.CharField(max_length=255)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=SCHEDULED)
    scheduled_for = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.name} ({self.status})"


class DMQueueEntryQuerySet(models.QuerySet):
    def due(self, now=None):
        return self.filter(status=DMQueueEntry.PENDING, scheduled_for__lte=now or timezone.now())

    def mark_sending(self):
        now = timezone.now()
        return self.filter(status=DMQueueEntry.PENDING).update(
            status=DMQueueEntry.SENDING, sending_started_at=now, last_checked_at=now
        )

    def record_handle(self, handle):
        return self.filter(status=DMQueueEntry.SENDING).update(
            external_job_handle=handle, last_checked_at=timezone.now()
        )

    def mark_sent(self, handle):
        now = timezone.now()
        return self.filter(status=DMQueueEntry.SENDING).update(
            status=DMQueueEntry.SENT,
            external_job_handle=handle,
            sent_at=now,
            last_checked_at=now,
        )

    def mark_failed(self, error):
        return self.filter(status__in=DMQueueEntry.ACTIVE_STATUSES).update(
            status=DMQueueEntry.FAILED,
            error=error,
            attempts=F("attempts") + 1,
            last_checked_at=timezone.now(),
        )

    def touch(self):
        return self.filter(status__in=DMQueueEntry.ACTIVE_STATUSES).update(last_checked_at=timezone.now())


class DMQueueEntry(models.Model):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (SENDING, "Sending"),
        (SENT, "Sent"),
        (FAILED, "Failed"),
    ]
    ACTIVE_STATUSES = (PENDING, SENDING)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    profile = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name="queue_entries")
    profile_username = models.CharField(max_length=255)
    message = models.TextField()
    session = models.ForeignKey(
        Session, on_delete=models.SET_NULL, null=True, blank=True, related_name="queue_entries"
    )
    session_name = models.CharField(max_length=255)
    campaign = models.ForeignKey(
        Campaign, on_delete=models.SET_NULL, null=True, blank=True, related_name="queue_entries"
    )
    scheduled_for = models.DateTimeField(default=timezone.now)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    attempts = models.IntegerField(default=0)
    external_job_handle = models.CharField(max_length=100, null=True, blank=True)
    dispatched_at = models.DateTimeField(null=True, blank=True)
    sending_started_at = models.DateTimeField(null=True, blank=True)
    error = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    sent_at = models.DateTimeField(null=True, blank=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)

    objects = DMQueueEntryQuerySet.as_manager()

    class Meta:
        ordering = ["scheduled_for"]
        verbose_name_plural = "DM queue entries"
        indexes = [
            models.Index(fields=["status"]),
            models.Index(fields=["scheduled_for"]),
        ]

    def as_dict(self):
        return {
            "id": str(self.id),
            "profile_id": str(self.profile_id),
            "profile_username": self.profile_username,
            "message": self.message,
            "session_id": str(self.session_id) if self.session_id else None,
            "session_name": self.session_name,
            "campaign_id": str(self.campaign_id) if self.campaign_id else None,
            "scheduled_for": _iso(self.scheduled_for),
            "status": self.status,
            "attempts": self.attempts,
            "apify_run_id": self.external_job_handle,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "sent_at": _iso(self.sent_at),
        }

    def __str__(self):
        return f"DM to @{self.profile_username} via {self.session_name} ({self.status})"


class Alert(models.Model):
    SEVERITY_CHOICES = [
        ('info', 'Info'),
        ('warning', 'Warning'),
        ('error', 'Error'),
        ('critical', 'Critical'),
    ]

    message = models.TextField()
    severity = models.CharField(max_length=20, choices=SEVERITY_CHOICES, default='info')
    timestamp = models.DateTimeField(default=timezone.now)
    acknowledged = models.BooleanField(default=False)

    class Meta:
        ordering = ['-timestamp']

    def __str__(self):
        return f"[{self.severity.upper()}] {self.message[:50]}..."
