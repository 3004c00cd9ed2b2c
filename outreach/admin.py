from django.contrib import admin
from .models import Session, ScrapeRun, Profile, Campaign, DMQueueEntry, Alert


@admin.register(Session)
class SessionAdmin(admin.ModelAdmin):
    list_display = ("name", "username", "role", "status", "created_at")
    list_filter = ("role", "status")
    search_fields = ("name", "username")
    ordering = ("-created_at",)

    def get_readonly_fields(self, request, obj=None):
        # Role is fixed once the session exists
        return ("role", "created_at") if obj else ("created_at",)


@admin.register(ScrapeRun)
class ScrapeRunAdmin(admin.ModelAdmin):
    list_display = (
        "target_username", "scrape_type", "session_name", "status",
        "items_scraped", "external_job_handle", "created_at", "completed_at",
    )
    list_filter = ("status", "scrape_type", "created_at")
    search_fields = ("target_username", "external_job_handle", "session_name")
    readonly_fields = ("external_job_handle", "dataset_id", "created_at", "completed_at", "last_checked_at")
    ordering = ("-created_at",)

    fieldsets = (
        ("Target", {
            "fields": ("target_username", "scrape_type", "max_items", "session", "session_name")
        }),
        ("Apify Job", {
            "fields": ("external_job_handle", "dataset_id", "last_checked_at")
        }),
        ("Outcome", {
            "fields": ("status", "items_scraped", "error", "created_at", "completed_at")
        }),
    )


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("username", "full_name", "followers_count", "status", "assigned_session", "sent_at", "created_at")
    list_filter = ("status", "created_at")
    search_fields = ("username", "full_name", "bio")
    readonly_fields = ("created_at", "sent_at")
    ordering = ("-created_at",)


@admin.register(Campaign)
class CampaignAdmin(admin.ModelAdmin):
    list_display = ("name", "session_name", "status", "entry_count", "scheduled_for", "created_at")
    list_filter = ("status", "scheduled_for")
    search_fields = ("name", "session_name")
    readonly_fields = ("created_at",)
    ordering = ("-created_at",)

    def entry_count(self, obj):
        return obj.queue_entries.count()
    entry_count.short_description = 'DMs'


@admin.register(DMQueueEntry)
class DMQueueEntryAdmin(admin.ModelAdmin):
    list_display = ("profile_username", "session_name", "status", "attempts", "scheduled_for", "sent_at")
    list_filter = ("status", "scheduled_for")
    search_fields = ("profile_username", "session_name", "message", "external_job_handle")
    date_hierarchy = "scheduled_for"
    readonly_fields = (
        "external_job_handle", "dispatched_at", "sending_started_at", "created_at", "sent_at", "last_checked_at",
    )
    ordering = ("-scheduled_for",)

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("profile", "session", "campaign")


@admin.register(Alert)
class AlertAdmin(admin.ModelAdmin):
    list_display = ("message", "severity", "timestamp", "acknowledged")
    list_filter = ("severity", "acknowledged", "timestamp")
    search_fields = ("message",)
    ordering = ("-timestamp",)
    readonly_fields = ("timestamp",)
