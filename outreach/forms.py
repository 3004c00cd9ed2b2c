# forms.py
import uuid

from django import forms
from django.utils import timezone

from .exceptions import ValidationError
from .models import ScrapeRun, Session


def _as_list(value):
    if value in (None, ""):
        return []
    if isinstance(value, str):
        return [part for part in value.replace("\n", ",").split(",")]
    if isinstance(value, (list, tuple)):
        return list(value)
    raise forms.ValidationError("Expected a list")


class HandleListField(forms.Field):
    """Instagram handles as a list or comma separated string; '@' and duplicates dropped."""

    def to_python(self, value):
        handles = []
        for raw in _as_list(value):
            handle = str(raw).strip().lstrip("@")
            if handle and handle not in handles:
                handles.append(handle)
        return handles


class UUIDListField(forms.Field):
    def to_python(self, value):
        ids = []
        for raw in _as_list(value):
            try:
                parsed = uuid.UUID(str(raw).strip())
            except ValueError:
                raise forms.ValidationError(f"Invalid id: {raw}")
            if parsed not in ids:
                ids.append(parsed)
        return ids

    def validate(self, value):
        if self.required and not value:
            raise forms.ValidationError(self.error_messages["required"], code="required")


class SessionForm(forms.Form):
    name = forms.CharField(max_length=255)
    username = forms.CharField(max_length=255)
    session_id = forms.CharField(label="Instagram sessionid cookie")
    type = forms.ChoiceField(choices=Session.ROLE_CHOICES)

    def clean_username(self):
        return self.cleaned_data["username"].strip().lstrip("@")


class ScrapeForm(forms.Form):
    target_username = forms.CharField(max_length=255, required=False)
    target_usernames = HandleListField(required=False)
    scrape_type = forms.ChoiceField(choices=ScrapeRun.SCRAPE_TYPE_CHOICES, required=False)
    max_items = forms.IntegerField(min_value=0, required=False)
    session_id = forms.UUIDField()

    def clean(self):
        cleaned = super().clean()
        targets = HandleListField().to_python(cleaned.get("target_username"))
        for handle in cleaned.get("target_usernames") or []:
            if handle not in targets:
                targets.append(handle)
        if not targets:
            raise forms.ValidationError("At least one target username is required.", code="required")
        cleaned["targets"] = targets
        cleaned["scrape_type"] = cleaned.get("scrape_type") or ScrapeRun.FOLLOWERS
        cleaned["max_items"] = cleaned.get("max_items") or 0
        return cleaned


class GenerateDraftForm(forms.Form):
    profile_id = forms.UUIDField()


class BulkDraftForm(forms.Form):
    profile_ids = UUIDListField()


class UpdateDraftForm(forms.Form):
    profile_id = forms.UUIDField()
    draft = forms.CharField(strip=False)


class QueueDMForm(forms.Form):
    profile_id = forms.UUIDField()
    session_id = forms.UUIDField()
    schedule = forms.DateTimeField(required=False)

    def clean_schedule(self):
        schedule = self.cleaned_data.get("schedule")
        if schedule and schedule < timezone.now():
            raise forms.ValidationError("Scheduled time must be in the future.")
        return schedule


class CampaignForm(forms.Form):
    name = forms.CharField(max_length=255)
    session_id = forms.UUIDField()
    profile_ids = UUIDListField()
    schedule = forms.DateTimeField(required=False)

    def clean_schedule(self):
        schedule = self.cleaned_data.get("schedule")
        if schedule and schedule < timezone.now():
            raise forms.ValidationError("Scheduled time must be in the future.")
        return schedule


def validate(form_class, data):
    """Bind and validate a form, raising the console's ValidationError on bad input."""
    form = form_class(data or {})
    if not form.is_valid():
        errors = form.errors.get_json_data()
        missing = any(err.get("code") == "required" for errs in errors.values() for err in errs)
        message = "Missing required fields" if missing else "Invalid request"
        raise ValidationError(message, details={k: [e["message"] for e in v] for k, v in errors.items()})
    return form.cleaned_data
