"""Endpoint tests through the Django test client.

Apify and OpenAI are replaced at their construction points; Celery
hand-offs are captured by the ``dispatched`` fixture.
"""
import uuid
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from outreach.exceptions import LaunchError
from outreach.models import Campaign, DMQueueEntry, Profile, ScrapeRun, Session

pytestmark = pytest.mark.django_db


def post_json(client, url, payload):
    return client.post(url, payload, content_type="application/json")


@pytest.fixture
def apify(provider):
    with patch("outreach.services.ApifyProvider.from_settings", return_value=provider):
        yield provider


@pytest.fixture
def generator():
    mock = MagicMock()
    mock.draft_for.return_value = "Hey Jane, your trail photos are stunning!"
    with patch("outreach.services.DraftGenerator", return_value=mock):
        yield mock


class TestSetupAndSessions:

    def test_setup_status_reports_configured_credentials(self, client, configured):
        configured.DATABASE_URL = None

        response = client.get("/api/setup-status/")

        assert response.status_code == 200
        assert response.json() == {"database": False, "apify": True, "openai": True}

    def test_setup_status_unconfigured(self, client, settings):
        settings.DATABASE_URL = None
        settings.APIFY_API_TOKEN = ""
        settings.OPENAI_API_KEY = ""

        assert client.get("/api/setup-status/").json() == {"database": False, "apify": False, "openai": False}

    def test_create_and_list_sessions(self, client):
        response = post_json(client, "/api/sessions/", {
            "name": "Main sender", "username": "@brand", "sessionId": "cookie-1", "type": "sender",
        })

        assert response.status_code == 200
        assert response.json()["success"] is True
        session = Session.objects.get(id=response.json()["id"])
        assert session.username == "brand"
        assert session.session_token == "cookie-1"
        assert session.role == Session.SENDER

        listed = client.get("/api/sessions/?type=sender").json()
        assert [s["name"] for s in listed] == ["Main sender"]
        assert listed[0]["type"] == "sender"
        assert client.get("/api/sessions/?type=scraper").json() == []

    def test_create_session_missing_fields(self, client):
        response = post_json(client, "/api/sessions/", {"name": "No cookie", "type": "scraper"})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"
        assert Session.objects.count() == 0

    def test_invalid_json(self, client):
        response = client.post("/api/sessions/", "{not json", content_type="application/json")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    def test_delete_session(self, client, scraper_session):
        url = f"/api/sessions/{scraper_session.id}/"

        assert client.delete(url).status_code == 200
        assert client.delete(url).status_code == 404

    def test_role_cannot_change(self, scraper_session):
        from django.core.exceptions import ValidationError

        scraper_session.role = Session.SENDER
        with pytest.raises(ValidationError):
            scraper_session.save()


class TestScrape:

    def test_launch_marks_runs_running_and_schedules_monitor(self, client, configured, scraper_session, apify, dispatched):
        configured.SCRAPE_MONITOR_DELAY = 10

        response = post_json(client, "/api/scrape/", {
            "targetUsernames": ["brand_a", "@brand_b"],
            "scrapeType": "following",
            "maxItems": 50,
            "sessionId": str(scraper_session.id),
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["apifyRunId"] == "run-1"
        assert len(body["runIds"]) == 2

        kind, payload = apify.launch.call_args.args
        assert payload["usernames"] == ["brand_a", "brand_b"]
        assert payload["resultsType"] == "following"
        assert payload["resultsLimit"] == 50

        runs = ScrapeRun.objects.all()
        assert {r.status for r in runs} == {ScrapeRun.RUNNING}
        assert {r.external_job_handle for r in runs} == {"run-1"}
        assert {r.session_name for r in runs} == {"Scraper One"}
        dispatched.scrape_monitor.assert_called_once()
        assert dispatched.scrape_monitor.call_args.kwargs["countdown"] == 10
        assert dispatched.scrape_monitor.call_args.kwargs["args"][1] == "run-1"

    def test_single_target_defaults(self, client, configured, scraper_session, apify, dispatched):
        response = post_json(client, "/api/scrape/", {
            "targetUsername": "brand_a", "sessionId": str(scraper_session.id),
        })

        assert response.status_code == 200
        run = ScrapeRun.objects.get()
        assert run.scrape_type == ScrapeRun.FOLLOWERS
        assert run.max_items == 0
        assert "resultsLimit" not in apify.launch.call_args.args[1]

    def test_missing_target(self, client, configured, scraper_session, apify):
        response = post_json(client, "/api/scrape/", {"sessionId": str(scraper_session.id)})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"
        apify.launch.assert_not_called()

    def test_apify_not_configured(self, client, settings, scraper_session):
        settings.APIFY_API_TOKEN = ""

        response = post_json(client, "/api/scrape/", {
            "targetUsername": "brand_a", "sessionId": str(scraper_session.id),
        })

        assert response.status_code == 500
        assert response.json()["error"] == "Apify API token not configured"
        assert ScrapeRun.objects.count() == 0

    def test_sender_session_cannot_scrape(self, client, configured, sender_session, apify):
        response = post_json(client, "/api/scrape/", {
            "targetUsername": "brand_a", "sessionId": str(sender_session.id),
        })

        assert response.status_code == 404
        assert response.json()["error"] == "Invalid scraper session"

    def test_launch_failure_fails_runs(self, client, configured, scraper_session, apify, dispatched):
        apify.launch.side_effect = LaunchError("Actor not found")

        response = post_json(client, "/api/scrape/", {
            "targetUsername": "brand_a", "sessionId": str(scraper_session.id),
        })

        assert response.status_code == 502
        assert response.json() == {"error": "Failed to start scraping with Apify", "details": "Actor not found"}
        run = ScrapeRun.objects.get()
        assert run.status == ScrapeRun.FAILED
        assert run.error == "Actor not found"
        dispatched.scrape_monitor.assert_not_called()

    def test_list_runs(self, client, scraper_session):
        ScrapeRun.objects.create(target_username="brand_a", session=scraper_session, session_name="Scraper One")

        runs = client.get("/api/scrape-runs/").json()

        assert runs[0]["target_username"] == "brand_a"
        assert runs[0]["status"] == "pending"
        assert runs[0]["apify_run_id"] is None


class TestDrafts:

    def test_generate_draft(self, client, configured, profile, generator):
        response = post_json(client, "/api/generate-dm/", {"profileId": str(profile.id)})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Hey Jane, your trail photos are stunning!"}
        profile.refresh_from_db()
        assert profile.dm_draft == "Hey Jane, your trail photos are stunning!"
        assert profile.status == Profile.DRAFT_READY

    def test_generate_draft_not_configured(self, client, settings, profile):
        settings.OPENAI_API_KEY = ""

        response = post_json(client, "/api/generate-dm/", {"profileId": str(profile.id)})

        assert response.status_code == 500
        assert response.json()["error"] == "OpenAI API key not configured"

    def test_generate_draft_unknown_profile(self, client, configured, generator):
        response = post_json(client, "/api/generate-dm/", {"profileId": str(uuid.uuid4())})

        assert response.status_code == 404

    def test_sent_profile_keeps_its_draft(self, client, configured, profile, generator):
        Profile.objects.filter(id=profile.id).mark_sent()

        response = post_json(client, "/api/generate-dm/", {"profileId": str(profile.id)})

        assert response.status_code == 400
        profile.refresh_from_db()
        assert profile.status == Profile.SENT
        assert profile.dm_draft == "Hi Jane, loved your trail photos!"

    def test_bulk_generation_reports_failures(self, client, configured, profile, generator):
        other = Profile.objects.create(username="kim")
        generator.draft_for.side_effect = ["Hi Jane!", RuntimeError("rate limited")]
        missing = str(uuid.uuid4())

        response = post_json(client, "/api/generate-dm/bulk/", {
            "profileIds": [str(profile.id), str(other.id), missing],
        })

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is False
        assert body["generated"] == [str(profile.id)]
        assert {f["profileId"]: f["error"] for f in body["failed"]} == {
            str(other.id): "rate limited",
            missing: "Profile not found",
        }

    def test_update_draft(self, client, profile):
        response = post_json(client, "/api/profiles/update-draft/", {
            "profileId": str(profile.id), "draft": "Edited by hand ",
        })

        assert response.status_code == 200
        profile.refresh_from_db()
        assert profile.dm_draft == "Edited by hand "

    def test_list_and_filter_profiles(self, client, profile):
        Profile.objects.create(username="kim")

        assert len(client.get("/api/profiles/").json()) == 2
        listed = client.get("/api/profiles/?status=draft_ready").json()
        assert [p["username"] for p in listed] == ["jane.doe"]

    def test_export_csv(self, client, profile):
        response = client.get("/api/profiles/export/")

        assert response.status_code == 200
        assert response["Content-Type"] == "text/csv"
        assert "attachment" in response["Content-Disposition"]
        lines = response.content.decode().splitlines()
        assert lines[0] == "Username,Full Name,Bio,Followers,Following,Status,Draft,Sent At,Scraped At"
        assert lines[1].startswith("jane.doe,Jane Doe,")


class TestSendDM:

    def test_queue_and_dispatch(self, client, configured, profile, sender_session, dispatched):
        configured.DM_SEND_DELAY = 2

        response = post_json(client, "/api/send-dm/", {
            "profileId": str(profile.id), "sessionId": str(sender_session.id),
        })

        assert response.status_code == 200
        entry = DMQueueEntry.objects.get(id=response.json()["queueId"])
        assert entry.status == DMQueueEntry.PENDING
        assert entry.message == profile.dm_draft
        assert entry.session_name == "Sender One"
        profile.refresh_from_db()
        assert profile.assigned_session_id == sender_session.id
        dispatched.dm_send.assert_called_once_with(args=(str(entry.id),), countdown=2)

    def test_scheduled_dm_waits(self, client, configured, profile, sender_session, dispatched):
        when = (timezone.now() + timedelta(days=1)).isoformat()

        response = post_json(client, "/api/send-dm/", {
            "profileId": str(profile.id), "sessionId": str(sender_session.id), "schedule": when,
        })

        assert response.status_code == 200
        dispatched.dm_send.assert_not_called()
        assert DMQueueEntry.objects.get().scheduled_for > timezone.now()

    def test_no_draft(self, client, configured, sender_session, dispatched):
        bare = Profile.objects.create(username="kim")

        response = post_json(client, "/api/send-dm/", {
            "profileId": str(bare.id), "sessionId": str(sender_session.id),
        })

        assert response.status_code == 400
        assert response.json()["error"] == "No DM draft available"
        assert DMQueueEntry.objects.count() == 0

    def test_already_messaged_profile(self, client, configured, profile, sender_session, dispatched):
        Profile.objects.filter(id=profile.id).mark_sent()

        response = post_json(client, "/api/send-dm/", {
            "profileId": str(profile.id), "sessionId": str(sender_session.id),
        })

        assert response.status_code == 400
        assert response.json()["error"] == "DM already sent to @jane.doe"
        assert DMQueueEntry.objects.count() == 0
        dispatched.dm_send.assert_not_called()

    def test_unknown_sender(self, client, configured, profile, scraper_session, dispatched):
        response = post_json(client, "/api/send-dm/", {
            "profileId": str(profile.id), "sessionId": str(scraper_session.id),
        })

        assert response.status_code == 404
        assert response.json()["error"] == "Profile or session not found"

    def test_missing_fields(self, client, configured):
        response = post_json(client, "/api/send-dm/", {"profileId": str(uuid.uuid4())})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    def test_queue_listing_and_stats(self, client, profile, sender_session):
        for status in (DMQueueEntry.SENT, DMQueueEntry.SENT, DMQueueEntry.SENT, DMQueueEntry.FAILED, DMQueueEntry.PENDING):
            DMQueueEntry.objects.create(
                profile=profile, profile_username=profile.username, message="hi",
                session=sender_session, session_name=sender_session.name, status=status,
            )

        assert len(client.get("/api/dm-queue/").json()) == 5
        assert len(client.get("/api/dm-queue/?status=sent").json()) == 3
        assert client.get("/api/dm-stats/").json() == {
            "totalSent": 3, "totalFailed": 1, "totalPending": 1, "successRate": 75,
        }

    def test_wrong_method(self, client):
        assert client.get("/api/send-dm/").status_code == 405


class TestCampaignsAndAnalytics:

    def test_create_campaign(self, client, configured, profile, sender_session, dispatched):
        bare = Profile.objects.create(username="kim")

        response = post_json(client, "/api/campaigns/", {
            "name": "Spring outreach",
            "sessionId": str(sender_session.id),
            "profileIds": [str(profile.id), str(bare.id)],
        })

        body = response.json()
        assert response.status_code == 200
        assert body["queued"] == 1
        assert body["skipped"] == 1
        campaign = Campaign.objects.get(id=body["campaignId"])
        assert campaign.queue_entries.count() == 1
        dispatched.dm_send.assert_called_once()

        listed = client.get("/api/campaigns/").json()
        assert listed[0]["name"] == "Spring outreach"
        assert listed[0]["totalProfiles"] == 1
        assert listed[0]["sessionName"] == "Sender One"

    def test_campaign_without_drafts(self, client, configured, sender_session, dispatched):
        bare = Profile.objects.create(username="kim")

        response = post_json(client, "/api/campaigns/", {
            "name": "Empty", "sessionId": str(sender_session.id), "profileIds": [str(bare.id)],
        })

        assert response.status_code == 400
        assert Campaign.objects.count() == 0

    def test_analytics(self, client, profile, sender_session):
        DMQueueEntry.objects.create(
            profile=profile, profile_username=profile.username, message="hi",
            session=sender_session, session_name=sender_session.name,
            status=DMQueueEntry.SENT, sent_at=timezone.now(),
        )

        body = client.get("/api/analytics/").json()

        assert body["totalProfiles"] == 1
        assert body["totalSent"] == 1
        assert body["totalFailed"] == 0
        assert body["successRate"] == 100
        assert len(body["dailyActivity"]) == 14
        today = body["dailyActivity"][-1]
        assert today["date"] == timezone.now().date().isoformat()
        assert today["sent"] == 1
        assert today["scraped"] == 1

    def test_alerts(self, client):
        from outreach.utils import send_alert

        send_alert("Something broke", "error")

        alerts = client.get("/api/alerts/").json()
        assert alerts[0]["message"] == "Something broke"
        assert alerts[0]["severity"] == "ERROR"
