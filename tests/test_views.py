import base64
import re
from unittest.mock import patch

import pytest

from jobs import tiktok, tracker
from jobs.exceptions import TikTokError
from jobs.models import Job, SocialAccount

pytestmark = pytest.mark.django_db

VALID = {"source_video_url": "https://cdn.example.com/source.mp4", "caption": "hello", "hashtags": ["#fyp", "fyp", "music"]}


def test_health(api_client, settings):
    settings.BASE_URL = "https://api.example.com"
    resp = api_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "base_url": "https://api.example.com"}


@pytest.mark.parametrize("headers", [{}, {"HTTP_X_API_KEY": "wrong"}])
@patch("jobs.views.process_job")
def test_create_job_requires_api_key(mock_task, api_client, api_key, headers):
    resp = api_client.post("/jobs", VALID, format="json", **headers)
    assert resp.status_code == 401
    assert Job.objects.count() == 0
    mock_task.delay.assert_not_called()


@patch("jobs.views.process_job")
def test_unset_server_key_rejects_everything(mock_task, api_client, settings):
    settings.API_KEY = ""
    resp = api_client.post("/jobs", VALID, format="json", HTTP_X_API_KEY="")
    assert resp.status_code == 401


@pytest.mark.parametrize("body", [
    {},
    {"caption": "no source"},
    {"source_video_url": "ftp://cdn.example.com/a.mp4"},
    {"source_video_url": "https://cdn.example.com/a.mp4", "source_video_base64": "AAAA"},
    {"source_video_url": "https://cdn.example.com/a.mp4", "hashtags": "fyp"},
])
@patch("jobs.views.process_job")
def test_create_job_validation(mock_task, api_client, api_key, body):
    resp = api_client.post("/jobs", body, format="json", HTTP_X_API_KEY=api_key)
    assert resp.status_code == 400
    assert Job.objects.count() == 0
    mock_task.delay.assert_not_called()


@patch("jobs.views.process_job")
def test_create_job_returns_immediately(mock_task, api_client, api_key):
    resp = api_client.post("/jobs", VALID, format="json", HTTP_X_API_KEY=api_key)

    assert resp.status_code == 200
    body = resp.json()
    assert re.match(r"^job_[a-z0-9]+$", body["job_id"])
    assert body["state"] == "queued"
    assert body["progress"] == 0
    mock_task.delay.assert_called_once_with(body["job_id"])

    job = Job.objects.get(pk=body["job_id"])
    assert job.input["hashtags"] == ["fyp", "music"]
    assert job.input["postToTikTok"] is False
    assert "source_video_base64" not in job.input


@patch("jobs.views.process_job")
def test_account_ids_without_tiktok_flag_are_accepted(mock_task, api_client, api_key):
    body = {**VALID, "tiktok_account_ids": ["oid_1"]}

    resp = api_client.post("/jobs", body, format="json", HTTP_X_API_KEY=api_key)

    assert resp.status_code == 200
    job = Job.objects.get(pk=resp.json()["job_id"])
    assert job.input["postToTikTok"] is False


@patch("jobs.views.process_job")
def test_task_is_sent_after_job_is_stored(mock_task, api_client, api_key):
    seen = []

    def check_row(job_id):
        job = Job.objects.get(pk=job_id)
        seen.append((job.state, job.events.count()))

    mock_task.delay.side_effect = check_row

    resp = api_client.post("/jobs", VALID, format="json", HTTP_X_API_KEY=api_key)

    assert resp.status_code == 200
    assert seen == [("queued", 1)]


@patch("jobs.views.process_job")
def test_concurrent_submissions_get_distinct_jobs(mock_task, api_client, api_key):
    ids = [
        api_client.post("/jobs", VALID, format="json", HTTP_X_API_KEY=api_key).json()["job_id"]
        for _ in range(5)
    ]
    assert len(set(ids)) == 5
    assert mock_task.delay.call_count == 5


@patch("jobs.views.process_job")
def test_create_job_enqueue_failure(mock_task, api_client, api_key):
    mock_task.delay.side_effect = ConnectionError("redis down")

    resp = api_client.post("/jobs", VALID, format="json", HTTP_X_API_KEY=api_key)

    assert resp.status_code == 503
    job = Job.objects.get(pk=resp.json()["job_id"])
    assert job.state == Job.State.FAILED
    assert job.error_message


def test_get_unknown_job(api_client):
    resp = api_client.get("/jobs/job_0000000000000000")
    assert resp.status_code == 404


def test_get_job_shape(api_client, make_job):
    job = make_job(caption="hi")
    tracker.update(job.job_id, Job.State.DOWNLOADING, 5)

    resp = api_client.get(f"/jobs/{job.job_id}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["job_id"] == job.job_id
    assert body["state"] == "downloading"
    assert body["progress"] == 5
    assert body["input"]["caption"] == "hi"
    assert body["output"] == []
    assert body["error_message"] is None
    assert [e["state"] for e in body["events"]] == ["queued", "downloading"]


def test_get_job_with_output(api_client, make_job):
    job = make_job()
    tracker.update(job.job_id, Job.State.UPLOADING, 75)
    tracker.set_outputs(job.job_id, [{
        "url": "https://storage.example.com/outputs/jobs/x/clip.mp4",
        "storage_key": "jobs/x/clip.mp4",
        "caption": "hi",
        "hashtags": ["fyp"],
        "social_results": [{"account_id": "oid_1", "ok": True, "publish_id": "p1"}],
    }])
    tracker.update(job.job_id, Job.State.COMPLETED, 100)

    body = api_client.get(f"/jobs/{job.job_id}").json()

    assert body["state"] == "completed"
    assert body["output"] == [{
        "url": "https://storage.example.com/outputs/jobs/x/clip.mp4",
        "storage_key": "jobs/x/clip.mp4",
        "caption": "hi",
        "hashtags": ["fyp"],
        "transcode_mode": "encoded",
        "tiktok": [{"account_id": "oid_1", "ok": True, "publish_id": "p1"}],
    }]


def test_get_job_hides_inline_video(api_client, db):
    payload = base64.b64encode(b"\x00" * 12000).decode()
    job = tracker.create({"source_video_base64": payload})

    body = api_client.get(f"/jobs/{job.job_id}").json()

    assert body["input"]["source_video_base64"] == f"<{len(payload)} chars>"


# -----------------------------------------------------
# TikTok OAuth routes
# -----------------------------------------------------
@pytest.fixture()
def tiktok_configured(settings):
    settings.TIKTOK_CLIENT_KEY = "ck_test"
    settings.TIKTOK_CLIENT_SECRET = "cs_test"
    settings.TIKTOK_REDIRECT_URI = "https://api.example.com/auth/tiktok/callback"
    return settings


def test_auth_url(api_client, tiktok_configured):
    body = api_client.get("/auth/tiktok/url").json()
    assert body["authorize_url"].startswith(tiktok.AUTHORIZE_URL)
    assert "client_key=ck_test" in body["authorize_url"]


def test_auth_start_redirects(api_client, tiktok_configured):
    resp = api_client.get("/auth/tiktok/start")
    assert resp.status_code == 302
    assert resp["Location"].startswith(tiktok.AUTHORIZE_URL)


def test_auth_start_without_client_key(api_client, settings):
    settings.TIKTOK_CLIENT_KEY = ""
    assert api_client.get("/auth/tiktok/start").status_code == 500


def test_auth_debug_hides_secrets(api_client, tiktok_configured):
    body = api_client.get("/auth/tiktok/debug").json()
    assert body["client_key_present"] is True
    assert body["client_key_len"] == len("ck_test")
    assert "cs_test" not in str(body)


def test_callback_requires_code(api_client, tiktok_configured):
    assert api_client.get("/auth/tiktok/callback", {"state": tiktok.make_state()}).status_code == 400


def test_callback_rejects_bad_state(api_client, tiktok_configured):
    resp = api_client.get("/auth/tiktok/callback", {"code": "c", "state": "state_epush_123"})
    assert resp.status_code == 400


@patch("jobs.views.tiktok.fetch_user_info")
@patch("jobs.views.tiktok.exchange_code")
def test_callback_stores_account(mock_exchange, mock_user, api_client, tiktok_configured):
    mock_exchange.return_value = {
        "access_token": "at_1", "refresh_token": "rt_1", "open_id": "oid_1",
        "expires_in": 86400, "refresh_expires_in": 31536000, "scope": "user.info.basic,video.publish",
    }
    mock_user.return_value = {"open_id": "oid_1", "display_name": "Demo", "avatar_url": "https://p.example.com/a.jpg"}

    resp = api_client.get("/auth/tiktok/callback", {"code": "c", "state": tiktok.make_state()})

    assert resp.status_code == 200
    body = resp.json()
    assert body["open_id"] == "oid_1"
    assert "at_1" not in str(body)
    account = SocialAccount.objects.get(open_id="oid_1")
    assert account.access_token == "at_1"
    assert account.display_name == "Demo"


@patch("jobs.views.tiktok.exchange_code", side_effect=TikTokError("token request rejected: invalid_grant"))
def test_callback_upstream_error(mock_exchange, api_client, tiktok_configured):
    resp = api_client.get("/auth/tiktok/callback", {"code": "c", "state": tiktok.make_state()})
    assert resp.status_code == 502
    assert SocialAccount.objects.count() == 0


def test_accounts_listing(api_client, api_key):
    SocialAccount.objects.create(open_id="oid_1", display_name="Demo", access_token="secret_at", refresh_token="secret_rt")

    assert api_client.get("/accounts/tiktok").status_code == 401

    resp = api_client.get("/accounts/tiktok", HTTP_X_API_KEY=api_key)
    assert resp.status_code == 200
    assert [a["open_id"] for a in resp.json()["accounts"]] == ["oid_1"]
    assert "secret_at" not in resp.content.decode()
