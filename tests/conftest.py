import pytest
from rest_framework.test import APIClient

from jobs import tracker

API_KEY = "test-api-key"


@pytest.fixture()
def api_key(settings):
    settings.API_KEY = API_KEY
    return API_KEY


@pytest.fixture()
def api_client():
    return APIClient()


@pytest.fixture()
def pipeline_settings(settings):
    settings.S3_BUCKET = "outputs"
    settings.S3_PUBLIC_ENDPOINT = "https://storage.example.com"
    settings.WEBHOOK_URL = ""
    settings.MIN_BASE64_BYTES = 10 * 1024
    settings.TRANSCODE_AUDIO = "copy"
    settings.TRANSCODE_JITTER = False
    return settings


@pytest.fixture()
def make_job(db):
    def _make(**overrides):
        payload = {"source_video_url": "https://cdn.example.com/source.mp4", "caption": "", "hashtags": []}
        payload.update(overrides)
        return tracker.create(payload)
    return _make


@pytest.fixture()
def fake_video(tmp_path):
    path = tmp_path / "source.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 20000)
    return path
