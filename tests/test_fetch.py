import base64
from unittest.mock import MagicMock, patch

import pytest
import requests

from jobs.exceptions import DownloadError, InvalidPayloadError
from jobs.utils import decode_base64_payload, decode_base64_to_tmp, download_to_tmp, fetch_source

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x07" * 16000


def _response(status=200, chunks=(VIDEO_BYTES,)):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.iter_content.return_value = list(chunks)
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


def test_decode_plain_base64(pipeline_settings):
    assert decode_base64_payload(base64.b64encode(VIDEO_BYTES).decode()) == VIDEO_BYTES


def test_decode_strips_data_url_prefix_and_whitespace(pipeline_settings):
    encoded = base64.b64encode(VIDEO_BYTES).decode()
    wrapped = "data:video/mp4;base64," + "\n".join(encoded[i:i + 76] for i in range(0, len(encoded), 76))
    assert decode_base64_payload(wrapped) == VIDEO_BYTES


def test_decode_rejects_tiny_buffer(pipeline_settings):
    with pytest.raises(InvalidPayloadError, match="minimum"):
        decode_base64_payload(base64.b64encode(b"tiny").decode())


def test_decode_rejects_garbage(pipeline_settings):
    with pytest.raises(InvalidPayloadError):
        decode_base64_payload("this is *not* base64!!")


def test_decode_to_tmp_writes_one_file(pipeline_settings, tmp_path):
    path, size = decode_base64_to_tmp(base64.b64encode(VIDEO_BYTES).decode(), tmp_path)
    assert size == len(VIDEO_BYTES)
    assert path.read_bytes() == VIDEO_BYTES
    assert list(tmp_path.iterdir()) == [path]


@patch("jobs.utils.requests.get")
def test_download_streams_body_to_file(mock_get, pipeline_settings, tmp_path):
    mock_get.return_value = _response(chunks=(VIDEO_BYTES[:100], b"", VIDEO_BYTES[100:]))

    path, size = download_to_tmp("https://cdn.example.com/clip.mp4", tmp_path)

    assert size == len(VIDEO_BYTES)
    assert path.read_bytes() == VIDEO_BYTES
    assert path.name.startswith("in_") and path.suffix == ".mp4"
    _, kwargs = mock_get.call_args
    assert kwargs["stream"] is True
    assert kwargs["timeout"] == pipeline_settings.DOWNLOAD_TIMEOUT_SECONDS


@patch("jobs.utils.requests.get")
def test_download_http_error_raises(mock_get, pipeline_settings, tmp_path):
    mock_get.return_value = _response(status=404, chunks=())
    with pytest.raises(DownloadError, match="404"):
        download_to_tmp("https://cdn.example.com/missing.mp4", tmp_path)


@patch("jobs.utils.requests.get")
def test_download_network_error_raises(mock_get, pipeline_settings, tmp_path):
    mock_get.side_effect = requests.ConnectionError("connection refused")
    with pytest.raises(DownloadError, match="connection refused"):
        download_to_tmp("https://cdn.example.com/clip.mp4", tmp_path)


@patch("jobs.utils.requests.get")
def test_download_empty_body_raises(mock_get, pipeline_settings, tmp_path):
    mock_get.return_value = _response(chunks=())
    with pytest.raises(DownloadError, match="empty"):
        download_to_tmp("https://cdn.example.com/clip.mp4", tmp_path)


def test_fetch_source_requires_a_source(pipeline_settings, tmp_path):
    with pytest.raises(InvalidPayloadError):
        fetch_source({"caption": "no video"}, tmp_path)


@patch("jobs.utils.download_to_tmp")
def test_fetch_source_prefers_url(mock_download, pipeline_settings, tmp_path):
    mock_download.return_value = (tmp_path / "in.mp4", 10)
    fetch_source({"source_video_url": "https://cdn.example.com/a.mp4"}, tmp_path)
    mock_download.assert_called_once_with("https://cdn.example.com/a.mp4", tmp_path)
