import base64
import binascii
import re
from pathlib import Path
from uuid import uuid4

import requests
from django.conf import settings
from loguru import logger

from .exceptions import DownloadError, InvalidPayloadError

_DATA_URL_PREFIX = re.compile(r"^data:[^,]*;base64,", re.IGNORECASE)
_CHUNK = 1024 * 1024


def _tmp_name(tmp_dir) -> Path:
    return Path(tmp_dir) / f"in_{uuid4().hex[:12]}.mp4"


def download_to_tmp(url: str, tmp_dir) -> tuple[Path, int]:
    """Stream `url` into a fresh file under tmp_dir. Returns (path, bytes)."""
    if not url.lower().split("?", 1)[0].endswith(".mp4"):
        logger.warning("[FETCH] source url does not look like an .mp4: {}", url)

    dest = _tmp_name(tmp_dir)
    size = 0
    try:
        with requests.get(
            url,
            stream=True,
            allow_redirects=True,
            timeout=settings.DOWNLOAD_TIMEOUT_SECONDS,
        ) as r:
            if not r.ok:
                raise DownloadError(f"Download failed {r.status_code}")
            with open(dest, "wb") as f:
                for chunk in r.iter_content(chunk_size=_CHUNK):
                    if chunk:
                        f.write(chunk)
                        size += len(chunk)
    except requests.RequestException as e:
        raise DownloadError(f"Download failed: {e}") from e

    if size == 0:
        raise DownloadError("Download failed: empty body")
    logger.info("[FETCH] downloaded {} bytes to {}", size, dest.name)
    return dest, size


def decode_base64_payload(payload: str) -> bytes:
    """Decode a bare or data:-prefixed base64 video body."""
    body = _DATA_URL_PREFIX.sub("", payload.strip(), count=1)
    body = "".join(body.split())
    try:
        raw = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPayloadError(f"source_video_base64 is not valid base64: {e}") from e

    if len(raw) < settings.MIN_BASE64_BYTES:
        raise InvalidPayloadError(
            f"decoded video is only {len(raw)} bytes (minimum {settings.MIN_BASE64_BYTES})"
        )
    return raw


def decode_base64_to_tmp(payload: str, tmp_dir) -> tuple[Path, int]:
    raw = decode_base64_payload(payload)
    dest = _tmp_name(tmp_dir)
    dest.write_bytes(raw)
    logger.info("[FETCH] decoded {} bytes to {}", len(raw), dest.name)
    return dest, len(raw)


def fetch_source(job_input: dict, tmp_dir) -> tuple[Path, int]:
    """Materialize the job's source video (URL or base64) as a local file."""
    if job_input.get("source_video_url"):
        return download_to_tmp(job_input["source_video_url"], tmp_dir)
    if job_input.get("source_video_base64"):
        return decode_base64_to_tmp(job_input["source_video_base64"], tmp_dir)
    raise InvalidPayloadError("job has no source video")
