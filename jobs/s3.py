import time

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from loguru import logger

from .exceptions import UploadError


def get_s3_client():
    """
    SDK client for server-side uploads.
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # e.g. http://127.0.0.1:9000
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
            connect_timeout=settings.S3_CONNECT_TIMEOUT_SECONDS,
            read_timeout=settings.S3_READ_TIMEOUT_SECONDS,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )


def output_key(job_id: str, filename: str | None = None) -> str:
    """jobs/<job_id>/<filename>.mp4 -- the only layout clients rely on."""
    if filename is None:
        filename = f"clip_{int(time.time() * 1000)}.mp4"
    return f"jobs/{job_id}/{filename}"


def object_url(key: str) -> str:
    """
    Public URL of an object, built against the PUBLIC endpoint.
    The bucket is expected to allow anonymous reads.
    """
    base = settings.S3_PUBLIC_ENDPOINT.rstrip("/")
    return f"{base}/{settings.S3_BUCKET}/{key}"


def upload_file(local_path: str, key: str, content_type: str | None = None):
    """
    Upload a single file with an optional Content-Type. PUT on an existing
    key overwrites it.
    """
    s3 = get_s3_client()
    extra = {}
    if content_type:
        extra["ContentType"] = content_type
    try:
        s3.upload_file(str(local_path), settings.S3_BUCKET, key, ExtraArgs=extra or None)
    except (BotoCoreError, ClientError, Boto3Error) as e:
        raise UploadError(f"Upload of {key} failed: {e}") from e


def publish_output(job_id: str, local_path, filename: str | None = None) -> tuple[str, str]:
    """Upload a rendered clip for job_id. Returns (key, public_url)."""
    key = output_key(job_id, filename)
    upload_file(str(local_path), key, content_type="video/mp4")
    url = object_url(key)
    logger.info("[S3] uploaded {} -> {}", job_id, key)
    return key, url
