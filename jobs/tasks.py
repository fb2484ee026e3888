import shutil
import tempfile
from datetime import timedelta

import requests
from celery import shared_task
from django.conf import settings
from django.utils import timezone
from loguru import logger

from . import tracker
from .exceptions import JobNotFound
from .ffmpeg import transcode
from .models import Job
from .s3 import publish_output
from .tiktok import build_post_title, publish_to_accounts
from .utils import fetch_source

State = Job.State


def _wants_tiktok(job_input: dict) -> bool:
    return bool(job_input.get("postToTikTok"))


def _enqueue_webhook(job: Job) -> None:
    """Best effort: a broken broker must not fail the job."""
    if not settings.WEBHOOK_URL:
        return
    payload = {
        "job_id": job.job_id,
        "state": job.state,
        "progress": job.progress,
        "error_message": job.error_message or None,
        "output": [
            {"url": o.url, "caption": o.caption, "hashtags": o.hashtags, "tiktok": o.social_results}
            for o in job.outputs.all()
        ],
    }
    try:
        notify_webhook.delay(job.job_id, payload)
    except Exception as e:
        logger.warning("[WEBHOOK] could not enqueue notification for {}: {}", job.job_id, e)


def run_pipeline(job_id: str) -> Job:
    """
    queued -> downloading -> processing -> uploading -> completed.
    Any exception after acceptance ends the job in `failed`; nothing escapes.
    """
    job = tracker.claim(job_id, 5)
    if job is None:
        # redelivered message; the run that claimed the job owns it
        job = tracker.get(job_id)
        logger.warning("[JOB] {} is already {}; skipping", job_id, job.state)
        return job
    job_input = job.input or {}
    tmp_dir = tempfile.mkdtemp(prefix="job_")

    try:
        in_file, size = fetch_source(job_input, tmp_dir)

        tracker.update(job_id, State.PROCESSING, 25, {"source_bytes": size})
        result = transcode(in_file)
        if result.degraded:
            logger.warning("[JOB] {} transcode degraded to {}", job_id, result.mode)

        tracker.update(
            job_id,
            State.UPLOADING,
            75,
            {"transcode_mode": result.mode, **({"transcode_error": result.error[-500:]} if result.error else {})},
        )
        key, url = publish_output(job_id, result.path)

        caption = job_input.get("caption") or ""
        hashtags = job_input.get("hashtags") or []
        social_results = []
        if _wants_tiktok(job_input):
            tracker.update(job_id, State.UPLOADING, 90, {"stage": "tiktok"})
            social_results = publish_to_accounts(
                job_input.get("tiktok_account_ids") or [],
                url,
                build_post_title(caption, hashtags),
            )

        tracker.set_outputs(job_id, [{
            "url": url,
            "storage_key": key,
            "caption": caption,
            "hashtags": hashtags,
            "transcode_mode": result.mode,
            "social_results": social_results,
        }])
        job = tracker.update(job_id, State.COMPLETED, 100)
        logger.info("[JOB] {} completed -> {}", job_id, url)

    except Exception as e:
        logger.exception("[JOB] {} failed", job_id)
        job = tracker.update(job_id, State.FAILED, 100, error=str(e) or e.__class__.__name__)

    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)

    _enqueue_webhook(job)
    return job


@shared_task(bind=True)
def process_job(self, job_id: str):
    try:
        job = run_pipeline(job_id)
    except JobNotFound:
        logger.error("[JOB] {} not found; nothing to process", job_id)
        return {"job_id": job_id, "state": None}
    return {"job_id": job.job_id, "state": job.state}


@shared_task(bind=True, max_retries=None)
def notify_webhook(self, job_id: str, payload: dict):
    """POST the job summary to WEBHOOK_URL, backing off exponentially; gives up quietly."""
    url = settings.WEBHOOK_URL
    if not url:
        return False
    try:
        r = requests.post(url, json=payload, timeout=settings.HTTP_TIMEOUT_SECONDS)
        r.raise_for_status()
    except requests.RequestException as e:
        if self.request.retries >= settings.WEBHOOK_MAX_RETRIES:
            logger.error("[WEBHOOK] giving up on {} after {} retries: {}", job_id, self.request.retries, e)
            return False
        countdown = 2 ** self.request.retries * 5
        logger.warning("[WEBHOOK] {} failed ({}); retry in {}s", job_id, e, countdown)
        raise self.retry(exc=e, countdown=countdown)
    logger.debug("[WEBHOOK] delivered {} ({})", job_id, payload.get("state"))
    return True


@shared_task
def purge_expired_jobs() -> int:
    """Delete finished jobs older than JOB_RETENTION_DAYS (0 disables)."""
    days = settings.JOB_RETENTION_DAYS
    if days <= 0:
        return 0
    cutoff = timezone.now() - timedelta(days=days)
    deleted, _ = Job.objects.filter(
        state__in=[State.COMPLETED, State.FAILED],
        updated_at__lt=cutoff,
    ).delete()
    if deleted:
        logger.info("[JOB] purged {} rows older than {} days", deleted, days)
    return deleted
