"""
Job state tracker: every job row mutation goes through here so the
event log stays a superset of the row's history.
"""
from typing import Iterable

from django.db import transaction
from django.utils import timezone
from loguru import logger

from .exceptions import JobNotFound, JobStateError
from .models import Job, JobEvent, JobOutput

State = Job.State

# Position in the forward pipeline; FAILED is handled separately.
_ORDER = {
    State.QUEUED: 0,
    State.DOWNLOADING: 1,
    State.PROCESSING: 2,
    State.UPLOADING: 3,
    State.COMPLETED: 4,
}


def _clamp(progress) -> int:
    return max(0, min(100, int(progress)))


def check_transition(current: str, new: str) -> None:
    if current in (State.COMPLETED, State.FAILED):
        raise JobStateError(f"job is {current}; cannot move to {new}")
    if new == State.FAILED:
        return
    if _ORDER[new] < _ORDER[current]:
        raise JobStateError(f"cannot move backwards from {current} to {new}")


def create(input_payload: dict) -> Job:
    with transaction.atomic():
        job = Job.objects.create(input=input_payload, state=State.QUEUED, progress=0)
        JobEvent.objects.create(job=job, state=job.state, progress=0, payload={"event": "created"})
    logger.info("[JOB] {} created", job.job_id)
    return job


def update(job_id: str, state: str, progress, payload: dict | None = None, *, error: str | None = None) -> Job:
    """
    Move job_id to state/progress and append a JobEvent.
    Staying in the current state (progress bump) is allowed; going backwards
    or leaving completed/failed raises JobStateError.
    """
    progress = _clamp(progress)
    with transaction.atomic():
        try:
            job = Job.objects.select_for_update().get(pk=job_id)
        except Job.DoesNotExist as e:
            raise JobNotFound(job_id) from e

        if job.state != state:
            check_transition(job.state, state)
        elif job.is_terminal:
            raise JobStateError(f"job is already {state}")

        job.state = state
        job.progress = progress
        fields = ["state", "progress", "updated_at"]
        if state == State.FAILED:
            job.error_message = (error or "unknown error")[:4000]
            fields.append("error_message")
            # a failed job carries no outputs
            JobOutput.objects.filter(job=job).delete()
        job.save(update_fields=fields)

        event_payload = dict(payload or {})
        if error and state == State.FAILED:
            event_payload.setdefault("error", job.error_message)
        JobEvent.objects.create(job=job, state=state, progress=progress, payload=event_payload)

    logger.debug("[JOB] {} -> {} ({}%)", job_id, state, progress)
    return job


def claim(job_id: str, progress=5) -> Job | None:
    """
    Atomically move a queued job to downloading. Returns None when another
    run already took it; raises JobNotFound for unknown ids.
    """
    progress = _clamp(progress)
    with transaction.atomic():
        taken = Job.objects.filter(pk=job_id, state=State.QUEUED).update(
            state=State.DOWNLOADING,
            progress=progress,
            updated_at=timezone.now(),
        )
        if not taken:
            if not Job.objects.filter(pk=job_id).exists():
                raise JobNotFound(job_id)
            return None
        JobEvent.objects.create(job_id=job_id, state=State.DOWNLOADING, progress=progress, payload={})

    logger.debug("[JOB] {} claimed", job_id)
    return Job.objects.get(pk=job_id)


def set_outputs(job_id: str, outputs: Iterable[dict]) -> list[JobOutput]:
    """Replace the job's outputs with `outputs` (ordered)."""
    with transaction.atomic():
        try:
            job = Job.objects.select_for_update().get(pk=job_id)
        except Job.DoesNotExist as e:
            raise JobNotFound(job_id) from e
        if job.state == State.FAILED:
            raise JobStateError("cannot attach outputs to a failed job")

        JobOutput.objects.filter(job=job).delete()
        rows = [
            JobOutput(
                job=job,
                idx=idx,
                url=o["url"],
                storage_key=o.get("storage_key", ""),
                caption=o.get("caption", ""),
                hashtags=list(o.get("hashtags") or []),
                transcode_mode=o.get("transcode_mode", JobOutput.TranscodeMode.ENCODED),
                social_results=list(o.get("social_results") or []),
            )
            for idx, o in enumerate(outputs)
        ]
        return JobOutput.objects.bulk_create(rows)


def get(job_id: str) -> Job:
    try:
        return Job.objects.prefetch_related("outputs", "events").get(pk=job_id)
    except Job.DoesNotExist as e:
        raise JobNotFound(job_id) from e
