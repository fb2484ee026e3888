import secrets
from datetime import timedelta

from django.db import models
from django.utils import timezone


def new_job_id() -> str:
    return f"job_{secrets.token_hex(8)}"


class Job(models.Model):
    class State(models.TextChoices):
        QUEUED = "queued"
        DOWNLOADING = "downloading"
        PROCESSING = "processing"
        UPLOADING = "uploading"
        COMPLETED = "completed"
        FAILED = "failed"

    job_id = models.CharField(primary_key=True, max_length=32, default=new_job_id, editable=False)
    state = models.CharField(max_length=16, choices=State.choices, default=State.QUEUED, db_index=True)
    progress = models.PositiveSmallIntegerField(default=0)  # 0..100, set per stage
    input = models.JSONField(default=dict)                  # original request payload, never rewritten
    error_message = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.job_id} ({self.state})"

    @property
    def is_terminal(self) -> bool:
        return self.state in (self.State.COMPLETED, self.State.FAILED)


class JobOutput(models.Model):
    class TranscodeMode(models.TextChoices):
        ENCODED = "encoded"
        REMUXED = "remuxed"
        COPIED = "copied"

    job = models.ForeignKey(Job, related_name="outputs", on_delete=models.CASCADE)
    idx = models.PositiveSmallIntegerField(default=0)
    url = models.URLField(max_length=1024)
    storage_key = models.CharField(max_length=512)
    caption = models.TextField(blank=True, default="")
    hashtags = models.JSONField(default=list, blank=True)
    transcode_mode = models.CharField(max_length=16, choices=TranscodeMode.choices, default=TranscodeMode.ENCODED)
    # [{account_id, ok, publish_id?, error?}]
    social_results = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["idx"]
        constraints = [
            models.UniqueConstraint(fields=["job", "idx"], name="uniq_job_output_idx"),
        ]


class JobEvent(models.Model):
    """Append-only history of job state/progress changes."""

    job = models.ForeignKey(Job, related_name="events", on_delete=models.CASCADE)
    state = models.CharField(max_length=16, choices=Job.State.choices)
    progress = models.PositiveSmallIntegerField(default=0)
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["created_at", "id"]


class SocialAccount(models.Model):
    class Provider(models.TextChoices):
        TIKTOK = "tiktok"

    provider = models.CharField(max_length=16, choices=Provider.choices, default=Provider.TIKTOK)
    open_id = models.CharField(max_length=128)
    display_name = models.CharField(max_length=255, blank=True, default="")
    avatar_url = models.URLField(max_length=1024, blank=True, default="")

    access_token = models.TextField()
    refresh_token = models.TextField(blank=True, default="")
    scope = models.CharField(max_length=512, blank=True, default="")
    expires_at = models.DateTimeField(null=True, blank=True)
    refresh_expires_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["display_name", "open_id"]
        constraints = [
            models.UniqueConstraint(fields=["provider", "open_id"], name="uniq_social_account"),
        ]

    def __str__(self):
        return f"{self.provider}:{self.display_name or self.open_id}"

    def access_token_expired(self, leeway_seconds: int = 0) -> bool:
        if self.expires_at is None:
            return False
        return timezone.now() + timedelta(seconds=leeway_seconds) >= self.expires_at

    def refresh_token_usable(self) -> bool:
        if not self.refresh_token:
            return False
        return self.refresh_expires_at is None or timezone.now() < self.refresh_expires_at
