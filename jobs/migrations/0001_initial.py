import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import jobs.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Job",
            fields=[
                ("job_id", models.CharField(default=jobs.models.new_job_id, editable=False, max_length=32, primary_key=True, serialize=False)),
                ("state", models.CharField(choices=[("queued", "Queued"), ("downloading", "Downloading"), ("processing", "Processing"), ("uploading", "Uploading"), ("completed", "Completed"), ("failed", "Failed")], db_index=True, default="queued", max_length=16)),
                ("progress", models.PositiveSmallIntegerField(default=0)),
                ("input", models.JSONField(default=dict)),
                ("error_message", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="SocialAccount",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider", models.CharField(choices=[("tiktok", "Tiktok")], default="tiktok", max_length=16)),
                ("open_id", models.CharField(max_length=128)),
                ("display_name", models.CharField(blank=True, default="", max_length=255)),
                ("avatar_url", models.URLField(blank=True, default="", max_length=1024)),
                ("access_token", models.TextField()),
                ("refresh_token", models.TextField(blank=True, default="")),
                ("scope", models.CharField(blank=True, default="", max_length=512)),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("refresh_expires_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["display_name", "open_id"],
                "constraints": [models.UniqueConstraint(fields=("provider", "open_id"), name="uniq_social_account")],
            },
        ),
        migrations.CreateModel(
            name="JobEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("state", models.CharField(choices=[("queued", "Queued"), ("downloading", "Downloading"), ("processing", "Processing"), ("uploading", "Uploading"), ("completed", "Completed"), ("failed", "Failed")], max_length=16)),
                ("progress", models.PositiveSmallIntegerField(default=0)),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("job", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="events", to="jobs.job")),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="JobOutput",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("idx", models.PositiveSmallIntegerField(default=0)),
                ("url", models.URLField(max_length=1024)),
                ("storage_key", models.CharField(max_length=512)),
                ("caption", models.TextField(blank=True, default="")),
                ("hashtags", models.JSONField(blank=True, default=list)),
                ("transcode_mode", models.CharField(choices=[("encoded", "Encoded"), ("remuxed", "Remuxed"), ("copied", "Copied")], default="encoded", max_length=16)),
                ("social_results", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("job", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="outputs", to="jobs.job")),
            ],
            options={
                "ordering": ["idx"],
                "constraints": [models.UniqueConstraint(fields=("job", "idx"), name="uniq_job_output_idx")],
            },
        ),
    ]
