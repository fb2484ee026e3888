from rest_framework import serializers

from .models import Job, JobEvent, JobOutput, SocialAccount

MAX_CAPTION_LEN = 2200


class JobCreateSerializer(serializers.Serializer):
    source_video_url = serializers.URLField(required=False, allow_blank=True, max_length=2048)
    source_video_base64 = serializers.CharField(required=False, allow_blank=True, trim_whitespace=True)
    caption = serializers.CharField(required=False, allow_blank=True, max_length=MAX_CAPTION_LEN, default="")
    hashtags = serializers.ListField(
        child=serializers.CharField(max_length=100),
        required=False,
        allow_empty=True,
        default=list,
    )
    postToTikTok = serializers.BooleanField(required=False, default=False)
    tiktok_account_ids = serializers.ListField(
        child=serializers.CharField(max_length=128),
        required=False,
        allow_empty=True,
        default=list,
    )

    def validate_source_video_url(self, value):
        if value and not value.lower().startswith(("http://", "https://")):
            raise serializers.ValidationError("source_video_url must be http(s).")
        return value

    def validate_hashtags(self, value):
        """
        Strip leading '#', drop empties.
        De-duplicate while preserving order.
        """
        seen = set()
        deduped = []
        for tag in value:
            tag = tag.strip().lstrip("#").strip()
            if tag and tag not in seen:
                seen.add(tag)
                deduped.append(tag)
        return deduped

    def validate(self, attrs):
        has_url = bool(attrs.get("source_video_url"))
        has_b64 = bool(attrs.get("source_video_base64"))
        if not has_url and not has_b64:
            raise serializers.ValidationError("source_video_url or source_video_base64 required")
        if has_url and has_b64:
            raise serializers.ValidationError("send either source_video_url or source_video_base64, not both")
        # keep only the populated source field
        for key in ("source_video_url", "source_video_base64"):
            if not attrs.get(key):
                attrs.pop(key, None)
        return attrs


class JobOutputSerializer(serializers.ModelSerializer):
    tiktok = serializers.JSONField(source="social_results")

    class Meta:
        model = JobOutput
        fields = ["url", "storage_key", "caption", "hashtags", "transcode_mode", "tiktok"]


class JobEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = JobEvent
        fields = ["state", "progress", "payload", "created_at"]


class JobSerializer(serializers.ModelSerializer):
    input = serializers.SerializerMethodField()
    output = JobOutputSerializer(source="outputs", many=True, read_only=True)
    events = JobEventSerializer(many=True, read_only=True)
    error_message = serializers.SerializerMethodField()

    class Meta:
        model = Job
        fields = [
            "job_id",
            "state",
            "progress",
            "input",
            "output",
            "error_message",
            "events",
            "created_at",
            "updated_at",
        ]

    def get_input(self, job):
        # never echo an inline video back to pollers
        data = dict(job.input or {})
        if "source_video_base64" in data:
            data["source_video_base64"] = f"<{len(data['source_video_base64'] or '')} chars>"
        return data

    def get_error_message(self, job):
        return job.error_message or None


class SocialAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = SocialAccount
        fields = ["open_id", "display_name", "avatar_url", "scope", "expires_at", "updated_at"]
