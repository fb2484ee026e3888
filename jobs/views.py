from django.conf import settings
from django.http import HttpResponseRedirect
from loguru import logger
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from . import tiktok, tracker
from .authentication import APIKeyAuthentication
from .exceptions import JobNotFound, TikTokError
from .models import Job, SocialAccount
from .serializers import JobCreateSerializer, JobSerializer, SocialAccountSerializer
from .tasks import process_job


class HealthView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response({"ok": True, "base_url": settings.BASE_URL or None})


class CreateJobView(views.APIView):
    """
    Validates the request, persists a queued Job, and hands it to Celery.
    Returns immediately; clients poll GET /jobs/<job_id>.
    """
    permission_classes = [AllowAny]
    authentication_classes = [APIKeyAuthentication]

    def post(self, request):
        ser = JobCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        job = tracker.create(dict(ser.validated_data))
        try:
            process_job.delay(job.job_id)  # queue background processing
        except Exception as e:
            logger.error("[JOB] could not enqueue {}: {}", job.job_id, e)
            tracker.update(job.job_id, Job.State.FAILED, 0, error="could not enqueue job")
            return Response(
                {"detail": "job queue unavailable", "job_id": job.job_id},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        return Response({"job_id": job.job_id, "state": job.state, "progress": job.progress})


class JobDetailView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        try:
            job = tracker.get(job_id)
        except JobNotFound:
            return Response({"detail": "Not found"}, status=404)
        return Response(JobSerializer(job).data)


# -----------------------------------------------------
# TikTok OAuth
# -----------------------------------------------------
class TikTokAuthUrlView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response({"authorize_url": tiktok.build_authorize_url(tiktok.make_state())})


class TikTokAuthStartView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        if not settings.TIKTOK_CLIENT_KEY:
            return Response({"detail": "Missing client key"}, status=500)
        return HttpResponseRedirect(tiktok.build_authorize_url(tiktok.make_state()))


class TikTokCallbackView(views.APIView):
    """
    Exchanges the authorization code, looks up the user, and stores the
    account. Tokens are persisted, never returned.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        code = request.query_params.get("code")
        state = request.query_params.get("state") or ""
        if request.query_params.get("error"):
            return Response(
                {"detail": request.query_params.get("error_description") or request.query_params["error"]},
                status=400,
            )
        if not code:
            return Response({"detail": "missing code"}, status=400)
        if not tiktok.verify_state(state):
            return Response({"detail": "invalid or expired state"}, status=400)

        try:
            tokens = tiktok.exchange_code(code)
            user = tiktok.fetch_user_info(tokens["access_token"])
            account = tiktok.upsert_account(tokens, user)
        except TikTokError as e:
            logger.warning("[TIKTOK] oauth callback failed: {}", e)
            return Response({"detail": str(e)}, status=status.HTTP_502_BAD_GATEWAY)

        return Response({
            "ok": True,
            "open_id": account.open_id,
            "display_name": account.display_name,
            "scope": account.scope,
        })


class TikTokDebugView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response({
            "client_key_present": bool(settings.TIKTOK_CLIENT_KEY),
            "client_key_len": len(settings.TIKTOK_CLIENT_KEY),
            "client_secret_present": bool(settings.TIKTOK_CLIENT_SECRET),
            "redirect_uri": settings.TIKTOK_REDIRECT_URI,
            "scopes": settings.TIKTOK_SCOPES,
        })


class TikTokAccountsView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = [APIKeyAuthentication]

    def get(self, request):
        accounts = SocialAccount.objects.filter(provider=SocialAccount.Provider.TIKTOK)
        return Response({"accounts": SocialAccountSerializer(accounts, many=True).data})
