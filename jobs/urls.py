from django.urls import path
from .views import (
    CreateJobView,
    HealthView,
    JobDetailView,
    TikTokAccountsView,
    TikTokAuthStartView,
    TikTokAuthUrlView,
    TikTokCallbackView,
    TikTokDebugView,
)

urlpatterns = [
    path("health", HealthView.as_view(), name="health"),
    path("jobs", CreateJobView.as_view(), name="create_job"),
    path("jobs/<str:job_id>", JobDetailView.as_view(), name="job_detail"),
    path("auth/tiktok/url", TikTokAuthUrlView.as_view(), name="tiktok_auth_url"),
    path("auth/tiktok/start", TikTokAuthStartView.as_view(), name="tiktok_auth_start"),
    path("auth/tiktok/callback", TikTokCallbackView.as_view(), name="tiktok_auth_callback"),
    path("auth/tiktok/debug", TikTokDebugView.as_view(), name="tiktok_auth_debug"),
    path("accounts/tiktok", TikTokAccountsView.as_view(), name="tiktok_accounts"),
]
