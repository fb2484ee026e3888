from pathlib import Path
import os
import sys
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured
from loguru import logger

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ImproperlyConfigured(f"Environment variable {name} must be an integer, got {raw!r}") from e

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# In production (DEBUG=False) you must set a strong secret in .env
SECRET_KEY = env("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me", required=not DEBUG)

# Keep hosts explicit by default
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",") if h.strip()]

# Public base URL of this service (reported by /health)
BASE_URL = env("BASE_URL", "")

# Shared secret expected in the x-api-key header on job submission
API_KEY = env("API_KEY", "")

# -----------------------------------------------------
# Logging (loguru)
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()
logger.remove()
logger.add(sys.stderr, level=LOG_LEVEL)

# -----------------------------------------------------
# Applications
# -----------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.staticfiles",

    # Third-party
    "rest_framework",

    # Local
    "jobs",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "clip_publisher.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
            ],
        },
    },
]

WSGI_APPLICATION = "clip_publisher.wsgi.application"

# -----------------------------------------------------
# Database (Postgres if DB_* env vars set, else SQLite)
# -----------------------------------------------------
if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env("DB_NAME", "clip_publisher"),
            "USER": env("DB_USER", "clip_user"),
            "PASSWORD": env("DB_PASSWORD", ""),
            "HOST": env("DB_HOST", "127.0.0.1"),
            "PORT": env("DB_PORT", "5432"),
            "CONN_MAX_AGE": env_int("DB_CONN_MAX_AGE", 60),  # keep-alive
            "OPTIONS": {
                **({"sslmode": os.getenv("DB_SSLMODE")} if os.getenv("DB_SSLMODE") else {})
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

# -----------------------------------------------------
# Internationalization
# -----------------------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# Base64 video bodies arrive inline, so the request cap is far above Django's default
MAX_REQUEST_BYTES = env_int("MAX_REQUEST_BYTES", 50 * 1024 * 1024)
DATA_UPLOAD_MAX_MEMORY_SIZE = MAX_REQUEST_BYTES

# -----------------------------------------------------
# Django REST Framework
# -----------------------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
        "rest_framework.renderers.BrowsableAPIRenderer" if DEBUG else "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
    ],
    "UNAUTHENTICATED_USER": None,
}

# -----------------------------------------------------
# Celery / Redis
# -----------------------------------------------------
CELERY_BROKER_URL = env("CELERY_BROKER_URL", "redis://127.0.0.1:6379/0")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", "redis://127.0.0.1:6379/0")
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = env_int("CELERY_TASK_TIME_LIMIT", 60 * 15)  # seconds
# raises SoftTimeLimitExceeded inside the task so the job can still be marked failed
CELERY_TASK_SOFT_TIME_LIMIT = env_int("CELERY_TASK_SOFT_TIME_LIMIT", CELERY_TASK_TIME_LIMIT - 60)
if not 0 < CELERY_TASK_SOFT_TIME_LIMIT < CELERY_TASK_TIME_LIMIT:
    raise ImproperlyConfigured("CELERY_TASK_SOFT_TIME_LIMIT must be positive and below CELERY_TASK_TIME_LIMIT")
CELERY_TASK_ROUTES = {
    "jobs.tasks.process_job": {"queue": "media"},
    "jobs.tasks.notify_webhook": {"queue": "notifications"},
}
CELERY_BEAT_SCHEDULE = {
    "purge-expired-jobs": {
        "task": "jobs.tasks.purge_expired_jobs",
        "schedule": 60 * 60,
    },
}

# -----------------------------------------------------
# Default PK type
# -----------------------------------------------------
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------------------
# S3-compatible object storage (env-driven; no hardcoded secrets)
# -----------------------------------------------------
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or "http://127.0.0.1:9000"  # fine for local
S3_PUBLIC_ENDPOINT = os.getenv("S3_PUBLIC_ENDPOINT", S3_ENDPOINT_URL)
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_BUCKET = os.getenv("S3_BUCKET", "outputs")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")          # set in .env for local
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")          # set in .env for local
S3_CONNECT_TIMEOUT_SECONDS = env_int("S3_CONNECT_TIMEOUT_SECONDS", 10)
S3_READ_TIMEOUT_SECONDS = env_int("S3_READ_TIMEOUT_SECONDS", 120)

# -----------------------------------------------------
# Pipeline
# -----------------------------------------------------
FFMPEG_BIN = env("FFMPEG_BIN", "ffmpeg")
TRANSCODE_TIMEOUT_SECONDS = env_int("TRANSCODE_TIMEOUT_SECONDS", 600)
# stream copy is I/O bound; a stuck remux gets far less than the encode
TRANSCODE_REMUX_TIMEOUT_SECONDS = env_int("TRANSCODE_REMUX_TIMEOUT_SECONDS", 120)
TRANSCODE_CONCURRENCY = env_int("TRANSCODE_CONCURRENCY", 1)
TRANSCODE_PRESET = env("TRANSCODE_PRESET", "ultrafast")
TRANSCODE_CRF = env_int("TRANSCODE_CRF", 21)
TRANSCODE_AUDIO = env("TRANSCODE_AUDIO", "copy")  # "copy" | "aac"
TRANSCODE_JITTER = env_bool("TRANSCODE_JITTER", False)
if TRANSCODE_AUDIO not in {"copy", "aac"}:
    raise ImproperlyConfigured(f"TRANSCODE_AUDIO must be 'copy' or 'aac', got {TRANSCODE_AUDIO!r}")
if TRANSCODE_TIMEOUT_SECONDS + TRANSCODE_REMUX_TIMEOUT_SECONDS >= CELERY_TASK_SOFT_TIME_LIMIT:
    raise ImproperlyConfigured("encode + remux timeouts must fit inside CELERY_TASK_SOFT_TIME_LIMIT")

DOWNLOAD_TIMEOUT_SECONDS = env_int("DOWNLOAD_TIMEOUT_SECONDS", 120)
HTTP_TIMEOUT_SECONDS = env_int("HTTP_TIMEOUT_SECONDS", 30)
MIN_BASE64_BYTES = env_int("MIN_BASE64_BYTES", 10 * 1024)

# 0 keeps finished jobs forever
JOB_RETENTION_DAYS = env_int("JOB_RETENTION_DAYS", 0)

# -----------------------------------------------------
# Webhook notifications (best effort)
# -----------------------------------------------------
WEBHOOK_URL = env("WEBHOOK_URL", "")
WEBHOOK_MAX_RETRIES = env_int("WEBHOOK_MAX_RETRIES", 3)

# -----------------------------------------------------
# TikTok
# -----------------------------------------------------
TIKTOK_CLIENT_KEY = env("TIKTOK_CLIENT_KEY", "")
TIKTOK_CLIENT_SECRET = env("TIKTOK_CLIENT_SECRET", "")
TIKTOK_REDIRECT_URI = env("TIKTOK_REDIRECT_URI", f"{BASE_URL.rstrip('/')}/auth/tiktok/callback" if BASE_URL else "")
TIKTOK_SCOPES = [s.strip() for s in env("TIKTOK_SCOPES", "user.info.basic,video.upload,video.publish").split(",") if s.strip()]
TIKTOK_TOKEN_LEEWAY_SECONDS = env_int("TIKTOK_TOKEN_LEEWAY_SECONDS", 60)
