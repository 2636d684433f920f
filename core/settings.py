import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from persistent data volume
DATA_DIR = Path(os.environ.get("DATA_DIR", BASE_DIR / "data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)

env_file = DATA_DIR / ".env"
if env_file.exists():
    load_dotenv(env_file)


def env_bool(name, default):
    return os.environ.get(name, str(default)).lower() in ("true", "1", "yes")


SECRET_KEY = os.environ.get(
    "SECRET_KEY",
    "django-insecure-dev-key-change-me-in-production",
)

DEBUG = env_bool("DEBUG", True)

ALLOWED_HOSTS = [
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "rankkeeper.private",
]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rankkeeper",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "core.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "core.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": DATA_DIR / "db.sqlite3",
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# CSRF trusted origins for local Docker access
CSRF_TRUSTED_ORIGINS = [
    "http://localhost",
    "http://127.0.0.1",
    "http://rankkeeper.private",
    "http://localhost:9090",
    "http://127.0.0.1:9090",
    "http://rankkeeper.private:9090",
]

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "{asctime} {levelname} [{name}] {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "rankkeeper": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

# ── RankKeeper ──────────────────────────────────────────────────────────────

# Cloud-synced folder used as the remote copy; unset means local only.
RANKKEEPER_REMOTE_DIR = os.environ.get("REMOTE_STORE_DIR") or None
RANKKEEPER_REMOTE_QUOTA_BYTES = int(os.environ.get("REMOTE_STORE_QUOTA_BYTES", 1024 * 1024))

RANKKEEPER_REQUEST_DELAY = float(os.environ.get("REQUEST_DELAY_SECONDS", 0.5))
RANKKEEPER_RANK_SEARCH_LIMIT = int(os.environ.get("RANK_SEARCH_LIMIT", 200))
RANKKEEPER_HTTP_TIMEOUT = int(os.environ.get("HTTP_TIMEOUT", 30))
RANKKEEPER_DEFAULT_COUNTRY = os.environ.get("DEFAULT_COUNTRY", "us").lower()

RANKKEEPER_SCHEDULER_ENABLED = env_bool("SCHEDULER_ENABLED", True)
RANKKEEPER_SYNC_POLL_SECONDS = int(os.environ.get("SYNC_POLL_SECONDS", 60))
RANKKEEPER_AUTO_REFRESH_HOURS = int(os.environ.get("AUTO_REFRESH_HOURS", 24))
# Removal records older than this are dropped after a sync
RANKKEEPER_TOMBSTONE_RETENTION_DAYS = int(os.environ.get("TOMBSTONE_RETENTION_DAYS", 90))
