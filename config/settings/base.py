"""
Django Settings - Base Configuration
Home-care EVV & Compliance Engine
"""

from datetime import timedelta
from pathlib import Path

from celery.schedules import crontab
from decouple import Csv, config
from django.core.exceptions import ImproperlyConfigured

# =============================================================================
# PATHS
# =============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# =============================================================================
# SECURITY
# =============================================================================

DEBUG = config("DEBUG", default=True, cast=bool)

SECRET_KEY = config(
    "SECRET_KEY",
    default="django-insecure-development-key-change-in-production",
)

# Block unsafe production deploys
if not DEBUG and SECRET_KEY.startswith("django-insecure"):
    raise ImproperlyConfigured("SECRET_KEY must be set in production")

# =============================================================================
# ENVIRONMENT
# =============================================================================

ENVIRONMENT = config("ENVIRONMENT", default="development")

# =============================================================================
# HOSTS
# =============================================================================

if DEBUG:
    ALLOWED_HOSTS = ["*"]
else:
    ALLOWED_HOSTS = config(
        "ALLOWED_HOSTS",
        default="localhost,127.0.0.1",
        cast=Csv(),
    )

BASE_DOMAIN = config("BASE_DOMAIN", default="localhost")

USE_X_FORWARDED_HOST = True
USE_X_FORWARDED_PORT = True

# =============================================================================
# APPLICATIONS
# =============================================================================

INSTALLED_APPS = [
    # Django
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Auth
    "apps.authentication",

    # Domain apps
    "apps.core",
    "apps.evv",

    # Third-party
    "rest_framework",
    "rest_framework_simplejwt",
    "rest_framework_simplejwt.token_blacklist",
    "corsheaders",
    "django_filters",
    "drf_spectacular",
]

# =============================================================================
# MIDDLEWARE
# =============================================================================

MIDDLEWARE = [
    # Security (MUST be first)
    "django.middleware.security.SecurityMiddleware",

    # Static files
    "whitenoise.middleware.WhiteNoiseMiddleware",

    # CORS (must be early)
    "corsheaders.middleware.CorsMiddleware",

    # Sessions MUST come before CSRF
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",

    # CSRF must be BEFORE AuthenticationMiddleware
    "django.middleware.csrf.CsrfViewMiddleware",

    # Auth
    "django.contrib.auth.middleware.AuthenticationMiddleware",

    # Correlation ids, then tenant / org context (safe AFTER auth)
    "apps.core.middleware.CorrelationIdMiddleware",
    "apps.core.middleware.OrganizationMiddleware",

    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

# =============================================================================
# URL / WSGI
# =============================================================================

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

# =============================================================================
# TEMPLATES
# =============================================================================

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
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

# =============================================================================
# DATABASE
# =============================================================================

DATABASE_URL = config("DATABASE_URL", default="sqlite")

if DATABASE_URL.startswith("sqlite"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

else:
    # PostgreSQL (only when explicitly configured)
    POSTGRES_PASSWORD = config("POSTGRES_PASSWORD", default=None)

    if not POSTGRES_PASSWORD:
        raise ImproperlyConfigured(
            "PostgreSQL selected but POSTGRES_PASSWORD is missing"
        )

    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": config("POSTGRES_DB", default="evv"),
            "USER": config("POSTGRES_USER", default="evv"),
            "PASSWORD": POSTGRES_PASSWORD,
            "HOST": config("DB_HOST", default="localhost"),
            "PORT": config("DB_PORT", default="5432"),
            "CONN_MAX_AGE": 60,
        }
    }

# =============================================================================
# CACHE (Redis optional)
# =============================================================================

REDIS_URL = config("REDIS_URL", default=None)
REDIS_CACHE_URL = config("REDIS_CACHE_URL", default=REDIS_URL)

if REDIS_CACHE_URL:
    CACHES = {
        "default": {
            "BACKEND": "django_redis.cache.RedisCache",
            "LOCATION": REDIS_CACHE_URL,
            "OPTIONS": {
                "CLIENT_CLASS": "django_redis.client.DefaultClient",
            },
            "KEY_PREFIX": f"evv:{ENVIRONMENT}",
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": f"evv-{ENVIRONMENT}-cache",
        }
    }

# =============================================================================
# AUTH
# =============================================================================

AUTH_USER_MODEL = "authentication.User"

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# =============================================================================
# I18N
# =============================================================================

LANGUAGE_CODE = "en-us"
TIME_ZONE = config("TIME_ZONE", default="America/Chicago")
USE_I18N = True
USE_TZ = True

# =============================================================================
# STATIC
# =============================================================================

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
STATICFILES_DIRS = [BASE_DIR / "static"] if (BASE_DIR / "static").exists() else []

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# =============================================================================
# DRF
# =============================================================================

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "apps.authentication.authentication.OrganizationAwareJWTAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated"
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "apps.core.renderers.StandardJSONRenderer",
    ],
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "anon": "30/minute",
        "user": "3000/hour",
        "login": "5/minute",
    },
    "DEFAULT_THROTTLE_CACHE": "default",
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
    ],
    "DEFAULT_PAGINATION_CLASS": "apps.core.response.StandardResultsPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "apps.core.exceptions.custom_exception_handler",
}

# =============================================================================
# JWT
# =============================================================================

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "USER_ID_FIELD": "id",
    "USER_ID_CLAIM": "user_id",
}

# =============================================================================
# CELERY
# =============================================================================

CELERY_BROKER_URL = config("CELERY_BROKER_URL", default="redis://127.0.0.1:6379/0")
CELERY_RESULT_BACKEND = config("CELERY_RESULT_BACKEND", default="redis://127.0.0.1:6379/0")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 300          # hard kill after 5 min
CELERY_TASK_SOFT_TIME_LIMIT = 270

FAN_OUT_TASK = "apps.core.celery_tasks.run_for_all_organizations"

CELERY_BEAT_SCHEDULE = {
    # -- EVV --
    "evv.reconcile_offline_entries": {
        "task": FAN_OUT_TASK,
        "schedule": crontab(minute="*/15"),
        "args": ("apps.evv.tasks.reconciliation_tasks.reconcile_offline_entries",),
        "options": {"queue": "evv"},
    },
    "evv.sweep_pending_submissions": {
        "task": FAN_OUT_TASK,
        "schedule": crontab(minute="*/10"),
        "args": ("apps.evv.tasks.submission_tasks.sweep_pending_submissions",),
        "options": {"queue": "evv"},
    },
    "evv.expire_stale_amendments": {
        "task": FAN_OUT_TASK,
        "schedule": crontab(hour=2, minute=0),     # daily
        "args": ("apps.evv.tasks.reconciliation_tasks.expire_stale_amendments",),
        "options": {"queue": "evv"},
    },
}

# =============================================================================
# CORS
# =============================================================================

CORS_ALLOWED_ORIGINS = config("CORS_ALLOWED_ORIGINS", default="http://localhost:3000", cast=Csv())

# =============================================================================
# EVV ENGINE
# =============================================================================

EVV_SUBMISSION_MAX_ATTEMPTS = config("EVV_SUBMISSION_MAX_ATTEMPTS", default=5, cast=int)
EVV_SUBMISSION_RETRY_BASE_SECONDS = config("EVV_SUBMISSION_RETRY_BASE_SECONDS", default=60, cast=int)
EVV_SUBMISSION_RETRY_MAX_SECONDS = config("EVV_SUBMISSION_RETRY_MAX_SECONDS", default=3600, cast=int)
EVV_AGGREGATOR_TIMEOUT_SECONDS = config("EVV_AGGREGATOR_TIMEOUT_SECONDS", default=15, cast=float)

EVV_RECONCILIATION_WINDOW_HOURS = config("EVV_RECONCILIATION_WINDOW_HOURS", default=24, cast=int)
EVV_LATE_SUBMISSION_HOURS = config("EVV_LATE_SUBMISSION_HOURS", default=24, cast=int)
EVV_AMENDMENT_EXPIRY_DAYS = config("EVV_AMENDMENT_EXPIRY_DAYS", default=30, cast=int)

EVV_AGGREGATORS = {
    "HHAEXCHANGE": {
        "endpoint": config("HHAEXCHANGE_ENDPOINT", default="https://api.hhaexchange.com/evv/v1/visits"),
        "credential": config("HHAEXCHANGE_API_KEY", default=""),
    },
    "SANDATA": {
        "endpoint": config("SANDATA_ENDPOINT", default="https://api.sandata.com/evv/v2/visits"),
        "credential": config("SANDATA_API_TOKEN", default=""),
    },
    "TELLUS": {
        "endpoint": config("TELLUS_ENDPOINT", default="https://api.tellus.com/evv/visits"),
        "credential": config("TELLUS_API_KEY", default=""),
    },
}

# Dotted paths; empty means the ORM-backed defaults in apps.evv.providers
EVV_PROVIDERS = {}

# Extra jurisdiction rows layered over the built-in table
EVV_JURISDICTION_OVERRIDES = []

# =============================================================================
# API DOCS
# =============================================================================

ENABLE_API_DOCS = config("ENABLE_API_DOCS", default=DEBUG, cast=bool)

SPECTACULAR_SETTINGS = {
    "TITLE": "EVV Compliance API",
    "DESCRIPTION": "Electronic Visit Verification for home-care agencies",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "SCHEMA_PATH_PREFIX": r"/api/v1",
    "COMPONENT_SPLIT_REQUEST": True,
    "SCHEMA_COERCE_PATH_PK_SUFFIX": True,
    "SCHEMA_COERCE_METHOD_NAMES": True,
    "DISABLE_ERRORS_AND_WARNINGS": False,
    "ENUM_NAME_OVERRIDES": {
        "SubmissionStatusEnum": "apps.evv.models.SubmittableRecord.SUBMISSION_STATUS_CHOICES",
        "PayorApprovalStatusEnum": "apps.evv.models.SubmittableRecord.PAYOR_STATUS_CHOICES",
    },
}
