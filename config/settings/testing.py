"""
Django Settings - Testing Configuration
"""

from .base import *  # noqa: F401,F403

DEBUG = False
TESTING = True

# Use faster password hasher
PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

# Throttling stays on with limits no test reaches
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {
    "anon": "20000/hour",
    "user": "200000/hour",
    "login": "300/minute",
}

# Use sync Celery
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

# Fast deterministic in-process cache for tests.
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "evv-tests-cache",
    }
}

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

# Aggregator HTTP is mocked in tests; credentials only need to be present
EVV_AGGREGATORS = {
    "HHAEXCHANGE": {"endpoint": "https://hhax.test/visits", "credential": "test-hhax-key"},
    "SANDATA": {"endpoint": "https://sandata.test/visits", "credential": "test-sandata-token"},
    "TELLUS": {"endpoint": "https://tellus.test/visits", "credential": "test-tellus-key"},
}
EVV_SUBMISSION_MAX_ATTEMPTS = 5
EVV_JURISDICTION_OVERRIDES = []

# Disable logging during tests
LOGGING = {}
