"""
Django Settings - Development Configuration
"""

from .base import *  # noqa: F401,F403

DEBUG = True

# ALLOWED_HOSTS is set in base.py based on DEBUG flag (accepts all hosts in dev)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'correlation_id': {
            '()': 'apps.core.logging.CorrelationIdFilter',
        },
    },
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
            'filters': ['correlation_id'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': 'DEBUG',
            'propagate': False,
        },
        'security.audit': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

# Development throttle profile: permissive but still active.
DEV_DISABLE_THROTTLING = config("DEV_DISABLE_THROTTLING", default=False, cast=bool)

if DEV_DISABLE_THROTTLING:
    REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
else:
    REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {
        "anon": "5000/hour",
        "user": "30000/hour",
        "login": "30/minute",
    }

# Run submissions in-process unless a broker is configured
CELERY_TASK_ALWAYS_EAGER = config("CELERY_TASK_ALWAYS_EAGER", default=True, cast=bool)

CORS_ALLOW_ALL_ORIGINS = False
