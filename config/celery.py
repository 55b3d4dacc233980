"""Celery application bootstrap for the EVV engine."""

import os
from celery import Celery


os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.development')

app = Celery('config')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
# Fan-out task lives outside the conventional tasks module
app.autodiscover_tasks(['apps.core'], related_name='celery_tasks')

if os.name == 'nt':
    # Windows workers must run in solo mode
    app.conf.worker_pool = 'solo'
