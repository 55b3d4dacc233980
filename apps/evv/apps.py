"""EVV app configuration"""
from django.apps import AppConfig


class EvvConfig(AppConfig):
    name = 'apps.evv'
    verbose_name = 'Electronic Visit Verification'
    default_auto_field = 'django.db.models.BigAutoField'
