"""Authentication app configuration"""
from django.apps import AppConfig


class AuthenticationConfig(AppConfig):
    name = 'apps.authentication'
    default_auto_field = 'django.db.models.BigAutoField'

    def ready(self):
        # Registers the drf-spectacular extension for the JWT scheme
        import apps.authentication.authentication  # noqa: F401
