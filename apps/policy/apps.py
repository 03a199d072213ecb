"""
Policy app configuration.
"""
from django.apps import AppConfig


class PolicyConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.policy'
    verbose_name = 'Signing Policy'

    def ready(self):
        """Import signals when app is ready."""
        import apps.policy.signals  # noqa
