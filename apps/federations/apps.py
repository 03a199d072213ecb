"""
Federations app configuration.
"""
from django.apps import AppConfig


class FederationsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.federations'
    verbose_name = 'Federations'
