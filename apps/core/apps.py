import logging
import sys
from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate token settings before the process starts serving requests.

        Management commands other than ``runserver`` skip validation so that
        migrations and shells work with partial configuration.
        """
        serving = 'runserver' in sys.argv or (sys.argv and 'gunicorn' in sys.argv[0])
        if not serving:
            return

        self._validate_jwt_configuration()
        logger.info("Startup configuration validated")

    def _validate_jwt_configuration(self):
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured("JWT_SECRET_KEY must be set in environment variables.")

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. Current length: {len(jwt_secret)}."
            )

        if jwt_secret == settings.SECRET_KEY:
            raise ImproperlyConfigured("JWT_SECRET_KEY must be different from SECRET_KEY.")

        if len(set(jwt_secret)) < 16:
            raise ImproperlyConfigured("JWT_SECRET_KEY has insufficient entropy.")
