"""
Signal handlers for policy defaults.
"""
import logging
from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from apps.federations.models import Federation
from apps.policy.defaults import seed_default_permissions
from apps.policy.models import AuditLog

logger = logging.getLogger(__name__)


@receiver(post_save, sender=Federation)
def seed_federation_permissions(sender, instance, created, **kwargs):
    """
    Seed default role rules when a federation is created.

    Runs in its own atomic block so a failure leaves no partial rule set.
    """
    if not created:
        return

    try:
        with transaction.atomic():
            seeded = seed_default_permissions(instance)
            AuditLog.log_action(
                action='federation_permissions_seeded',
                federation=instance,
                target_type='Federation',
                target_id=instance.id,
                metadata={'roles': seeded},
            )
        logger.info(
            f"Seeded default permissions for federation {instance.slug}",
            extra={'federation_id': str(instance.id), 'roles': seeded}
        )
    except Exception as e:
        logger.error(
            f"Failed to seed default permissions for federation {instance.slug}: {e}",
            extra={'federation_id': str(instance.id)},
            exc_info=True
        )
