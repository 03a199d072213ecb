"""
Celery configuration for the federation policy engine.
"""
import logging
import os
from celery import Celery
from celery.signals import task_prerun, task_postrun, task_failure
import sentry_sdk

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('federation_policy')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **extra):
    logger.info(
        f"Task started: {task.name}",
        extra={
            'task_id': task_id,
            'task_name': task.name,
            'task_args': str(args)[:200] if args else None,
            'task_kwargs': str(kwargs)[:200] if kwargs else None,
        }
    )


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, retval=None, **extra):
    logger.info(
        f"Task completed: {task.name}",
        extra={
            'task_id': task_id,
            'task_name': task.name,
            'result': str(retval)[:200] if retval else None,
        }
    )


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, einfo=None, **extra):
    """Log task failure and send it to Sentry."""
    logger.error(
        f"Task failed: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'exception': str(exception)[:500] if exception else None,
        },
        exc_info=einfo.exc_info if einfo else None
    )
    sentry_sdk.capture_exception(exception)


app.conf.beat_schedule = {
    'expire-stale-approval-requests': {
        'task': 'apps.policy.tasks.expire_stale_approval_requests',
        'schedule': 900.0,  # Every 15 minutes
    },
    'prune-daily-action-counters': {
        'task': 'apps.policy.tasks.prune_daily_action_counters',
        'schedule': 86400.0,  # Daily
    },
}

app.conf.timezone = 'UTC'
