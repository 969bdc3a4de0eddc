"""
Celery configuration for the hotspot billing platform.
"""
import os
from celery import Celery
from celery.schedules import crontab
from celery.signals import task_prerun, task_postrun, task_failure, task_retry
import logging

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('hotspot')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()

logger = logging.getLogger(__name__)


def _task_context(task_id, task_name, args=None, kwargs=None):
    return {
        'task_id': task_id,
        'task_name': task_name,
        'task_args': str(args)[:200] if args else None,
        'task_kwargs': str(kwargs)[:200] if kwargs else None,
    }


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **extra):
    """Log task start."""
    logger.info(f"Task started: {task.name}", extra=_task_context(task_id, task.name, args, kwargs))


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, retval=None, state=None, **extra):
    """Log task completion."""
    logger.info(
        f"Task completed: {task.name}",
        extra={
            'task_id': task_id,
            'task_name': task.name,
            'state': state,
            'result': str(retval)[:200] if retval else None,
        }
    )


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, einfo=None, **extra):
    """Log task failure and send to Sentry."""
    context = _task_context(task_id, sender.name, args, kwargs)
    logger.error(
        f"Task failed: {sender.name}",
        extra={**context, 'exception': str(exception)[:500] if exception else None},
        exc_info=einfo
    )

    from apps.core.sentry_utils import capture_exception
    capture_exception(exception, task=context)


@task_retry.connect
def task_retry_handler(sender=None, request=None, reason=None, **extra):
    """Log task retry."""
    logger.warning(
        f"Task retry: {sender.name}",
        extra={
            'task_id': getattr(request, 'id', None),
            'task_name': sender.name,
            'reason': str(reason)[:200] if reason else None,
            'retry_count': getattr(request, 'retries', 0),
        }
    )


# Celery Beat Schedule for Periodic Tasks
app.conf.beat_schedule = {
    # Converge every tenant's router with the voucher table
    'reconcile-routers': {
        'task': 'apps.routers.tasks.reconcile_all_tenants',
        'schedule': 900.0,  # Every 15 minutes
    },

    # Materialise expired status for vouchers past their window
    'expire-due-vouchers': {
        'task': 'apps.vouchers.tasks.expire_due_vouchers',
        'schedule': 300.0,  # Every 5 minutes
    },

    # Settle completed payments that have no voucher yet
    'retry-unsettled-payments': {
        'task': 'apps.payments.tasks.retry_unsettled_payments',
        'schedule': 300.0,  # Every 5 minutes
    },

    # Poll the gateway for payments no callback has resolved
    'poll-pending-payments': {
        'task': 'apps.payments.tasks.poll_pending_payments',
        'schedule': 600.0,  # Every 10 minutes
    },

    # Auto-disable and delete-after policies
    'apply-voucher-expiration-policies': {
        'task': 'apps.vouchers.tasks.apply_voucher_expiration_policies',
        'schedule': crontab(hour=2, minute=0),
    },

    # Remove expired users from routers
    'cleanup-router-users': {
        'task': 'apps.routers.tasks.cleanup_expired_vouchers',
        'schedule': crontab(hour=3, minute=0),
    },
}

app.conf.timezone = 'UTC'
