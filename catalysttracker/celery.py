import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'catalysttracker.settings')

app = Celery('catalysttracker')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.broker_connection_retry_on_startup = True

from celery.schedules import crontab

app.conf.beat_schedule = {
    'deactivate-stale-catalysts': {
        'task': 'pricewatch.tasks.deactivate_stale_catalysts',
        'schedule': crontab(minute=0, hour='*/6'),
    },
}

app.conf.task_routes = {
    'pricewatch.tasks.*': {'queue': 'celery'},
}
