import os

from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "rewardhub.settings")

app = Celery("rewardhub")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.task_routes = {
    "rewards.tasks.flag_stale_redemptions": {"queue": "rewards"},
    "*": {"queue": "default"},
}

app.conf.task_default_queue = "default"

app.conf.update(
    # Serialization settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone settings
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Retry settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    task_queues={
        "default": {
            "exchange": "default",
            "routing_key": "default",
        },
        "rewards": {
            "exchange": "rewards",
            "routing_key": "rewards",
        },
    },
)

app.conf.beat_schedule = {
    # Surface redemptions stuck between debit and extension to operators.
    "flag-stale-redemptions": {
        "task": "rewards.tasks.flag_stale_redemptions",
        "schedule": crontab(minute="*/10"),
        "options": {"queue": "rewards"},
    },
}
