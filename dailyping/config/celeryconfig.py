from datetime import timedelta

from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["dailyping.tasks"]

# Timezone Configuration
# Per-user local time is resolved inside the evaluator, the beat clock stays in UTC.
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 10 * 60  # 10 minutes
task_soft_time_limit = 8 * 60  # 8 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Ticks are never retried; the next tick and the claim ledger cover a lost run.
task_acks_late = False
task_default_retry_delay = 60
task_max_retries = 0

beat_schedule = {
    # Trigger evaluation - every minute
    "notification-trigger-tick": {
        "task": "dailyping.tasks.cron.trigger_tick.trigger_tick_task",
        "schedule": timedelta(seconds=settings.TICK_INTERVAL_SECONDS),
        "args": ("trigger_tick_cron",),
        "options": {"expires": settings.TICK_INTERVAL_SECONDS},
    },
    # Subscription reconciliation - independent cadence
    "subscription-reconciliation": {
        "task": "dailyping.tasks.cron.subscription_reconciliation.subscription_reconciliation_task",
        "schedule": timedelta(minutes=settings.RECONCILIATION_INTERVAL_MINUTES),
        "args": ("subscription_reconciliation_cron",),
    },
}

# Default Queue
task_default_queue = "dailyping"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
