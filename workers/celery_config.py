"""Celery configuration for background task processing."""

from datetime import timedelta

from kombu import Exchange, Queue

from core.config import settings

# Broker configuration (Redis)
broker_url = settings.celery_broker_url
result_backend = settings.celery_result_backend

# Task routing and serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Task execution settings
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes hard limit
task_soft_time_limit = 25 * 60  # 25 minutes soft limit

# Worker settings
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Queue configuration with routing
default_exchange = Exchange("pipeline", type="direct")
task_default_queue = "default"
task_queues = (
    Queue("default", exchange=default_exchange, routing_key="default"),
    Queue("sla", exchange=default_exchange, routing_key="sla"),
)

# Task routing
task_routes = {
    "workers.tasks.sla.*": {"queue": "sla"},
}

# Periodic tasks
beat_schedule = {
    "scan-sla-breaches": {
        "task": "workers.tasks.sla.scan_sla_breaches",
        "schedule": timedelta(minutes=settings.sla_scan_interval_minutes),
    },
}

# Result backend settings
result_expires = 3600  # Results expire after 1 hour
