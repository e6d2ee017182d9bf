"""Celery app factory."""

from celery import Celery

celery_app = Celery("pipeline", include=["workers.tasks.sla"])
celery_app.config_from_object("workers.celery_config")
