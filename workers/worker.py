"""Worker script to run Celery workers."""

from core.config import settings
from core.middleware.logging import setup_logging
from workers.celery_app import celery_app

# Configure logging
setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)

if __name__ == "__main__":
    # Start worker with an embedded beat scheduler for the SLA scan
    celery_app.worker_main(
        argv=[
            "worker",
            "--beat",
            "--loglevel=info",
            "--concurrency=2",
            "-Q",
            "default,sla",
        ]
    )
