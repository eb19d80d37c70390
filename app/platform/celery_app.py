from celery import Celery
from kombu import Queue

from app.platform.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - scan.worker: single-job execution dispatched by the submit endpoint and
      the periodic queue drain. One browser per worker process, so run the
      consumer with --concurrency=1.
    """
    celery_app = Celery(
        "a11y_scan",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=True,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        result_expires=3600,

        task_routes={
            "app.features.scan.workers.tasks.run_scan_job": {"queue": "scan.worker"},
            "app.features.scan.workers.tasks.drain_scan_queue": {"queue": "scan.worker"},
        },
        task_queues=(
            Queue("default"),
            Queue("scan.worker"),
        ),
        task_default_queue="default",

        worker_prefetch_multiplier=1,  # Fair distribution

        # The job row is the record of outcome; a lost worker leaves it for cleanup_expired
        task_acks_late=True,
        task_reject_on_worker_lost=False,

        beat_schedule={
            "drain-scan-queue": {
                "task": "app.features.scan.workers.tasks.drain_scan_queue",
                "schedule": settings.WORKER_BEAT_INTERVAL_SECONDS,
            },
        },
    )

    celery_app.autodiscover_tasks(["app.features.scan.workers"])

    return celery_app


# Global Celery app instance
celery_app = create_celery_app()
