from __future__ import annotations

from celery import Celery

from receipt_reconciler.core.config import settings

PIPELINE_TASK = "run_pipeline_cycle"


def beat_schedule() -> dict:
    if not settings.scheduler_enabled:
        return {}
    interval = float(settings.scheduler_interval_seconds)
    return {
        "reconcile-receipts": {
            "task": PIPELINE_TASK,
            "schedule": interval,
            # A tick still queued when the next one fires is dropped.
            "options": {"expires": interval},
        }
    }


def make_celery() -> Celery:
    app = Celery("receipt_reconciler", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment == "dev",
        task_eager_propagates=True,
        task_ignore_result=True,
        worker_prefetch_multiplier=1,
        beat_schedule=beat_schedule(),
        timezone="UTC",
    )
    app.autodiscover_tasks(["receipt_reconciler.worker.tasks"])
    return app


celery_app = make_celery()
