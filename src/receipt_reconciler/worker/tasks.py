from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import receipt_reconciler.models  # noqa: F401
# isort: on

import time

from receipt_reconciler.core.logging import (
    get_logger,
    log_context,
    log_event,
    log_exception,
    monotonic_ms,
)
from receipt_reconciler.worker.celery_app import PIPELINE_TASK, celery_app

logger = get_logger(__name__)


@celery_app.task(name=PIPELINE_TASK, bind=True)
def run_pipeline_cycle_task(self) -> dict | None:
    from receipt_reconciler.modules.pipeline.service import get_pipeline

    task_id = getattr(self.request, "id", None)
    start = time.monotonic()
    with log_context(celery_task_id=task_id):
        log_event(logger, "celery.task.start", task_name=PIPELINE_TASK)
        try:
            result = get_pipeline().run_cycle()
        except Exception:
            log_exception(
                logger,
                "celery.task.error",
                task_name=PIPELINE_TASK,
                duration_ms=monotonic_ms(start),
            )
            raise
        log_event(
            logger,
            "celery.task.finish",
            task_name=PIPELINE_TASK,
            skipped=result is None,
            duration_ms=monotonic_ms(start),
        )
        return result.to_dict() if result else None
