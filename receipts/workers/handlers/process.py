from __future__ import annotations

import logging

from receipts.domain.error_taxonomy import ErrorCode, resolve_stage_error
from receipts.domain.errors import DirectoryAuthError, GenerationDependencyError
from receipts.domain.models import MessageType, ProcessResult, QueueDelivery, QueueMessage
from receipts.domain.use_cases.process_rows import BatchScheduler

COMPONENT_ID = "worker.import.process"

logger = logging.getLogger("runtime")


async def process_message(scheduler: BatchScheduler, *, delivery: QueueDelivery, worker_id: str) -> ProcessResult:
    """Run one batch of a job.

    Missing receipt assets and rejected directory credentials keep the job
    RUNNING: a fresh process message is scheduled after dependency_retry_ms
    and this delivery is acked, so the wait never counts toward the queue's
    delivery cap.
    """
    job_id = delivery.message.job_id
    try:
        outcome = await scheduler.run(job_id=job_id, worker_id=f"{worker_id}:{delivery.delivery_id}")
    except GenerationDependencyError as exc:
        return await _reschedule(scheduler, delivery, code="template_unavailable", exc=exc, level=logging.WARNING)
    except DirectoryAuthError as exc:
        return await _reschedule(scheduler, delivery, code="directory_unauthorized", exc=exc, level=logging.ERROR)

    logger.info(
        "import batch processed",
        extra={"job_id": outcome.job_id, "delivery_id": delivery.delivery_id, "detail": outcome.describe()},
    )
    return ProcessResult(success=True, detail=outcome.describe())


async def _reschedule(
    scheduler: BatchScheduler,
    delivery: QueueDelivery,
    *,
    code: ErrorCode,
    exc: Exception,
    level: int,
) -> ProcessResult:
    error_code = resolve_stage_error(stage="process", code=code)
    await scheduler.queue.enqueue(
        QueueMessage(type=MessageType.PROCESS, job_id=delivery.message.job_id),
        delay_ms=scheduler.settings.dependency_retry_ms,
    )
    logger.log(
        level,
        "import dependency unavailable, batch rescheduled",
        extra={
            "job_id": delivery.message.job_id,
            "delivery_id": delivery.delivery_id,
            "error_code": error_code,
            "detail": str(exc),
        },
    )
    return ProcessResult(success=True, detail=f"deferred:{error_code}", error_code=error_code)
