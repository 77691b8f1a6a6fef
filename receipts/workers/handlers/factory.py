from __future__ import annotations

from receipts.domain.models import MessageType, ProcessResult, QueueDelivery
from receipts.domain.use_cases.process_rows import BatchScheduler
from receipts.roles import validate_role
from receipts.workers.handlers import parse, process
from receipts.workers.handlers.deps import WorkerDeps
from receipts.workers.loop import MessageHandler


def build_batch_scheduler(deps: WorkerDeps) -> BatchScheduler:
    return BatchScheduler(
        repository=deps.repository,
        directory=deps.directory,
        artifacts=deps.artifact_repository,
        renderer=deps.renderer,
        queue=deps.queue,
        settings=deps.settings,
    )


def build_message_handler(role: str, deps: WorkerDeps, *, scheduler: BatchScheduler | None = None) -> MessageHandler:
    batch_scheduler = scheduler or build_batch_scheduler(deps)

    async def _parse(delivery: QueueDelivery) -> ProcessResult:
        return await parse.process_message(deps, delivery=delivery)

    async def _process(delivery: QueueDelivery) -> ProcessResult:
        return await process.process_message(batch_scheduler, delivery=delivery, worker_id=role)

    available: dict[MessageType, MessageHandler] = {
        MessageType.PARSE: _parse,
        MessageType.PROCESS: _process,
    }
    consumed = validate_role(role).consumes
    handlers = {message_type: handler for message_type, handler in available.items() if message_type in consumed}

    async def _dispatch(delivery: QueueDelivery) -> ProcessResult:
        handler = handlers.get(delivery.message.type)
        if handler is None:
            return ProcessResult(
                success=False,
                detail=f"unsupported message type: {delivery.message.type}",
                error_code="internal_error",
                retry_classification="terminal",
            )
        return await handler(delivery)

    return _dispatch
