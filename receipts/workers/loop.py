from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from receipts.domain.contracts import ImportQueue, ImportRepository
from receipts.domain.error_taxonomy import classify_error
from receipts.domain.errors import DomainInvariantError
from receipts.domain.models import MessageType, ProcessResult, QueueDelivery, QueueMessage

MessageHandler = Callable[[QueueDelivery], Awaitable[ProcessResult]]
logger = logging.getLogger("runtime")


@dataclass
class QueueWorkerLoop:
    role: str
    queue: ImportQueue
    repository: ImportRepository
    process: MessageHandler
    message_lease_seconds: int = 30
    heartbeat_interval_ms: int = 10000
    retry_delay_ms: int = 2000

    async def run_once(self) -> bool:
        delivery = await self.queue.receive(consumer_id=self.role, lease_seconds=self.message_lease_seconds)
        if delivery is None:
            return False

        lease_lost = False
        stop_heartbeat = asyncio.Event()

        async def _heartbeat_loop() -> None:
            nonlocal lease_lost
            interval_seconds = max(self.heartbeat_interval_ms, 1) / 1000
            while not stop_heartbeat.is_set():
                try:
                    await asyncio.wait_for(stop_heartbeat.wait(), timeout=interval_seconds)
                    break
                except TimeoutError:
                    pass

                heartbeat_ok = await self.queue.extend_lease(
                    delivery_id=delivery.delivery_id,
                    consumer_id=self.role,
                    lease_seconds=self.message_lease_seconds,
                )
                if not heartbeat_ok:
                    lease_lost = True
                    stop_heartbeat.set()
                    break

        heartbeat_task = asyncio.create_task(_heartbeat_loop())
        try:
            try:
                result = await self.process(delivery)
            finally:
                stop_heartbeat.set()
                await heartbeat_task
        except Exception as exc:
            await self.queue.retry(
                delivery_id=delivery.delivery_id,
                delay_ms=self.retry_delay_ms,
                error=f"{type(exc).__name__}: {exc}",
            )
            raise

        if lease_lost:
            raise DomainInvariantError("message lease is stale")

        if result.success:
            await self.queue.ack(delivery_id=delivery.delivery_id)
            return True

        error_code = result.error_code or "internal_error"
        retry_classification = result.retry_classification or classify_error(error_code)
        logger.warning(
            "worker message failed",
            extra={
                "job_id": delivery.message.job_id,
                "message_type": delivery.message.type.value,
                "delivery_id": delivery.delivery_id,
                "attempts": delivery.attempt,
                "error_code": error_code,
                "detail": result.detail,
            },
        )
        if retry_classification == "recoverable":
            await self.queue.retry(
                delivery_id=delivery.delivery_id,
                delay_ms=self.retry_delay_ms,
                error=error_code,
            )
        else:
            await self.queue.ack(delivery_id=delivery.delivery_id)
        return True

    async def reclaim_expired(self) -> None:
        """Return abandoned deliveries to the queue and restart jobs whose lease holder died."""
        await self.queue.reclaim_expired_deliveries()
        for job_id in await self.repository.reclaim_expired_job_leases():
            await self.queue.enqueue(QueueMessage(type=MessageType.PROCESS, job_id=job_id))
            logger.warning("job lease expired, processing re-enqueued", extra={"job_id": job_id})
