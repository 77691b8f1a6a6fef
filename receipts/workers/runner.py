from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from receipts.settings import env_int
from receipts.workers.loop import QueueWorkerLoop


@dataclass(frozen=True)
class WorkerRuntimeSettings:
    poll_interval_ms: int = 200
    idle_backoff_ms: int = 1000
    error_backoff_ms: int = 2000
    message_lease_seconds: int = 30
    heartbeat_interval_ms: int = 10000
    max_deliveries: int = 5

    def apply_to(self, worker_loop: QueueWorkerLoop) -> None:
        worker_loop.message_lease_seconds = self.message_lease_seconds
        worker_loop.heartbeat_interval_ms = self.heartbeat_interval_ms
        worker_loop.retry_delay_ms = self.error_backoff_ms

    def next_delay_ms(self, *, did_work: bool, failed: bool) -> int:
        if failed:
            return self.error_backoff_ms
        return self.poll_interval_ms if did_work else self.idle_backoff_ms


@dataclass
class WorkerRuntimeState:
    """Counters surfaced on /ready for the worker role."""

    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    claims_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0

    def record_tick(self, *, did_work: bool, failed: bool) -> None:
        self.ticks_total += 1
        if failed:
            self.errors_total += 1
        elif did_work:
            self.claims_total += 1
        else:
            self.idle_ticks_total += 1


def worker_runtime_settings_from_env() -> WorkerRuntimeSettings:
    return WorkerRuntimeSettings(
        poll_interval_ms=env_int("WORKER_POLL_INTERVAL_MS", 200),
        idle_backoff_ms=env_int("WORKER_IDLE_BACKOFF_MS", 1000),
        error_backoff_ms=env_int("WORKER_ERROR_BACKOFF_MS", 2000),
        message_lease_seconds=env_int("WORKER_MESSAGE_LEASE_SECONDS", 30),
        heartbeat_interval_ms=env_int("WORKER_HEARTBEAT_INTERVAL_MS", 10000),
        max_deliveries=env_int("WORKER_MAX_DELIVERIES", 5),
    )


async def run_worker_until_stopped(
    *,
    worker_loop: QueueWorkerLoop,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    settings: WorkerRuntimeSettings,
    logger: logging.Logger,
    state: WorkerRuntimeState | None = None,
) -> None:
    """Poll the queue until stop_event is set.

    A failing tick is logged and backed off; it never ends the loop.
    """
    settings.apply_to(worker_loop)
    state = state or WorkerRuntimeState()
    context = {"role": role, "service": role, "run_id": run_id}

    state.started = True
    logger.info("worker loop started", extra=context)

    while not stop_event.is_set():
        did_work = failed = False
        try:
            await worker_loop.reclaim_expired()
            did_work = await worker_loop.run_once()
        except Exception:
            failed = True
            logger.exception("worker tick error", extra=context)
        state.record_tick(did_work=did_work, failed=failed)
        if did_work:
            logger.info("worker tick", extra=context)

        try:
            await asyncio.wait_for(
                stop_event.wait(),
                timeout=settings.next_delay_ms(did_work=did_work, failed=failed) / 1000,
            )
        except TimeoutError:
            continue

    state.stopped = True
    logger.info("worker loop stopped", extra=context)
