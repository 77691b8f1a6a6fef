from __future__ import annotations

import asyncio
from datetime import date

import pytest

from receipts.domain.errors import DomainInvariantError
from receipts.domain.models import JobStatus, MessageType, QueueMessage, ReceiptStatus, RowStatus
from receipts.repositories.postgres import AsyncpgPoolManager, PostgresImportQueue, PostgresImportRepository
from tests.integration.postgres_test_utils import apply_down, apply_up, require_postgres, reset_public_schema


async def _fresh_manager(dsn: str) -> AsyncpgPoolManager:
    await reset_public_schema(dsn=dsn)
    await apply_up(dsn=dsn)
    manager = AsyncpgPoolManager(dsn=dsn)
    await manager.startup()
    return manager


def _row(member_id: str) -> dict[str, str]:
    return {"member_id": member_id, "branch": "North", "amount": "1", "year": "2024"}


@pytest.mark.integration
def test_migration_up_down_up_contract() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        manager = await _fresh_manager(dsn)
        try:
            repo = PostgresImportRepository(pool_manager=manager)
            assert await repo.get_job(job_id="missing") is None
        finally:
            await manager.shutdown()

        await apply_down(dsn=dsn)
        await apply_up(dsn=dsn)

    asyncio.run(_run())


@pytest.mark.integration
def test_row_progress_is_committed_with_each_row() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        manager = await _fresh_manager(dsn)
        repo = PostgresImportRepository(pool_manager=manager)
        try:
            await repo.create_job(job_id="job_pg", period=2024, source_key="uploads/job_pg.csv")
            with pytest.raises(DomainInvariantError):
                await repo.create_job(job_id="job_pg", period=2024, source_key="uploads/job_pg.csv")

            rows = [_row(f"M{i}") for i in range(450)]
            assert await repo.insert_rows(job_id="job_pg", rows=rows) == 450
            assert await repo.insert_rows(job_id="job_pg", rows=rows) == 0
            assert await repo.start_processing(job_id="job_pg", total_rows=450) is True
            assert await repo.start_processing(job_id="job_pg", total_rows=450) is False

            claimed = await repo.claim_pending_rows(job_id="job_pg", from_index=0, limit=3)
            assert [row.row_index for row in claimed] == [0, 1, 2]
            assert claimed[1].raw_fields["member_id"] == "M1"

            assert await repo.mark_row(job_id="job_pg", row_index=1, status=RowStatus.DONE) is True
            assert await repo.mark_row(job_id="job_pg", row_index=1, status=RowStatus.ERROR) is False
            assert await repo.defer_row(job_id="job_pg", row_index=0, error_code="lookup_unavailable") == 1
            await repo.mark_row(job_id="job_pg", row_index=2, status=RowStatus.NEEDS_INPUT, error_code="missing_email")

            job = await repo.get_job(job_id="job_pg")
            assert job is not None
            assert (job.resume_cursor, job.processed_rows, job.ok_rows, job.failed_rows) == (3, 3, 1, 1)
            assert await repo.min_pending_index(job_id="job_pg") == 0
            assert await repo.count_pending_rows(job_id="job_pg") == 448

            failed = await repo.list_rows(job_id="job_pg", statuses=[RowStatus.NEEDS_INPUT])
            assert [(row.row_index, row.error_code) for row in failed] == [(2, "missing_email")]
        finally:
            await manager.shutdown()

    asyncio.run(_run())


@pytest.mark.integration
def test_job_lease_is_exclusive_between_concurrent_workers() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        manager = await _fresh_manager(dsn)
        repo = PostgresImportRepository(pool_manager=manager)
        try:
            await repo.create_job(job_id="job_lease", period=2024, source_key="uploads/job_lease.csv")
            await repo.insert_rows(job_id="job_lease", rows=[_row("M1")])
            await repo.start_processing(job_id="job_lease", total_rows=1)

            results = await asyncio.gather(
                *(repo.acquire_job_lease(job_id="job_lease", owner=f"w-{idx}", lease_seconds=60) for idx in range(3))
            )
            assert sorted(results) == [False, False, True]

            assert await repo.reclaim_expired_job_leases() == []
            winner = f"w-{results.index(True)}"
            await repo.release_job_lease(job_id="job_lease", owner=winner)
            assert await repo.acquire_job_lease(job_id="job_lease", owner="w-9", lease_seconds=0) is True
            assert await repo.reclaim_expired_job_leases() == ["job_lease"]

            await repo.mark_row(job_id="job_lease", row_index=0, status=RowStatus.DONE)
            finished = await repo.complete_job(job_id="job_lease")
            assert finished.status == JobStatus.DONE
            assert await repo.acquire_job_lease(job_id="job_lease", owner="w-1", lease_seconds=60) is False
        finally:
            await manager.shutdown()

    asyncio.run(_run())


@pytest.mark.integration
def test_receipt_upsert_overwrites_by_period_and_member() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        manager = await _fresh_manager(dsn)
        repo = PostgresImportRepository(pool_manager=manager)
        try:
            for amount, status in ((100, ReceiptStatus.ERROR), (250, ReceiptStatus.DONE)):
                await repo.upsert_receipt(
                    period=2024,
                    member_id="M1",
                    branch="North",
                    name="Member One",
                    amount_cents=amount,
                    issue_date=date(2025, 1, 15),
                    artifact_key="receipts/M1/2024.pdf",
                    status=status,
                )
            receipts = await repo.list_receipts(period=2024)
            assert [(record.member_id, record.amount_cents, record.status) for record in receipts] == [
                ("M1", 250, ReceiptStatus.DONE)
            ]
            record = await repo.get_receipt(period=2024, member_id="M1")
            assert record is not None
            assert record.issue_date == date(2025, 1, 15)
        finally:
            await manager.shutdown()

    asyncio.run(_run())


@pytest.mark.integration
def test_queue_receive_is_exclusive_and_dead_letters_after_cap() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        manager = await _fresh_manager(dsn)
        queue = PostgresImportQueue(pool_manager=manager, max_deliveries=2)
        try:
            await queue.enqueue(QueueMessage(type=MessageType.PARSE, job_id="job_q"))

            deliveries = await asyncio.gather(
                queue.receive(consumer_id="c-1"),
                queue.receive(consumer_id="c-2"),
            )
            claimed = [delivery for delivery in deliveries if delivery is not None]
            assert len(claimed) == 1
            assert claimed[0].message == QueueMessage(type=MessageType.PARSE, job_id="job_q")
            assert await queue.extend_lease(delivery_id=claimed[0].delivery_id, consumer_id="c-other") is False

            await queue.retry(delivery_id=claimed[0].delivery_id, delay_ms=0, error="template_unavailable")
            second = await queue.receive(consumer_id="c-1")
            assert second is not None
            assert second.attempt == 2
            await queue.retry(delivery_id=second.delivery_id, delay_ms=0, error="template_unavailable")
            assert await queue.receive(consumer_id="c-1") is None

            await queue.enqueue(QueueMessage(type=MessageType.PROCESS, job_id="job_q"))
            third = await queue.receive(consumer_id="c-1", lease_seconds=0)
            assert third is not None
            assert await queue.reclaim_expired_deliveries() == 1
            again = await queue.receive(consumer_id="c-2")
            assert again is not None
            await queue.ack(delivery_id=again.delivery_id)
            assert await queue.receive(consumer_id="c-2") is None
        finally:
            await manager.shutdown()

    asyncio.run(_run())
