import asyncio

import pytest

from receipts.clients.stub import StubDirectoryClient
from receipts.domain.budget import Budget
from receipts.domain.errors import BudgetExhaustedError, LookupTransientError
from receipts.domain.lookups import InvocationLookups


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.unit
def test_budget_tracks_calls_and_deadline() -> None:
    clock = _FakeClock()
    budget = Budget.start(call_limit=2, time_limit_ms=500, clock=clock)

    budget.spend_call()
    assert budget.try_spend_call() is True
    assert budget.try_spend_call() is False
    with pytest.raises(BudgetExhaustedError):
        budget.spend_call()

    assert budget.time_exceeded() is False
    clock.now += 0.5
    assert budget.time_exceeded() is False
    clock.now += 0.01
    assert budget.time_exceeded() is True


@pytest.mark.unit
def test_lookups_are_memoized_per_invocation() -> None:
    directory = StubDirectoryClient()
    directory.add_contact("M1", email="m1@example.org")
    budget = Budget.start(call_limit=10, time_limit_ms=10_000)
    lookups = InvocationLookups(directory=directory, budget=budget, retries=2, retry_wait_ms=0)

    async def _run() -> None:
        first = await lookups.resolve("M1")
        second = await lookups.resolve("M1")
        missing = await lookups.resolve("M2")
        assert first is second
        assert missing is None
        assert await lookups.resolve("M2") is None

    asyncio.run(_run())
    assert directory.lookups == ["M1", "M2"]
    assert budget.remaining_calls == 8


@pytest.mark.unit
def test_transient_failures_are_retried_and_each_attempt_spends_budget() -> None:
    directory = StubDirectoryClient(transient_failures={"M1": 2})
    directory.add_contact("M1", email="m1@example.org")
    budget = Budget.start(call_limit=10, time_limit_ms=10_000)
    lookups = InvocationLookups(directory=directory, budget=budget, retries=2, retry_wait_ms=0)

    contact = asyncio.run(lookups.resolve("M1"))

    assert contact is not None
    assert directory.lookups == ["M1", "M1", "M1"]
    assert budget.remaining_calls == 7


@pytest.mark.unit
def test_exhausted_retries_are_memoized_as_unavailable() -> None:
    directory = StubDirectoryClient(transient_failures={"M1": -1})
    budget = Budget.start(call_limit=10, time_limit_ms=10_000)
    lookups = InvocationLookups(directory=directory, budget=budget, retries=1, retry_wait_ms=0)

    async def _run() -> None:
        with pytest.raises(LookupTransientError):
            await lookups.resolve("M1")
        with pytest.raises(LookupTransientError):
            await lookups.resolve("M1")

    asyncio.run(_run())
    assert directory.lookups == ["M1", "M1"]


@pytest.mark.unit
def test_budget_exhaustion_is_not_retried_or_cached() -> None:
    directory = StubDirectoryClient()
    directory.add_contact("M1", email="m1@example.org")
    budget = Budget.start(call_limit=0, time_limit_ms=10_000)
    lookups = InvocationLookups(directory=directory, budget=budget, retries=2, retry_wait_ms=0)

    async def _run() -> None:
        with pytest.raises(BudgetExhaustedError):
            await lookups.resolve("M1")
        budget.remaining_calls = 1
        assert await lookups.resolve("M1") is not None

    asyncio.run(_run())
    assert directory.lookups == ["M1"]
