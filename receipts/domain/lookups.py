from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from receipts.domain.budget import Budget
from receipts.domain.contracts import DirectoryClient
from receipts.domain.errors import LookupTransientError
from receipts.domain.models import DirectoryContact

logger = logging.getLogger("runtime")


@dataclass(frozen=True)
class _Unavailable:
    error: str


@dataclass
class InvocationLookups:
    """Directory lookups memoized for the lifetime of one invocation.

    Every attempt, retries included, spends one call from the budget. Budget
    exhaustion propagates unretried and leaves nothing cached for the key.
    """

    directory: DirectoryClient
    budget: Budget
    retries: int = 2
    retry_wait_ms: int = 200
    _resolved: dict[str, DirectoryContact | None | _Unavailable] = field(default_factory=dict, init=False)

    async def resolve(self, member_id: str) -> DirectoryContact | None:
        if member_id in self._resolved:
            cached = self._resolved[member_id]
            if isinstance(cached, _Unavailable):
                raise LookupTransientError(cached.error)
            return cached

        try:
            contact = await self._resolve_with_retry(member_id)
        except LookupTransientError as exc:
            self._resolved[member_id] = _Unavailable(error=str(exc))
            raise
        self._resolved[member_id] = contact
        return contact

    async def _resolve_with_retry(self, member_id: str) -> DirectoryContact | None:
        wait_seconds = self.retry_wait_ms / 1000
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(LookupTransientError),
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=wait_seconds, max=wait_seconds * 8),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                self.budget.spend_call()
                return await self.directory.resolve(member_id=member_id)
        raise LookupTransientError(f"directory lookup did not complete for {member_id}")
