from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from receipts.domain.errors import BudgetExhaustedError


@dataclass
class Budget:
    """Per-invocation allowance of wall-clock time and directory calls."""

    remaining_calls: int
    deadline: float
    clock: Callable[[], float] = field(default=time.monotonic)

    @classmethod
    def start(
        cls,
        *,
        call_limit: int,
        time_limit_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> Budget:
        return cls(remaining_calls=call_limit, deadline=clock() + time_limit_ms / 1000, clock=clock)

    def time_exceeded(self) -> bool:
        return self.clock() > self.deadline

    def spend_call(self) -> None:
        if self.remaining_calls <= 0:
            raise BudgetExhaustedError("external call budget exhausted")
        self.remaining_calls -= 1

    def try_spend_call(self) -> bool:
        if self.remaining_calls <= 0:
            return False
        self.remaining_calls -= 1
        return True
