import asyncio, logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable


def fixed_backoff(seconds: float) -> Callable[[int], float]:
    return lambda attempt: seconds


def never(_: BaseException) -> bool:
    return False


@dataclass
class RetryPolicy:
    """Bounded retry with a backoff function and a retryable-error predicate.

    ``max_attempts`` counts the first call. ``timeout`` is a per-attempt
    wall-clock limit handed to the operation, which is expected to enforce it
    (external processes are killed by the runner rather than abandoned).
    """

    max_attempts: int = 1
    backoff: Callable[[int], float] = field(default_factory=lambda: fixed_backoff(0))
    retry_on: Callable[[BaseException], bool] = never
    timeout: float | None = None
    sleep: Callable[[float], Awaitable] = asyncio.sleep
    name: str = "operation"

    async def run(self, operation: Callable[[], Awaitable]):
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_attempts or not self.retry_on(e):
                    raise
                delay = self.backoff(attempt)
                logging.info(
                    f"RETRY {attempt}/{self.max_attempts - 1} - {self.name}: "
                    f"{type(e).__name__}: {e} (waiting {delay:.1f}s)"
                )
                await self.sleep(delay)
