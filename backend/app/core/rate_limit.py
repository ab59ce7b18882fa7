import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

class ConcurrencyLimiter:
    """Bounds the number of in-flight coroutines; excess callers queue FIFO."""
    def __init__(self, max_concurrency: int = 4):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.in_flight = 0
        self.max_in_flight = 0
        self._sem = asyncio.Semaphore(max_concurrency)

    async def run(self, task: Callable[[], Awaitable[T]]) -> T:
        async with self._sem:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                return await task()
            finally:
                self.in_flight -= 1
