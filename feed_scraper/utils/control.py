import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional

from feed_scraper.errors import IdleAbortError


async def maybe_await(value: Any) -> Any:
    """Callbacks may be plain functions or coroutines."""
    if inspect.isawaitable(value):
        return await value
    return value


class CompletionGate:
    """
    Single-resolution stop signal shared by the scroll loop and the response observer.

    resolve() is a graceful stop, reject() a fatal one. Whoever settles first
    wins, later calls are ignored. Must be created inside a running loop.
    """

    def __init__(self):
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.reason: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self._future.done()

    @property
    def rejected(self) -> bool:
        return self.settled and not self._future.cancelled() and self._future.exception() is not None

    def resolve(self, reason: str = "finished") -> bool:
        if self.settled:
            return False
        self.reason = reason
        self._future.set_result(reason)
        return True

    def reject(self, error: BaseException) -> bool:
        if self.settled:
            return False
        self.reason = type(error).__name__
        self._future.set_exception(error)
        return True

    async def wait(self) -> Any:
        # shielded so a cancelled waiter doesn't settle the gate itself
        return await asyncio.shield(self._future)

    def close(self, reason: str = "closed"):
        """Settle if still open and mark any stored error as retrieved."""
        self.resolve(reason)
        if not self._future.cancelled():
            self._future.exception()


class IdleAbort:
    """
    Deadline that keeps moving while there is progress.

    Every postpone() pushes the deadline to now + budget. run() waits for the
    first protected awaitable to finish; if the deadline passes first the rest
    are cancelled and IdleAbortError is raised.
    """

    def __init__(self, budget: float, clock: Callable[[], float] = time.monotonic):
        self.budget = budget
        self._clock = clock
        self.last_progress = clock()

    def start(self):
        self.last_progress = self._clock()

    def postpone(self):
        self.last_progress = max(self.last_progress, self._clock())

    @property
    def deadline(self) -> float:
        return self.last_progress + self.budget

    @property
    def expired(self) -> bool:
        return self._clock() - self.last_progress > self.budget

    async def run(self, *protected: Awaitable[Any]) -> Any:
        tasks = [asyncio.ensure_future(aw) for aw in protected]
        try:
            while True:
                remaining = self.deadline - self._clock()
                if remaining <= 0:
                    raise IdleAbortError(f"No progress for {self.budget}s")

                done, _ = await asyncio.wait(tasks, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
                if done:
                    # surface failures before plain results
                    for task in sorted(done, key=lambda t: t.cancelled() or t.exception() is None):
                        return task.result()
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
