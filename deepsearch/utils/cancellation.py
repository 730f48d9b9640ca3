"""Cooperative cancellation scope shared by everything a request starts."""

import asyncio
from collections.abc import Awaitable
from typing import Any

from deepsearch.errors import OperationCancelled
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class CancellationToken:
    """A one-shot abort signal for a single request.

    Work started under the token is raced against the signal with `run()`.
    Once the token fires, in-flight work is cancelled and `run()` raises
    `OperationCancelled`; the token never resets.
    """

    def __init__(self, timeout: float | None = None):
        """Create a token.

        Args:
            timeout: Optional number of seconds after which the token fires by itself
        """
        self._event = asyncio.Event()
        self.reason: str | None = None
        self._timer: asyncio.TimerHandle | None = None

        if timeout is not None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(timeout, self.cancel, f"Request timed out after {timeout:g}s")

    @property
    def cancelled(self) -> bool:
        """Whether the token has fired."""
        return self._event.is_set()

    def cancel(self, reason: str = "Operation cancelled") -> None:
        """Fire the token. Later calls are no-ops."""
        if self._event.is_set():
            return

        logger.info(f"Cancellation requested: {reason}")
        self.reason = reason
        self._event.set()
        self.close()

    def close(self) -> None:
        """Disarm the timeout timer, if any."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def raise_if_cancelled(self) -> None:
        """Raise `OperationCancelled` if the token has fired."""
        if self._event.is_set():
            raise OperationCancelled(self.reason or "Operation cancelled")

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()

    async def run[T](self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first.

        Raises:
            OperationCancelled: If the token fired before the work finished
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        work = asyncio.ensure_future(_await(awaitable))
        waiter = asyncio.ensure_future(self._event.wait())

        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        # Let the cancelled work unwind (closes sockets, exits context managers)
        await asyncio.gather(work, return_exceptions=True)
        raise OperationCancelled(self.reason or "Operation cancelled")
