"""Cooperative cancellation for retry sequences and guarded fetches.

A CancellationToken is created by the caller and handed to
``execute_with_retry`` / ``guarded_fetch``. Cancelling it interrupts the
current backoff wait or in-flight attempt of every sequence watching it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from retryguard.core.errors.resilience import OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal.

    Supports the "already cancelled" check, subscription callbacks, and an
    awaitable ``wait()``. ``cancel()`` is idempotent and may be called from
    any coroutine on the owning loop.

    Example:
        >>> token = CancellationToken()
        >>> task = asyncio.create_task(execute_with_retry(op, config, cancel_token=token))
        >>> token.cancel("user pressed ESC")
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []
        self._event: Optional[asyncio.Event] = None  # Lazy-init: created on first wait

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation and notify subscribers (first call only)."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register *callback* to run on cancellation.

        If the token is already cancelled the callback runs immediately.

        Returns:
            A function that removes the subscription.
        """
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def raise_if_cancelled(self, attempts: int = 0, phase: Optional[str] = None) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._cancelled:
            raise OperationCancelledError(
                self._cancellation_message(),
                attempts=attempts,
                phase=phase,
            )

    def _cancellation_message(self) -> str:
        if self._reason:
            return f"Operation cancelled: {self._reason}"
        return "Operation cancelled"


async def run_cancellable(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken],
    *,
    attempts: int = 0,
    phase: Optional[str] = None,
) -> T:
    """Await *awaitable*, aborting it if *token* fires first.

    Cancellation always wins a tie: if the token is cancelled by the time
    either side completes, the awaitable's task is cancelled and
    OperationCancelledError is raised.

    Args:
        awaitable: Coroutine or future to run.
        token: Cancellation token; ``None`` simply awaits.
        attempts: Attempt count reported on the raised error.
        phase: Phase label reported on the raised error.

    Raises:
        OperationCancelledError: If the token fired before completion.
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled(attempts=attempts, phase=phase)

    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        watcher.cancel()

    if token.cancelled:
        if work.done():
            if not work.cancelled():
                # Mark the outcome as retrieved; cancellation takes precedence
                work.exception()
        else:
            work.cancel()
            try:
                await work
            except (asyncio.CancelledError, Exception):
                logger.debug("Cancelled %s task finished during teardown", phase or "work")
        token.raise_if_cancelled(attempts=attempts, phase=phase)

    return work.result()
