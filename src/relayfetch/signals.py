"""Cooperative cancellation for relayfetch.

An ``AbortController`` owns an ``AbortSignal``. Signals can be combined and
given deadlines, and every suspension point of a call (the transport call,
the retry delay, body chunk reads) is awaited through ``run_abortable`` so
that aborting the signal interrupts it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import typing as t
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable

from .errors import AbortError, FetcherTimeoutError

_logger = logging.getLogger("relayfetch")

type AbortListener = Callable[[BaseException], None]


class AbortSignal:
    """A one-shot cancellation flag with listeners.

    Once aborted a signal stays aborted and keeps its reason.
    """

    def __init__(self) -> None:
        self._reason: BaseException | None = None
        self._listeners: list[AbortListener] = []
        self._timer: asyncio.TimerHandle | None = None
        self._cleanups: list[Callable[[], None]] = []

    @property
    def aborted(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def throw_if_aborted(self) -> None:
        """Raise the abort reason if the signal has fired."""
        if self._reason is not None:
            raise self._reason

    def add_listener(self, listener: AbortListener) -> None:
        """Register a callback invoked with the reason when the signal fires."""
        self._listeners.append(listener)

    def remove_listener(self, listener: AbortListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def dispose(self) -> None:
        """Detach the signal from its sources and cancel its deadline.

        A disposed signal that has not fired never fires. The source
        signals themselves are not affected.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            cleanup()

    def _abort(self, reason: BaseException) -> None:
        if self._reason is not None:
            return
        self._reason = reason
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(reason)

    async def wait(self) -> BaseException:
        """Wait until the signal fires and return its reason."""
        if self._reason is not None:
            return self._reason
        waiter: asyncio.Future[BaseException] = asyncio.get_running_loop().create_future()

        def on_abort(reason: BaseException) -> None:
            if not waiter.done():
                waiter.set_result(reason)

        self.add_listener(on_abort)
        try:
            return await waiter
        finally:
            self.remove_listener(on_abort)

    @classmethod
    def any(cls, signals: Iterable[AbortSignal]) -> AbortSignal:
        """Return a signal that fires as soon as any of ``signals`` fires."""
        combined = cls()
        sources = list(signals)
        for source in sources:
            if source.aborted:
                combined._abort(t.cast("BaseException", source.reason))
                return combined

        def detach() -> None:
            for source in sources:
                source.remove_listener(on_abort)

        def on_abort(reason: BaseException) -> None:
            detach()
            combined._abort(reason)

        for source in sources:
            source.add_listener(on_abort)
        combined._cleanups.append(detach)
        return combined

    @classmethod
    def timeout(cls, seconds: float) -> AbortSignal:
        """Return a signal that fires with ``FetcherTimeoutError`` after ``seconds``.

        Raises:
            RuntimeError: If there is no running event loop to schedule on.

        """
        loop = asyncio.get_running_loop()
        signal = cls()
        reason = FetcherTimeoutError(f"The operation timed out after {seconds:g}s")
        signal._timer = loop.call_later(seconds, signal._abort, reason)
        return signal


class AbortController:
    """Owner of an ``AbortSignal``."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: object = None) -> None:
        """Fire the signal.

        Args:
            reason: Exception to surface to the aborted operation. Any other
                value is wrapped in an ``AbortError`` carrying it.

        """
        if not isinstance(reason, BaseException):
            reason = AbortError(reason=reason)
        self.signal._abort(reason)


def with_timeout(signal: AbortSignal | None = None, timeout: float | None = None) -> AbortSignal | None:
    """Combine a caller signal with a per-attempt deadline.

    Args:
        signal: Caller-supplied abort signal.
        timeout: Deadline in seconds. ``None`` or a value <= 0 means no
            deadline.

    Returns:
        A new signal firing when either input fires, or None when neither is
        configured. Call ``dispose()`` on it once it is no longer needed.
        Without a running event loop the caller signal is returned
        unchanged.

    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        _logger.debug("No running event loop, timeout of %s not enforced", timeout)
        return signal

    signals: list[AbortSignal] = []
    if signal is not None:
        signals.append(signal)
    deadline = AbortSignal.timeout(timeout) if timeout is not None and timeout > 0 else None
    if deadline is not None:
        signals.append(deadline)
    if not signals:
        return None

    composed = AbortSignal.any(signals)
    if deadline is not None:
        composed._cleanups.append(deadline.dispose)
    return composed


async def run_abortable[T](awaitable: Awaitable[T], signal: AbortSignal | None) -> T:
    """Await ``awaitable`` unless ``signal`` fires first.

    Raises:
        BaseException: The abort reason when the signal fires; the awaitable
            is cancelled.

    """
    if signal is None:
        return await awaitable
    if signal.aborted:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        signal.throw_if_aborted()

    task = asyncio.ensure_future(awaitable)
    aborted = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, aborted}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        aborted.cancel()

    if task.done():
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    signal.throw_if_aborted()
    msg = "Signal wait finished without an abort reason"
    raise AssertionError(msg)  # pragma: no cover


async def abortable_delay(seconds: float, signal: AbortSignal | None = None) -> None:
    """Sleep for ``seconds``; raise the abort reason if ``signal`` fires."""
    await run_abortable(asyncio.sleep(max(seconds, 0)), signal)


async def abortable_iter(source: AsyncIterable[bytes], signal: AbortSignal | None) -> AsyncIterator[bytes]:
    """Yield from ``source``, making every chunk read abortable."""
    iterator = aiter(source)

    async def pull() -> bytes | None:
        try:
            return await anext(iterator)
        except StopAsyncIteration:
            return None

    while (chunk := await run_abortable(pull(), signal)) is not None:
        yield chunk
