"""Tests for abort signals, timeout composition and abortable waits."""

from __future__ import annotations

import asyncio

import pytest
from helpers import stream

from relayfetch import AbortController, AbortError, AbortSignal, FetcherTimeoutError
from relayfetch.signals import abortable_delay, abortable_iter, run_abortable, with_timeout


class TestWithTimeout:
    """Tests for with_timeout()."""

    async def test_nothing_configured(self) -> None:
        """Test that no signal is produced without a signal or a timeout."""
        assert with_timeout(None, None) is None
        assert with_timeout(None, 0) is None
        assert with_timeout(None, -1) is None

    async def test_timeout_fires(self) -> None:
        """Test that the composed signal is unaborted at first and aborted after the timeout."""
        signal = with_timeout(None, 0.05)

        assert signal is not None
        assert not signal.aborted
        await asyncio.sleep(0.1)
        assert signal.aborted
        assert isinstance(signal.reason, FetcherTimeoutError)

    async def test_follows_user_signal(self) -> None:
        """Test that aborting the user signal aborts the composed signal."""
        controller = AbortController()
        signal = with_timeout(controller.signal, 10)

        assert signal is not None
        assert signal is not controller.signal
        controller.abort("stop")

        assert signal.aborted
        assert isinstance(signal.reason, AbortError)
        assert signal.reason.reason == "stop"

    async def test_non_positive_timeout_is_ignored(self) -> None:
        """Test that a timeout <= 0 does not abort the composed signal."""
        controller = AbortController()
        signal = with_timeout(controller.signal, 0)

        assert signal is not None
        await asyncio.sleep(0.01)
        assert not signal.aborted

    async def test_already_aborted_user_signal(self) -> None:
        """Test that an aborted user signal yields an aborted composed signal."""
        controller = AbortController()
        reason = ValueError("custom reason")
        controller.abort(reason)

        signal = with_timeout(controller.signal, 10)

        assert signal is not None
        assert signal.reason is reason

    async def test_fresh_signal_per_call(self) -> None:
        """Test that an expired deadline does not leak into the next composition."""
        controller = AbortController()
        first = with_timeout(controller.signal, 0.01)
        await asyncio.sleep(0.05)
        second = with_timeout(controller.signal, 10)

        assert first is not None
        assert second is not None
        assert first.aborted
        assert not second.aborted
        assert not controller.signal.aborted

    async def test_dispose_detaches_and_cancels_deadline(self) -> None:
        """Test that a disposed signal leaves the user signal clean and never times out."""
        controller = AbortController()
        signal = with_timeout(controller.signal, 0.01)

        assert signal is not None
        assert len(controller.signal._listeners) == 1  # noqa: SLF001
        signal.dispose()
        await asyncio.sleep(0.05)

        assert controller.signal._listeners == []  # noqa: SLF001
        assert not signal.aborted
        controller.abort()
        assert not signal.aborted

    async def test_dispose_after_abort(self) -> None:
        """Test that disposing a fired signal keeps its reason."""
        signal = with_timeout(None, 0.01)
        await asyncio.sleep(0.05)

        assert signal is not None
        signal.dispose()
        assert isinstance(signal.reason, FetcherTimeoutError)

    def test_without_event_loop_returns_user_signal(self) -> None:
        """Test that the user signal is returned unchanged when no loop can run the timer."""
        controller = AbortController()
        assert with_timeout(controller.signal, 1) is controller.signal
        assert with_timeout(None, 1) is None


class TestAbortSignal:
    """Tests for AbortSignal combinators."""

    async def test_any_first_wins(self) -> None:
        """Test that the first fired signal provides the reason."""
        first, second = AbortController(), AbortController()
        combined = AbortSignal.any([first.signal, second.signal])

        second.abort(RuntimeError("second"))
        first.abort(RuntimeError("first"))

        assert str(combined.reason) == "second"

    async def test_abort_is_idempotent(self) -> None:
        """Test that later aborts keep the first reason."""
        controller = AbortController()
        controller.abort("one")
        controller.abort("two")

        assert isinstance(controller.signal.reason, AbortError)
        assert controller.signal.reason.reason == "one"

    async def test_throw_if_aborted(self) -> None:
        """Test that throw_if_aborted raises the reason only once aborted."""
        controller = AbortController()
        controller.signal.throw_if_aborted()

        controller.abort()
        with pytest.raises(AbortError):
            controller.signal.throw_if_aborted()


class TestAbortableWaits:
    """Tests for abortable_delay(), run_abortable() and abortable_iter()."""

    async def test_delay_completes(self) -> None:
        """Test that an unaborted delay completes."""
        controller = AbortController()
        await abortable_delay(0.01, controller.signal)

    async def test_delay_rejects_immediately_when_aborted(self) -> None:
        """Test that a delay on an aborted signal raises without waiting."""
        controller = AbortController()
        controller.abort()
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(AbortError):
            await abortable_delay(10, controller.signal)

        assert loop.time() - started < 1

    async def test_delay_interrupted(self) -> None:
        """Test that aborting during a delay raises the reason."""
        controller = AbortController()
        asyncio.get_running_loop().call_later(0.01, controller.abort, KeyError("late"))

        with pytest.raises(KeyError, match="late"):
            await abortable_delay(10, controller.signal)

    async def test_run_abortable_returns_result(self) -> None:
        """Test that the awaited result is returned when the signal stays quiet."""

        async def compute() -> int:
            await asyncio.sleep(0)
            return 42

        assert await run_abortable(compute(), AbortController().signal) == 42  # noqa: PLR2004
        assert await run_abortable(compute(), None) == 42  # noqa: PLR2004

    async def test_run_abortable_cancels_work(self) -> None:
        """Test that the pending operation is cancelled when the signal fires."""
        cancelled = asyncio.Event()

        async def hang() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        signal = with_timeout(None, 0.01)
        with pytest.raises(FetcherTimeoutError):
            await run_abortable(hang(), signal)

        assert cancelled.is_set()

    async def test_abortable_iter(self) -> None:
        """Test that chunks flow until the signal fires."""
        controller = AbortController()
        chunks = []

        with pytest.raises(AbortError):
            async for chunk in abortable_iter(stream(b"a", b"b", b"c"), controller.signal):
                chunks.append(chunk)
                if chunk == b"b":
                    controller.abort()

        assert chunks == [b"a", b"b"]
