"""Retry policy evaluation."""

from __future__ import annotations

import inspect
import typing as t
from collections.abc import Mapping

from .options import RETRY_FIELDS, RetryOptions
from .signals import AbortSignal, abortable_delay
from .types import UNSET, RetryContext


async def resolve_retry_value(value: t.Any, *args: t.Any) -> t.Any:
    """Return ``value``, calling it with ``args`` first if it is callable.

    Awaitable results are awaited.
    """
    if callable(value):
        value = value(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


def retry_field(retry: t.Any, name: str) -> t.Any:
    """Read one field of a retry policy given as ``RetryOptions`` or a mapping.

    Raises:
        TypeError: If ``retry`` is neither.

    """
    if isinstance(retry, RetryOptions):
        value = getattr(retry, name)
    elif isinstance(retry, Mapping):
        value = retry.get(name, UNSET)
    else:
        msg = f"retry must be RetryOptions or a mapping of {', '.join(RETRY_FIELDS)}, got {type(retry).__name__}"
        raise TypeError(msg)
    return None if value is UNSET else value


async def should_retry(retry: t.Any, context: RetryContext) -> tuple[bool, int]:
    """Decide whether the attempt described by ``context`` may be retried.

    Args:
        retry: The merged retry policy.
        context: Outcome of the failed attempt. ``context.attempt`` counts
            the retries already made.

    Returns:
        tuple: Whether to retry, and the resolved maximum number of retries
            (0 when ``when`` declined before it was resolved).

    """
    when = retry_field(retry, "when")
    if when is None or not await resolve_retry_value(when, context):
        return False, 0

    attempts = retry_field(retry, "attempts")
    max_attempts = int(await resolve_retry_value(attempts, context.request) or 0)
    if not max_attempts or context.attempt >= max_attempts:
        return False, max_attempts
    return True, max_attempts


async def delay_retry(retry: t.Any, context: RetryContext, signal: AbortSignal | None = None) -> float:
    """Wait before the attempt described by ``context``.

    Returns:
        float: The number of seconds waited.

    Raises:
        BaseException: The abort reason if ``signal`` fires during the wait.

    """
    delay = float(await resolve_retry_value(retry_field(retry, "delay"), context) or 0)
    await abortable_delay(delay, signal)
    return delay
