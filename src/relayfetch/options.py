"""Option sources and how they are merged into one configuration.

Three sources are layered for every call, lowest priority first: the
built-in ``FALLBACK_OPTIONS``, the caller-level defaults configured on the
``Fetcher``, and the per-call options. Plain fields are overridden as a
whole; ``retry`` is merged field by field and event handlers are chained.
"""

from __future__ import annotations

import dataclasses
import inspect
import json
import typing as t
import urllib.parse as parser
from collections.abc import AsyncIterable, Callable, Mapping
from dataclasses import dataclass, field

from aiohttp import hdrs

from .errors import ResponseError
from .types import UNSET, HttpMethod, MaybeAwaitable, OnStream, RetryContext, Schema, Unset

if t.TYPE_CHECKING:
    from .messages import Request, Response
    from .signals import AbortSignal

ParseResponse = Callable[["Response", "Request"], MaybeAwaitable[t.Any]]
ParseRejected = Callable[["Response", "Request"], MaybeAwaitable[BaseException]]
SerializeBody = Callable[[t.Any], "bytes | str | AsyncIterable[bytes] | None"]
SerializeParams = Callable[[Mapping[str, t.Any]], str]
Reject = Callable[["Response"], MaybeAwaitable[bool]]
RetryAttempts = int | Callable[["Request"], MaybeAwaitable[int]]
RetryDelay = float | Callable[[RetryContext], MaybeAwaitable[float]]
RetryWhen = Callable[[RetryContext], MaybeAwaitable[bool]]

EVENT_HANDLER_FIELDS: t.Final = (
    "on_request",
    "on_retry",
    "on_success",
    "on_error",
    "on_request_streaming",
    "on_response_streaming",
)

RETRY_FIELDS: t.Final = ("attempts", "delay", "when")


@dataclass(frozen=True)
class RetryOptions:
    """Retry policy.

    Attributes:
        attempts: Maximum number of retries after the first attempt, or a
            callable receiving the request and returning it.
        delay: Seconds to wait before each retry, or a callable receiving
            the ``RetryContext`` of the upcoming attempt.
        when: Predicate over the ``RetryContext`` of the failed attempt
            deciding whether it may be retried at all.

    """

    attempts: RetryAttempts | Unset = UNSET
    delay: RetryDelay | Unset = UNSET
    when: RetryWhen | Unset = UNSET


@dataclass(frozen=True)
class FetchOptions:
    """Caller-level defaults or per-call options.

    Every field left as ``UNSET`` defers to the lower priority sources. An
    explicit ``None`` is a value: ``FetchOptions(timeout=None)`` disables a
    default timeout.

    Attributes:
        base_url: Prefix joined with relative inputs.
        method: HTTP method.
        headers: Headers; a ``None`` value removes a lower priority header.
        params: Query parameters, serialized with ``serialize_params``.
        body: Raw body, serialized with ``serialize_body``.
        serialize_body: Converts the raw body to bytes, text or a stream.
        serialize_params: Converts query parameters to a query string.
        parse_response: Decodes an accepted response.
        parse_rejected: Builds the error for a rejected response.
        reject: Predicate deciding whether a response is a failure.
        retry: Retry policy, a ``RetryOptions`` or a mapping of its fields.
        timeout: Per-attempt timeout in seconds.
        signal: Caller abort signal.
        schema: Object exposing ``validate(data)``.
        extra: Transport specific keyword arguments.
        on_request: Called with the first built request.
        on_retry: Called with the ``RetryContext`` before each retry.
        on_success: Called with the validated data and the request.
        on_error: Called with the final error and the request.
        on_request_streaming: Upload progress callback.
        on_response_streaming: Download progress callback.

    """

    base_url: str | None | Unset = UNSET
    method: HttpMethod | Unset = UNSET
    headers: Mapping[str, str | None] | None | Unset = UNSET
    params: Mapping[str, t.Any] | None | Unset = UNSET
    body: t.Any = UNSET
    serialize_body: SerializeBody | Unset = UNSET
    serialize_params: SerializeParams | Unset = UNSET
    parse_response: ParseResponse | Unset = UNSET
    parse_rejected: ParseRejected | Unset = UNSET
    reject: Reject | Unset = UNSET
    retry: RetryOptions | Mapping[str, t.Any] | t.Any = UNSET
    timeout: float | None | Unset = UNSET
    signal: AbortSignal | None | Unset = UNSET
    schema: Schema | None | Unset = UNSET
    extra: Mapping[str, t.Any] | Unset = UNSET
    on_request: Callable[[Request], t.Any] | None | Unset = UNSET
    on_retry: Callable[[RetryContext], t.Any] | None | Unset = UNSET
    on_success: Callable[[t.Any, Request], t.Any] | None | Unset = UNSET
    on_error: Callable[[BaseException, Request | None], t.Any] | None | Unset = UNSET
    on_request_streaming: OnStream | None | Unset = UNSET
    on_response_streaming: OnStream | None | Unset = UNSET


@dataclass(frozen=True)
class MergedOptions:
    """The resolved configuration of one call."""

    base_url: str | None = None
    method: HttpMethod = hdrs.METH_GET
    headers: Mapping[str, str | None] | None = None
    params: Mapping[str, t.Any] | None = None
    body: t.Any = None
    serialize_body: SerializeBody | None = None
    serialize_params: SerializeParams | None = None
    parse_response: ParseResponse | None = None
    parse_rejected: ParseRejected | None = None
    reject: Reject | None = None
    retry: RetryOptions | t.Any = field(default_factory=RetryOptions)
    timeout: float | None = None
    signal: AbortSignal | None = None
    schema: Schema | None = None
    extra: Mapping[str, t.Any] = field(default_factory=dict)
    on_request: Callable[[Request], t.Any] | None = None
    on_retry: Callable[[RetryContext], t.Any] | None = None
    on_success: Callable[[t.Any, Request], t.Any] | None = None
    on_error: Callable[[BaseException, Request | None], t.Any] | None = None
    on_request_streaming: OnStream | None = None
    on_response_streaming: OnStream | None = None


def is_jsonifiable(value: t.Any) -> bool:
    return isinstance(value, (Mapping, list, tuple))


def serialize_body(body: t.Any) -> bytes | str | AsyncIterable[bytes] | None:
    """JSON-encode mappings and sequences; pass anything else through."""
    if is_jsonifiable(body):
        return json.dumps(body)
    return body


def _param_value(value: t.Any) -> t.Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return [_param_value(item) for item in value if item is not None]
    return value


def serialize_params(params: Mapping[str, t.Any]) -> str:
    """URL-encode query parameters, dropping ``None`` values."""
    return parser.urlencode(
        {key: _param_value(value) for key, value in params.items() if value is not None},
        doseq=True,
    )


async def parse_response(response: Response, request: Request) -> t.Any:  # noqa: ARG001
    """Decode the body as JSON. An empty body decodes to None."""
    text = await response.text()
    return json.loads(text) if text else None


async def parse_text(response: Response, request: Request) -> str:  # noqa: ARG001
    """Decode the body as text, for ``parse_response``."""
    return await response.text()


async def parse_rejected(response: Response, request: Request) -> ResponseError:
    """Build the error for a rejected response, keeping its decoded body."""
    text = await response.text()
    data: t.Any
    try:
        data = json.loads(text) if text else None
    except ValueError:
        data = text
    return ResponseError(
        f"[{response.status}] {response.reason}".rstrip(),
        response=response,
        data=data,
        request=request,
    )


def reject(response: Response) -> bool:
    return not response.ok


def _retry_rejected_responses(context: RetryContext) -> bool:
    return context.response is not None and not context.response.ok


FALLBACK_OPTIONS: t.Final = FetchOptions(
    parse_response=parse_response,
    parse_rejected=parse_rejected,
    serialize_params=serialize_params,
    serialize_body=serialize_body,
    reject=reject,
    retry=RetryOptions(attempts=0, delay=0, when=_retry_rejected_responses),
)


def _chain(
    first: Callable[..., t.Any],
    second: Callable[..., t.Any],
) -> Callable[..., t.Coroutine[t.Any, t.Any, None]]:
    async def handler(*args: t.Any) -> None:
        for callback in (first, second):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

    return handler


def merge_event_handlers(default_options: FetchOptions, call_options: FetchOptions) -> dict[str, t.Any]:
    """Combine the event handlers of the caller-level and per-call options.

    When both sides define a handler they are chained into a coroutine
    function: the default handler runs first, then the per-call one, with
    the same arguments. Handlers may be sync or async.

    Returns:
        dict: The merged handlers, keyed by field name. Fields neither side
            defines are absent.

    """
    handlers: dict[str, t.Any] = {}
    for name in EVENT_HANDLER_FIELDS:
        default_handler = getattr(default_options, name)
        call_handler = getattr(call_options, name)
        if callable(default_handler) and callable(call_handler):
            handlers[name] = _chain(default_handler, call_handler)
        elif callable(call_handler):
            handlers[name] = call_handler
        elif callable(default_handler):
            handlers[name] = default_handler
        elif call_handler is not UNSET:
            handlers[name] = call_handler
        elif default_handler is not UNSET:
            handlers[name] = default_handler
    return handlers


def _retry_fields(retry: t.Any) -> dict[str, t.Any] | None:
    if isinstance(retry, RetryOptions):
        return {name: getattr(retry, name) for name in RETRY_FIELDS if getattr(retry, name) is not UNSET}
    if isinstance(retry, Mapping):
        return dict(retry)
    return None


def merge_retry(*retries: t.Any) -> t.Any:
    """Shallow-merge retry policies field by field, later sources winning.

    Malformed values (neither ``RetryOptions`` nor a mapping) are ignored
    when any source is well formed, and returned as-is otherwise so the
    retry stage can report them.
    """
    merged: dict[str, t.Any] = {}
    well_formed = False
    passthrough: t.Any = UNSET
    for retry in retries:
        if retry is UNSET:
            continue
        fields = _retry_fields(retry)
        if fields is None:
            passthrough = retry
            continue
        well_formed = True
        merged.update(fields)
    if not well_formed:
        return RetryOptions() if passthrough is UNSET else passthrough
    return merged if set(merged) - set(RETRY_FIELDS) else RetryOptions(**merged)


def merge_options(
    fallback_options: FetchOptions,
    default_options: FetchOptions,
    call_options: FetchOptions,
) -> MergedOptions:
    """Layer the option sources of a call, lowest priority first.

    Args:
        fallback_options: Built-in defaults, usually ``FALLBACK_OPTIONS``.
        default_options: Caller-level defaults.
        call_options: Per-call options.

    Returns:
        MergedOptions: The resolved configuration.

    """
    layered = (fallback_options, default_options, call_options, FetchOptions())
    values: dict[str, t.Any] = {}
    for source in layered:
        for item in dataclasses.fields(source):
            if item.name == "retry" or item.name in EVENT_HANDLER_FIELDS:
                continue
            value = getattr(source, item.name)
            if value is not UNSET:
                values[item.name] = value

    values["retry"] = merge_retry(*(source.retry for source in layered))
    values.update(merge_event_handlers(default_options, call_options))
    if values.get("extra") is None:
        values.pop("extra", None)
    return MergedOptions(**values)
