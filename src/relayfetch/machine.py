"""The request execution state machine.

One run of ``RequestStateMachine`` is one logical call: it builds a request,
sends it through the transport, classifies the outcome and either retries,
returns the validated data, or raises a typed error. Each state has one
handler coroutine returning the next state; the transitions live in a
single table.
"""

from __future__ import annotations

import enum
import inspect
import logging
import typing as t
from dataclasses import dataclass, replace

from .builder import create_request
from .errors import FetcherError, FetcherTimeoutError, NetworkError, ParseError, ResponseError
from .options import parse_rejected as default_parse_rejected
from .options import parse_response as default_parse_response
from .retry import delay_retry, should_retry
from .schema import validate
from .signals import abortable_iter, run_abortable, with_timeout
from .streaming import to_streamable
from .types import RetryContext

if t.TYPE_CHECKING:
    from yarl import URL

    from .messages import Request, Response
    from .options import FetchOptions, MergedOptions
    from .signals import AbortSignal
    from .types import Transport

_logger = logging.getLogger("relayfetch")


class RequestState(enum.Enum):
    """States of a call."""

    INITIALIZING = "INITIALIZING"
    PREPARING_REQUEST = "PREPARING_REQUEST"
    SENDING_REQUEST = "SENDING_REQUEST"
    RESPONSE_RECEIVED = "RESPONSE_RECEIVED"
    CHECKING_RESPONSE = "CHECKING_RESPONSE"
    PARSING_RESPONSE = "PARSING_RESPONSE"
    VALIDATING_SCHEMA = "VALIDATING_SCHEMA"
    EVALUATING_RETRY = "EVALUATING_RETRY"
    DELAYING_RETRY = "DELAYING_RETRY"
    REQUEST_SUCCESS = "REQUEST_SUCCESS"
    REQUEST_FAILED = "REQUEST_FAILED"
    PARSE_ERROR = "PARSE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    RESPONSE_REJECTED = "RESPONSE_REJECTED"


TERMINAL_STATES: t.Final = frozenset(
    {
        RequestState.REQUEST_SUCCESS,
        RequestState.REQUEST_FAILED,
        RequestState.PARSE_ERROR,
        RequestState.VALIDATION_ERROR,
    },
)


@dataclass
class RequestContext:
    """Mutable state of one call, owned by its state machine.

    Attributes:
        input: The call input.
        options: Merged options of the call.
        default_options: Caller-level option source.
        call_options: Per-call option source.
        transport: The transport performing the exchange.
        ctx: Opaque context forwarded to the transport.
        logger: Logger for lifecycle messages.
        attempt: Retries made so far.
        max_attempts: Retry budget resolved by the last retry evaluation.
        signal: Composed abort signal of the current attempt.
        request: Request of the current attempt.
        response: Response of the current attempt.
        error: Error of the current attempt, or the final error.
        parsed_data: Decoded response body.
        validated_data: Data returned to the caller.
        request_announced: Whether ``on_request`` has been called.

    """

    input: str | URL | Request
    options: MergedOptions
    default_options: FetchOptions
    call_options: FetchOptions
    transport: Transport
    ctx: t.Any = None
    logger: logging.Logger = _logger
    attempt: int = 0
    max_attempts: int = 0
    signal: AbortSignal | None = None
    request: Request | None = None
    response: Response | None = None
    error: BaseException | None = None
    parsed_data: t.Any = None
    validated_data: t.Any = None
    request_announced: bool = False

    def retry_context(self, attempt: int | None = None) -> RetryContext:
        return RetryContext(
            request=self.request,
            attempt=self.attempt if attempt is None else attempt,
            response=self.response,
            error=self.error,
        )


async def _resolve[T](value: T | t.Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


def _release_signal(context: RequestContext) -> None:
    if context.signal is not None and context.signal is not context.options.signal:
        context.signal.dispose()


def _interrupted_state(error: BaseException, context: RequestContext) -> RequestState | None:
    """Route an error that is the abort reason of the current attempt.

    A caller abort ends the call. An expired attempt deadline is a network
    failure, eligible for a retry.

    Returns:
        The next state, or None when ``error`` is not an abort reason.

    """
    if context.signal is None or error is not context.signal.reason:
        return None
    context.error = error
    caller_signal = context.options.signal
    if caller_signal is not None and error is caller_signal.reason:
        return RequestState.REQUEST_FAILED
    return RequestState.NETWORK_ERROR


def _network_error(error: Exception, context: RequestContext) -> BaseException:
    if context.signal is not None and error is context.signal.reason:
        return error
    if isinstance(error, FetcherError):
        return error
    if isinstance(error, TimeoutError):
        return FetcherTimeoutError("Request timed out", cause=error, request=context.request)
    return NetworkError(f"Request failed: {error}", cause=error, request=context.request)


async def _initializing(context: RequestContext) -> RequestState:
    context.attempt = 0
    context.max_attempts = 0
    context.request_announced = False
    return RequestState.PREPARING_REQUEST


async def _preparing_request(context: RequestContext) -> RequestState:
    context.response = None
    context.error = None
    _release_signal(context)
    try:
        # a fresh deadline per attempt, never derived from the previous one
        context.signal = with_timeout(context.options.signal, context.options.timeout)
        context.request = await create_request(
            context.input,
            context.options,
            context.default_options,
            context.call_options,
        )
        if not context.request_announced:
            context.request_announced = True
            if context.options.on_request is not None:
                await _resolve(context.options.on_request(context.request))
    except Exception as e:
        context.error = e
        return RequestState.NETWORK_ERROR
    return RequestState.SENDING_REQUEST


async def _sending_request(context: RequestContext) -> RequestState:
    request = t.cast("Request", context.request)
    # body and headers are already part of the request
    transport_options = replace(context.options, body=None, headers=request.headers, signal=context.signal)
    context.logger.debug(
        "Starting request: %s %s (attempt %d)",
        request.method,
        request.url,
        context.attempt,
    )
    try:
        response = await run_abortable(
            context.transport(request, transport_options, context.ctx),
            context.signal,
        )
        if response.has_body and context.signal is not None:
            response = replace(response, content=abortable_iter(response.iter_chunks(), context.signal))
        context.response = await to_streamable(response, context.options.on_response_streaming)
    except Exception as e:
        if (state := _interrupted_state(e, context)) is RequestState.REQUEST_FAILED:
            return state
        context.error = _network_error(e, context)
        context.logger.warning("Request error: %s %s -> %s", request.method, request.url, context.error)
        return RequestState.NETWORK_ERROR
    return RequestState.RESPONSE_RECEIVED


async def _response_received(context: RequestContext) -> RequestState:
    request = t.cast("Request", context.request)
    response = t.cast("Response", context.response)
    context.logger.debug("Request completed: %s %s -> %d", request.method, request.url, response.status)
    return RequestState.CHECKING_RESPONSE


async def _checking_response(context: RequestContext) -> RequestState:
    request = t.cast("Request", context.request)
    response = t.cast("Response", context.response)
    reject = context.options.reject
    try:
        rejected = bool(await _resolve(reject(response))) if reject is not None else False
    except Exception as e:
        context.error = e
        return _interrupted_state(e, context) or RequestState.NETWORK_ERROR

    if rejected:
        context.logger.warning("Non-OK response: %s %s -> %d", request.method, request.url, response.status)
        return RequestState.RESPONSE_REJECTED
    return RequestState.PARSING_RESPONSE


async def _parsing_response(context: RequestContext) -> RequestState:
    request = t.cast("Request", context.request)
    response = t.cast("Response", context.response)
    parse = context.options.parse_response or default_parse_response
    try:
        context.parsed_data = await _resolve(parse(response, request))
    except Exception as e:
        if (state := _interrupted_state(e, context)) is not None:
            return state
        context.error = e if isinstance(e, ParseError) else ParseError(
            f"Failed to parse response: {e}",
            cause=e,
            response=response,
            request=request,
        )
        return RequestState.PARSE_ERROR
    return RequestState.VALIDATING_SCHEMA


async def _validating_schema(context: RequestContext) -> RequestState:
    schema = context.options.schema
    if schema is None:
        context.validated_data = context.parsed_data
        return RequestState.REQUEST_SUCCESS
    try:
        context.validated_data = await validate(schema, context.parsed_data)
    except Exception as e:
        context.error = e
        return RequestState.VALIDATION_ERROR
    return RequestState.REQUEST_SUCCESS


async def _response_rejected(context: RequestContext) -> RequestState:
    request = t.cast("Request", context.request)
    response = t.cast("Response", context.response)
    parse_rejected = context.options.parse_rejected or default_parse_rejected
    try:
        error = await _resolve(parse_rejected(response, request))
    except Exception as e:
        context.error = e
        return _interrupted_state(e, context) or RequestState.REQUEST_FAILED

    if not isinstance(error, BaseException):
        error = ResponseError(
            f"[{response.status}] {response.reason}".rstrip(),
            response=response,
            data=error,
            request=request,
        )
    context.error = error
    return RequestState.EVALUATING_RETRY


async def _network_error_state(context: RequestContext) -> RequestState:  # noqa: ARG001
    return RequestState.EVALUATING_RETRY


async def _evaluating_retry(context: RequestContext) -> RequestState:
    try:
        retry, context.max_attempts = await should_retry(context.options.retry, context.retry_context())
    except Exception as e:
        context.error = e
        return RequestState.REQUEST_FAILED
    return RequestState.DELAYING_RETRY if retry else RequestState.REQUEST_FAILED


async def _delaying_retry(context: RequestContext) -> RequestState:
    retry_context = context.retry_context(attempt=context.attempt + 1)
    try:
        # the wait follows the caller signal only; the attempt deadline is over
        delay = await delay_retry(context.options.retry, retry_context, context.options.signal)
        context.logger.debug(
            "Retrying request: %s (attempt %d/%d) after %.2fs",
            context.request.url if context.request is not None else context.input,
            retry_context.attempt,
            context.max_attempts,
            delay,
        )
        if context.options.on_retry is not None:
            await _resolve(context.options.on_retry(retry_context))
    except Exception as e:
        context.error = e
        return RequestState.REQUEST_FAILED
    context.attempt += 1
    return RequestState.PREPARING_REQUEST


TRANSITIONS: t.Final[dict[RequestState, t.Callable[[RequestContext], t.Awaitable[RequestState]]]] = {
    RequestState.INITIALIZING: _initializing,
    RequestState.PREPARING_REQUEST: _preparing_request,
    RequestState.SENDING_REQUEST: _sending_request,
    RequestState.RESPONSE_RECEIVED: _response_received,
    RequestState.CHECKING_RESPONSE: _checking_response,
    RequestState.PARSING_RESPONSE: _parsing_response,
    RequestState.VALIDATING_SCHEMA: _validating_schema,
    RequestState.RESPONSE_REJECTED: _response_rejected,
    RequestState.NETWORK_ERROR: _network_error_state,
    RequestState.EVALUATING_RETRY: _evaluating_retry,
    RequestState.DELAYING_RETRY: _delaying_retry,
}


class RequestStateMachine:
    """Drives one call from its input to its result.

    Attributes:
        context: The state of the call.
        state: The current state.

    """

    def __init__(self, context: RequestContext) -> None:
        self.context = context
        self.state = RequestState.INITIALIZING

    async def execute(self) -> t.Any:
        """Run the call to completion.

        Returns:
            The validated response data.

        Raises:
            NetworkError: If the transport failed and no retry was left.
            ResponseError: If the response was rejected and no retry was left.
            ParseError: If the response body could not be decoded.
            ValidationError: If the schema rejected the decoded body.
            AbortError: If the caller aborted the call.

        """
        context = self.context
        try:
            while self.state not in TERMINAL_STATES:
                self.state = await TRANSITIONS[self.state](context)
        finally:
            _release_signal(context)

        if self.state is RequestState.REQUEST_SUCCESS:
            if context.options.on_success is not None:
                await _resolve(context.options.on_success(context.validated_data, context.request))
            return context.validated_data

        error = t.cast("BaseException", context.error)
        if context.options.on_error is not None:
            await _resolve(context.options.on_error(error, context.request))
        raise error
