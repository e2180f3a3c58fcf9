"""Error hierarchy for relayfetch.

Every failure a call can end with is one of these types. Transport
exceptions are wrapped with the original exception preserved as ``cause``.
"""

from __future__ import annotations

import json
import typing as t

if t.TYPE_CHECKING:
    from .messages import Request, Response


class FetcherError(Exception):
    """Base exception for all relayfetch errors.

    Attributes:
        message: Human-readable error description.
        cause: The original exception that caused this error.
        url: The URL that was being fetched when the error occurred.

    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        url: str | None = None,
    ) -> None:
        """Initialize FetcherError.

        Args:
            message: Human-readable error description.
            cause: The original exception that caused this error.
            url: The URL that was being fetched when the error occurred.

        """
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.url = url

    def __str__(self) -> str:
        """Return a string representation of the error."""
        parts = [self.message]
        if self.url:
            parts.append(f"URL: {self.url}")
        if self.cause:
            parts.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")
        return " | ".join(parts)


class NetworkError(FetcherError):
    """The transport raised before a response was obtained.

    This includes DNS failures, refused connections and dropped sockets.

    Attributes:
        request: The request that was being sent.

    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        url: str | None = None,
        request: Request | None = None,
    ) -> None:
        if url is None and request is not None:
            url = str(request.url)
        super().__init__(message, cause=cause, url=url)
        self.request = request


class FetcherTimeoutError(NetworkError):
    """An attempt did not complete within its timeout."""


class AbortError(FetcherError):
    """The call was aborted through its abort signal.

    Attributes:
        reason: The value passed to ``AbortController.abort()``, if any.

    """

    def __init__(self, message: str = "The operation was aborted", *, reason: object = None) -> None:
        super().__init__(message)
        self.reason = reason


class ResponseError(FetcherError):
    """A response was received but rejected by the ``reject`` predicate.

    Attributes:
        status: HTTP status code of the rejected response.
        response: The rejected response.
        data: The rejected body, decoded as JSON when possible, else text.
        request: The request that produced the response.

    """

    def __init__(
        self,
        message: str,
        *,
        response: Response,
        data: t.Any = None,
        request: Request | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize ResponseError.

        Args:
            message: Human-readable error description.
            response: The rejected response.
            data: The parsed rejection body.
            request: The request that produced the response.
            cause: The original exception that caused this error.

        """
        url = str(request.url) if request is not None else None
        super().__init__(message, cause=cause, url=url)
        self.status = response.status
        self.response = response
        self.data = data
        self.request = request

    def __str__(self) -> str:
        """Return a string representation of the error."""
        parts = [self.message]
        if self.status:
            parts.append(f"Status: {self.status}")
        if self.url:
            parts.append(f"URL: {self.url}")
        if self.cause:
            parts.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")
        return " | ".join(parts)


class ParseError(FetcherError):
    """The response body could not be decoded.

    Never retried: a malformed body is a contract error, not a transient
    fault.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        response: Response | None = None,
        request: Request | None = None,
    ) -> None:
        url = str(request.url) if request is not None else None
        super().__init__(message, cause=cause, url=url)
        self.response = response
        self.request = request


class ValidationError(FetcherError):
    """The decoded body was rejected by the configured schema.

    Attributes:
        issues: The issues reported by the schema, never empty.
        value: The data that failed validation.

    """

    def __init__(self, issues: t.Sequence[t.Any], value: t.Any) -> None:
        super().__init__(json.dumps(list(issues), default=str))
        self.issues = tuple(issues)
        self.value = value
