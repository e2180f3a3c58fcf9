"""Response builders and a scripted transport shared by the tests."""

from __future__ import annotations

import json
import typing as t

from relayfetch import Response

if t.TYPE_CHECKING:
    from relayfetch import MergedOptions, Request

type Outcome = Response | BaseException | t.Callable[[Request], t.Awaitable[Response]]


def json_response(data: t.Any, status: int = 200, reason: str = "OK") -> Response:
    """Build a JSON response with a Content-Length header."""
    body = json.dumps(data).encode()
    return Response(
        status=status,
        reason=reason,
        headers={"Content-Type": "application/json", "Content-Length": str(len(body))},
        content=body,
    )


def text_response(text: str, status: int = 200, reason: str = "OK") -> Response:
    """Build a plain text response."""
    return Response(status=status, reason=reason, headers={"Content-Type": "text/plain"}, content=text.encode())


async def stream(*chunks: bytes) -> t.AsyncIterator[bytes]:
    """Yield ``chunks`` as an async byte stream."""
    for chunk in chunks:
        yield chunk


class FakeTransport:
    """Transport replaying scripted outcomes, repeating the last one.

    Attributes:
        calls: The arguments of every call, in order.

    """

    def __init__(self, *outcomes: Outcome) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[Request, MergedOptions, t.Any]] = []

    @property
    def requests(self) -> list[Request]:
        return [request for request, _, _ in self.calls]

    async def __call__(self, request: Request, options: MergedOptions, ctx: t.Any = None) -> Response:
        self.calls.append((request, options, ctx))
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome(request)
        return outcome
