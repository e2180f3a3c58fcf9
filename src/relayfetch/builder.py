"""Construction of the concrete request of an attempt."""

from __future__ import annotations

import typing as t
from collections.abc import Mapping

from aiohttp import hdrs
from multidict import CIMultiDict
from yarl import URL

from .messages import Request
from .options import FetchOptions, MergedOptions, is_jsonifiable
from .options import serialize_body as default_serialize_body
from .options import serialize_params as default_serialize_params
from .streaming import to_streamable
from .types import UNSET
from .urls import resolve_url

_JSON_HEADERS: t.Final = {hdrs.CONTENT_TYPE: "application/json"}


def merge_headers(*sources: Mapping[str, str | None] | None) -> CIMultiDict[str]:
    """Merge header sources case-insensitively, later sources winning.

    A ``None`` value removes the header set by an earlier source.
    """
    merged: CIMultiDict[str] = CIMultiDict()
    for source in sources:
        if not source:
            continue
        for key, value in source.items():
            if value is None:
                merged.popall(key, None)
            else:
                merged[key] = str(value)
    return merged


def _params(options: FetchOptions) -> Mapping[str, t.Any] | None:
    return None if options.params is UNSET else options.params


def _headers(options: FetchOptions) -> Mapping[str, str | None] | None:
    return None if options.headers is UNSET else options.headers


async def create_request(
    url: str | URL | Request,
    options: MergedOptions,
    default_options: FetchOptions,
    call_options: FetchOptions,
) -> Request:
    """Build the request of one attempt.

    Args:
        url: The call input. A ``Request`` is reused as the template,
            overridden by explicitly configured method, headers and body.
        options: The merged options of the call.
        default_options: Caller-level defaults, for their query parameters
            and headers.
        call_options: Per-call options, for their query parameters and
            headers.

    Returns:
        Request: The request, instrumented for upload progress.

    """
    serialize = options.serialize_body or default_serialize_body
    content = serialize(options.body) if options.body is not None else None
    json_headers = _JSON_HEADERS if is_jsonifiable(options.body) else None

    if isinstance(url, Request):
        request = Request(
            url=url.url,
            method=options.method.upper() if call_options.method is not UNSET else url.method,
            headers=merge_headers(url.headers, json_headers, _headers(default_options), _headers(call_options)),
            content=content if content is not None else url.clone().content,
        )
    else:
        target = resolve_url(
            options.base_url,
            url,
            _params(default_options),
            _params(call_options),
            options.serialize_params or default_serialize_params,
        )
        request = Request(
            url=URL(target),
            method=options.method.upper(),
            headers=merge_headers(json_headers, _headers(default_options), _headers(call_options)),
            content=content,
        )

    return await to_streamable(request, options.on_request_streaming)
