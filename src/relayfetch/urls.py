"""Resolution of the final request URL."""

from __future__ import annotations

import re
import typing as t

from yarl import URL

if t.TYPE_CHECKING:
    from collections.abc import Mapping

    from .options import SerializeParams

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)
_SYNTHETIC_BASE = URL("http://localhost/")


def _existing_query_keys(url: str) -> set[str]:
    """Return the query keys already present in ``url``.

    Relative and malformed inputs are parsed against a synthetic base.
    """
    try:
        parsed = URL(url)
    except (ValueError, TypeError):
        try:
            parsed = _SYNTHETIC_BASE.join(URL(url.lstrip("/"), encoded=True))
        except (ValueError, TypeError):
            return set()
    return set(parsed.query.keys())


def _join(base: str, path: str) -> str:
    base = base.rstrip("/")
    path = path.lstrip("/")
    return f"{base}/{path}" if path else base


def resolve_url(
    base_url: str | None,
    url: str | URL,
    default_params: Mapping[str, t.Any] | None,
    params: Mapping[str, t.Any] | None,
    serialize_params: SerializeParams,
) -> str:
    """Build the URL of a request.

    Query keys already written in ``url`` shadow the same keys in
    ``default_params``, so callers can override computed defaults without
    knowing them. ``params`` win over ``default_params``.

    Args:
        base_url: Prefix for relative inputs. Ignored for absolute inputs.
        url: Absolute URL or path, as a string or yarl URL.
        default_params: Caller-level query parameters.
        params: Per-call query parameters.
        serialize_params: Converts the merged parameters to a query string.

    Returns:
        str: The resolved URL. The query is inserted before any fragment.

    """
    url = str(url)
    target = url if not base_url or _ABSOLUTE_URL.match(url) else _join(base_url, url)

    existing = _existing_query_keys(url)
    merged = {key: value for key, value in (default_params or {}).items() if key not in existing}
    merged.update(params or {})

    query = serialize_params(merged)
    if not query:
        return target

    head, hash_sign, fragment = target.partition("#")
    separator = "&" if "?" in head else "?"
    return f"{head}{separator}{query}{hash_sign}{fragment}"
