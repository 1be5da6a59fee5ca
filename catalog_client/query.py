"""Query canonicalization.

Parameters are sorted into a fixed order before encoding so that the same
parameter set always produces the same bytes. Both the request signature
and the cache key depend on this.
"""

from __future__ import annotations

import codecs
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from catalog_client.errors import EncodingError

# RFC 3986 unreserved characters. quote() always leaves A-Z a-z 0-9 _ . - ~
# alone, so nothing else may be listed as safe.
_SAFE = "-_.~"


def url_encode(value: str) -> str:
    """Percent-encode everything except RFC 3986 unreserved characters."""
    return quote(value, safe=_SAFE, encoding="utf-8")


def stringify(value: Any) -> str | None:
    """Convert a parameter value to its query form. None means "omit"."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    if isinstance(value, bool):
        return "True" if value else "False"
    return str(value)


def _convert(value: Any, encoding: str) -> Any:
    """Apply character-set conversion to one raw parameter value."""
    try:
        if isinstance(value, bytes):
            return value.decode(encoding)
        if isinstance(value, str):
            # Only verifies the value is representable in the charset
            value.encode(encoding)
    except UnicodeError as e:
        raise EncodingError(f"Cannot convert {value!r} using {encoding}: {e}") from e
    return value


def assemble_query(params: Mapping[str, Any], encoding: str | None = None) -> str:
    """Build a canonical query string from a parameter mapping.

    Args:
        params: Parameter name -> value. Values are stringified; ``None``
            values are dropped; lists and tuples are comma-joined.
        encoding: Optional charset that ``bytes`` values are decoded from
            (and ``str`` values must be representable in). Defaults to UTF-8.

    Returns:
        ``?k1=v1&k2=v2`` sorted by the UTF-8 bytes of each name, or ``""``
        when no parameters remain.

    Raises:
        EncodingError: If *encoding* is unknown or a value cannot be converted.
    """
    if encoding is not None:
        try:
            codecs.lookup(encoding)
        except LookupError as e:
            raise EncodingError(f"Unknown character encoding: {encoding}") from e

    pairs: list[tuple[bytes, str, str]] = []
    for name, raw_value in params.items():
        raw_value = _convert(raw_value, encoding or "utf-8")
        value = stringify(raw_value)
        if value is None:
            continue
        key = str(name)
        # Byte order, not locale collation
        pairs.append((key.encode("utf-8"), key, value))

    if not pairs:
        return ""

    # Names such as 1 and "1" stringify alike; the value breaks the tie
    pairs.sort(key=lambda pair: (pair[0], pair[2]))
    return "?" + "&".join(f"{url_encode(key)}={url_encode(value)}" for _, key, value in pairs)
