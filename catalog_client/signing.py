"""Request signing (HMAC-SHA256 over the canonical query)."""

from __future__ import annotations

import base64
import hmac
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from catalog_client.endpoints import Endpoint
from catalog_client.errors import SigningError
from catalog_client.query import assemble_query

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Signer:
    """Signs canonical queries with a secret key.

    The string to sign is ``GET\\n{host}\\n{path}\\n{query}`` where query is
    the canonical query (including a fresh ``Timestamp``) without its
    leading ``?``. The base64 signature is added as ``Signature`` and the
    query canonicalized again.
    """

    def __init__(
        self,
        secret_key: str,
        clock: Callable[[], datetime] | None = None,
        digest: str = "sha256",
    ) -> None:
        self._secret_key = secret_key.encode("utf-8")
        self._clock = clock or _utc_now
        self._digest = digest

    def timestamp(self) -> str:
        return self._clock().astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)

    def signature(self, endpoint: Endpoint, canonical_query: str) -> str:
        """Return the base64 signature for an already-canonical query."""
        string_to_sign = "\n".join(
            ["GET", endpoint.host.lower(), endpoint.path, canonical_query.lstrip("?")]
        )
        try:
            mac = hmac.new(self._secret_key, string_to_sign.encode("utf-8"), self._digest)
        except (ValueError, TypeError) as e:
            # Digest not provided by this interpreter's hashlib/OpenSSL
            raise SigningError(f"Cannot compute HMAC-{self._digest.upper()}: {e}") from e
        return base64.b64encode(mac.digest()).decode("ascii")

    def sign(
        self,
        endpoint: Endpoint,
        params: Mapping[str, Any],
        encoding: str | None = None,
    ) -> str:
        """Return the signed canonical query for *params*."""
        stamped = dict(params)
        stamped.pop("Signature", None)
        stamped["Timestamp"] = self.timestamp()
        canonical = assemble_query(stamped, encoding)
        stamped["Signature"] = self.signature(endpoint, canonical)
        return assemble_query(stamped, encoding)
