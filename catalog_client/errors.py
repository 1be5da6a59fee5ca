"""Error taxonomy and the service-fault mapper.

Fixed errors cover caller mistakes and transport failures. Faults reported
by the remote service inside a response body are mapped to dynamically
created ServiceError subclasses, one per distinct fault code, kept in a
process-wide append-only registry so callers can catch them by kind.
"""

from __future__ import annotations

import keyword
import re
from threading import Lock

from catalog_client.response import ResponseNode, iter_nodes


class CatalogError(Exception):
    """Base class for catalog-client errors."""


class ValidationError(CatalogError):
    """Raised for bad caller input (unknown operation kind, invalid index)."""


class LocaleError(ValidationError):
    """Raised when a locale has no registered endpoint."""


class BatchError(CatalogError):
    """Raised when operations of different kinds are batched together."""


class EncodingError(CatalogError):
    """Raised when a parameter value cannot be converted to the target charset."""


class SigningError(CatalogError):
    """Raised when a request signature cannot be computed."""


class SigningWarning(UserWarning):
    """Emitted when a request is sent unsigned because signing failed."""


class NetworkError(CatalogError):
    """Raised when transient network failures outlast the retry policy."""


class HTTPError(CatalogError):
    """Raised for a terminal non-2xx status or too many redirects."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: bytes | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ResponseParseError(CatalogError):
    """Raised when a response body is not well-formed XML."""


class ServiceError(CatalogError):
    """Base class for faults reported by the remote service.

    Subclasses are created on demand by ErrorKindRegistry, one per fault code.
    """

    code: str = ""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


# AWS.InvalidParameterValue -> InvalidParameterValue
# AWS.ECommerceService.NoExactMatches -> NoExactMatches
_CODE_PREFIX = re.compile(r"^AWS.*\.")
_NOT_IDENTIFIER = re.compile(r"\W")


def fault_code(code: str) -> str:
    """Return a remote fault code without its ``AWS...`` namespace prefix."""
    return _CODE_PREFIX.sub("", code.strip())


def error_kind_name(code: str) -> str:
    """Return the class name used for a remote fault code.

    Different codes can map to the same name (``Bad-Code``, ``Bad_Code``);
    ErrorKindRegistry disambiguates those.
    """
    name = _NOT_IDENTIFIER.sub("_", fault_code(code)) or "UnknownError"
    if name[0].isdigit() or keyword.iskeyword(name):
        name = f"_{name}"
    return name


class ErrorKindRegistry:
    """Append-only registry of discovered ServiceError kinds.

    Usage:
        try:
            request.search(operation)
        except SERVICE_ERRORS.NoExactMatches:
            ...

    Kinds are keyed by fault code, so distinct codes never share a kind.
    Attribute access creates the kind if it has not been seen yet, so a
    caller can name a kind before the service ever reports it and still
    catch it later.
    """

    def __init__(self) -> None:
        self._kinds: dict[str, type[ServiceError]] = {}
        self._names: set[str] = set()
        self._lock = Lock()

    def kind_for(self, code: str) -> type[ServiceError]:
        """Return the ServiceError subclass for a fault code, creating it once."""
        code = fault_code(code)
        kind = self._kinds.get(code)
        if kind is not None:
            return kind

        with self._lock:
            kind = self._kinds.get(code)
            if kind is None:
                base = name = error_kind_name(code)
                suffix = 2
                while name in self._names:
                    name = f"{base}_{suffix}"
                    suffix += 1
                kind = type(name, (ServiceError,), {
                    "code": code,
                    "__module__": __name__,
                    "__doc__": f"Service fault {code or name}.",
                })
                self._kinds[code] = kind
                self._names.add(name)
            return kind

    def __getattr__(self, name: str) -> type[ServiceError]:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.kind_for(name)

    def __contains__(self, code: str) -> bool:
        return fault_code(code) in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)

    def names(self) -> list[str]:
        """Class names of the kinds created so far."""
        return sorted(self._names)


SERVICE_ERRORS = ErrorKindRegistry()


def exception_from_fault(
    code: str,
    message: str,
    registry: ErrorKindRegistry | None = None,
) -> ServiceError:
    """Build (but do not raise) the exception for a remote fault."""
    if registry is None:
        registry = SERVICE_ERRORS
    return registry.kind_for(code)(message)


def find_fault(tree: ResponseNode) -> tuple[str, str] | None:
    """Return the first (code, message) pair reported in a parsed response.

    Faults appear as ``<Error><Code>..</Code><Message>..</Message></Error>``,
    usually inside a ``Request/Errors`` block of each result set, or directly
    under the root of an ``...ErrorResponse`` document.
    """
    for node in iter_nodes(tree):
        if node.node_name == "Error":
            code = node.get("code")
            if code is not None:
                message = node.get("message")
                return str(code), str(message) if message is not None else ""
    return None


def check_response(
    tree: ResponseNode,
    registry: ErrorKindRegistry | None = None,
) -> None:
    """Raise the mapped ServiceError if the response reports a fault."""
    fault = find_fault(tree)
    if fault is not None:
        code, message = fault
        raise exception_from_fault(code, message, registry)
