"""Request context and fetch engine.

A Request owns everything needed to turn an Operation into a response tree:
the locale's endpoint, an optional body cache, optional signing
credentials and a lazily opened HTTP connection that is reused across
fetches and replaced after transient network failures.

Usage:
    with Request(config, cache=MemoryCache()) as request:
        response = request.search(ItemSearch("Books", {"Title": "ruby"}))
        for item in response.item_search_response.items.item:
            print(item.item_attributes.title)
"""

from __future__ import annotations

import copy
import logging
import time
import warnings
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from threading import Lock
from typing import Any
from urllib.parse import urljoin

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    stop_never,
    wait_exponential,
)

from catalog_client.cache import Cache
from catalog_client.config_loader import build_cache, load_default_config
from catalog_client.endpoints import Endpoint, get_endpoint
from catalog_client.errors import (
    HTTPError,
    NetworkError,
    ResponseParseError,
    SigningError,
    SigningWarning,
    ValidationError,
    check_response,
)
from catalog_client.models import ClientConfig
from catalog_client.operations import PAGINATION, SHORTCUTS, Operation, ResponseGroup
from catalog_client.query import assemble_query
from catalog_client.response import Response, find_node, parse_response
from catalog_client.signing import Signer

logger = logging.getLogger(__name__)

# Maximum number of redirects to follow before giving up
MAX_REDIRECTS = 3

# Failures after which the connection is discarded and the request retried
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    httpx.NetworkError,
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
)

# Element reporting the number of available pages, where it differs from TotalPages
_TOTAL_PAGES_TAG = {
    "ItemLookup": "TotalOfferPages",
    "CustomerContentLookup": "TotalReviewPages",
}


class Request:
    """A request context: endpoint, cache, credentials and connection.

    Args:
        config: Client configuration; defaults to ClientConfig().
        cache: Optional body cache (see catalog_client.cache.Cache).
        transport: Optional httpx transport used for every connection,
            e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        cache: Cache | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.endpoint: Endpoint = get_endpoint(self.config.locale)
        self.cache = cache
        self.conn: httpx.Client | None = None
        self._transport = transport
        self._signer = Signer(self.config.secret_key) if self.config.secret_key else None

        # Rate limiting state
        rps = self.config.requests_per_second
        self._min_interval = 1.0 / rps if rps else 0.0
        self._last_request_time: float = 0.0
        self._rate_limit_lock = Lock()

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> Request:
        """Create a Request with the FileCache described by *config*, if any."""
        return cls(config, cache=build_cache(config), transport=transport)

    def __enter__(self) -> Request:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close the connection, if one is open."""
        conn, self.conn = self.conn, None
        if conn is not None:
            conn.close()

    @property
    def locale(self) -> str:
        return self.config.locale

    @locale.setter
    def locale(self, locale: str) -> None:
        # Validate before touching state; the next fetch connects to the new host
        self.endpoint = get_endpoint(locale)
        self.config = self.config.model_copy(update={"locale": locale})
        self.close()

    @property
    def user_agent(self) -> str:
        return self.config.user_agent

    def reconnect(self) -> httpx.Client:
        """Discard any existing connection and open a new one."""
        self.close()
        self.conn = httpx.Client(
            base_url=self.endpoint.base_url,
            timeout=self.config.timeout,
            follow_redirects=False,
            transport=self._transport,
        )
        return self.conn

    # -------------------------------------------------------------------------
    # Query building
    # -------------------------------------------------------------------------

    def build_query(self, operation: Operation) -> dict[str, Any]:
        """Merge the service parameters with the operation's query parameters."""
        params: dict[str, Any] = {
            "Service": self.config.service,
            "Version": self.config.version,
        }
        if self.config.key_id:
            params["AWSAccessKeyId"] = self.config.key_id
        if self.config.associate:
            params["AssociateTag"] = self.config.associate
        params.update(operation.query_parameters())
        return params

    def cache_key(self, params: Mapping[str, Any]) -> str:
        """Host plus path plus the unsigned canonical query."""
        return self.endpoint.host + self.endpoint.path + assemble_query(params, self.config.encoding)

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def get_page(self, params: Mapping[str, Any]) -> bytes:
        """Return the response body for *params*, from the cache or the network.

        Raises:
            EncodingError: If a parameter value cannot be converted.
            HTTPError: On a terminal non-2xx status or too many redirects.
            NetworkError: If transient failures outlast the retry policy.
        """
        unsigned = assemble_query(params, self.config.encoding)
        url = self.endpoint.path + unsigned
        cache_key = self.endpoint.host + url

        if self.cache is not None and self.cache.cached(cache_key):
            body = self.cache.fetch(cache_key)
            if body:
                logger.debug("Cache hit for %s", cache_key)
                return body

        if self._signer is not None:
            try:
                url = self.endpoint.path + self._signer.sign(
                    self.endpoint, params, self.config.encoding
                )
            except SigningError as e:
                logger.warning("Failed to sign request, sending it unsigned: %s", e)
                warnings.warn(
                    f"Request sent unsigned: {e}", SigningWarning, stacklevel=2
                )

        response = self._send(url)
        response = self._follow_redirects(response)

        if not response.is_success:
            raise HTTPError(
                f"HTTP response code {response.status_code}",
                status_code=response.status_code,
                body=response.content,
            )

        body = response.content
        if self.cache is not None:
            self.cache.store(cache_key, body)
        return body

    def _retrying(self) -> Retrying:
        max_retries = self.config.max_retries
        stop = stop_never if max_retries is None else stop_after_attempt(max_retries + 1)
        if self.config.deadline is not None:
            stop = stop | stop_after_delay(self.config.deadline)
        return Retrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop,
            wait=wait_exponential(
                multiplier=self.config.retry_backoff, max=self.config.retry_backoff_max
            ),
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        )

    def _send(self, url: str) -> httpx.Response:
        """GET *url*, reconnecting and retrying on transient network failures."""
        try:
            for attempt in self._retrying():
                with attempt:
                    conn = self.conn or self.reconnect()
                    logger.debug("Fetching %s%s ...", conn.base_url, url)
                    self._wait_for_rate_limit()
                    try:
                        response = conn.get(url, headers={"user-agent": self.user_agent})
                    except TRANSIENT_ERRORS as e:
                        logger.debug("Connection to server lost: %s. Retrying...", e)
                        self.close()
                        raise
        except TRANSIENT_ERRORS as e:
            raise NetworkError(f"Giving up on {url}: {e}") from e
        return response

    def _follow_redirects(self, response: httpx.Response) -> httpx.Response:
        redirects = 0
        while "location" in response.headers:
            redirects += 1
            if redirects > MAX_REDIRECTS:
                raise HTTPError(
                    f"More than {MAX_REDIRECTS} redirections",
                    status_code=response.status_code,
                )
            # Relative locations inherit scheme and host from the previous URL
            location = urljoin(str(response.url), response.headers["location"])
            logger.debug("Following HTTP %s to %s ...", response.status_code, location)
            response = self._send(location)
        return response

    def _wait_for_rate_limit(self) -> None:
        """Wait if necessary to respect rate limit."""
        if self._min_interval <= 0:
            return

        with self._rate_limit_lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                sleep_time = self._min_interval - elapsed
                time.sleep(sleep_time)
            self._last_request_time = time.monotonic()

    # -------------------------------------------------------------------------
    # Searching
    # -------------------------------------------------------------------------

    def search(
        self,
        operation: Operation,
        response_group: ResponseGroup | str | Iterable[str] | None = None,
    ) -> Response:
        """Run *operation* and return the parsed response.

        Args:
            operation: The operation to perform. Not modified.
            response_group: Overrides the response group of every
                parameter set of the operation.

        Raises:
            ServiceError: A dynamically created subclass when the service
                reports a fault in the response body.
            HTTPError, NetworkError, EncodingError: See get_page().
        """
        if response_group is not None:
            operation = copy.deepcopy(operation)
            operation.response_group = response_group

        params = self.build_query(operation)
        body = self.get_page(params)

        try:
            tree = parse_response(body, operation=operation, cache_key=self.cache_key(params))
        except ET.ParseError as e:
            raise ResponseParseError(f"Malformed response for {operation.kind}: {e}") from e

        check_response(tree)
        return tree

    def search_pages(
        self,
        operation: Operation,
        response_group: ResponseGroup | str | Iterable[str] | None = None,
        nr_pages: int | None = None,
    ) -> list[Response]:
        """Run a paginated operation and return one response per page.

        Fetches pages until *nr_pages* (all pages when None), the kind's last
        servable page, or the page count the service reports, whichever comes
        first. Kinds without pagination, batches and MultipleOperations
        return a single page.
        """
        if nr_pages is not None and nr_pages < 1:
            raise ValidationError(f"nr_pages must be at least 1, got {nr_pages}")

        first = self.search(operation, response_group)
        pagination = PAGINATION.get(operation.kind)
        if pagination is None or operation.is_batched or nr_pages == 1:
            return [first]

        limit = pagination.max_page if nr_pages is None else min(nr_pages, pagination.max_page)
        total = _total_pages(first, operation.kind)
        if total is not None:
            limit = min(limit, total)
        elif nr_pages is None:
            return [first]

        pages = [first]
        for page in range(2, limit + 1):
            pages.append(self.search(operation.with_page(page), response_group))
        return pages


def _total_pages(response: Response, kind: str) -> int | None:
    node = find_node(response, _TOTAL_PAGES_TAG.get(kind, "TotalPages"))
    if node is None:
        return None
    try:
        return int(node)
    except ValueError:
        return None


def shortcut(
    name: str,
    *args: Any,
    request: Request | None = None,
    response_group: ResponseGroup | str | Iterable[str] | None = None,
    **kwargs: Any,
) -> Response:
    """One-call helper: build the catalog operation *name* and search.

    Example:
        shortcut("item_search", "Books", {"Title": "Ruby"})

    Without *request*, a Request is built from the default config file
    and closed afterwards.
    """
    try:
        operation_class = SHORTCUTS[name]
    except KeyError:
        available = ", ".join(sorted(SHORTCUTS))
        raise ValidationError(f"Unknown shortcut '{name}'. Available: {available}") from None

    operation = operation_class(*args, **kwargs)
    if request is not None:
        return request.search(operation, response_group)
    with Request.from_config(load_default_config()) as own_request:
        return own_request.search(operation, response_group)
