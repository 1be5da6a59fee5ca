"""Locale -> service endpoint table."""

from __future__ import annotations

from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

from catalog_client.errors import LocaleError


class Endpoint(BaseModel):
    """Host and base path of the catalog service for one locale."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    scheme: str = Field(default="http", description="URL scheme")
    host: str = Field(description="Service host name")
    path: str = Field(description="Base path that queries are appended to")

    @classmethod
    def from_url(cls, url: str) -> Endpoint:
        parts = urlsplit(url)
        return cls(scheme=parts.scheme or "http", host=parts.netloc, path=parts.path or "/")

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"


ENDPOINTS: dict[str, Endpoint] = {
    "ca": Endpoint.from_url("http://ecs.amazonaws.ca/onca/xml"),
    "de": Endpoint.from_url("http://ecs.amazonaws.de/onca/xml"),
    "fr": Endpoint.from_url("http://ecs.amazonaws.fr/onca/xml"),
    "jp": Endpoint.from_url("http://ecs.amazonaws.jp/onca/xml"),
    "uk": Endpoint.from_url("http://ecs.amazonaws.co.uk/onca/xml"),
    "us": Endpoint.from_url("http://ecs.amazonaws.com/onca/xml"),
}


def get_endpoint(locale: str) -> Endpoint:
    """Return the endpoint for a locale. Raises LocaleError if unknown."""
    try:
        return ENDPOINTS[locale]
    except KeyError:
        available = ", ".join(sorted(ENDPOINTS))
        raise LocaleError(f"Invalid locale '{locale}'. Available: {available}") from None
