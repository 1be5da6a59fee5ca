"""Pytest configuration and fixtures for catalog-client tests.

This file provides:
- Canned XML response bodies in the catalog service's format
- make_request(): a Request wired to an httpx.MockTransport
- Fresh registries so tests do not depend on process-wide discovery state
"""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from catalog_client.errors import ErrorKindRegistry
from catalog_client.models import ClientConfig
from catalog_client.request import Request
from catalog_client.response import NodeTypeRegistry

NS = "http://webservices.amazon.com/AWSECommerceService/2009-11-01"

ITEM_SEARCH_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<ItemSearchResponse xmlns="{NS}">
  <OperationRequest>
    <RequestId>8f3a</RequestId>
    <Arguments>
      <Argument Name="Operation" Value="ItemSearch"/>
      <Argument Name="SearchIndex" Value="Books"/>
    </Arguments>
  </OperationRequest>
  <Items>
    <Request><IsValid>True</IsValid></Request>
    <TotalResults>3</TotalResults>
    <TotalPages>1</TotalPages>
    <Item>
      <ASIN>0974514055</ASIN>
      <DetailPageURL>http://example.com/0974514055</DetailPageURL>
      <ItemAttributes><Title>Programming Ruby</Title><Author>Dave Thomas</Author><Author>Chad Fowler</Author></ItemAttributes>
    </Item>
    <Item>
      <ASIN>0596516177</ASIN>
      <ItemAttributes><Title>The Ruby Programming Language</Title></ItemAttributes>
    </Item>
    <Item>
      <ASIN>1934356476</ASIN>
      <ItemAttributes><Title>Agile Web Development</Title></ItemAttributes>
    </Item>
  </Items>
</ItemSearchResponse>
""".encode("utf-8")

ITEM_LOOKUP_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<ItemLookupResponse xmlns="{NS}">
  <Items>
    <Request><IsValid>True</IsValid></Request>
    <Item>
      <ASIN>0974514055</ASIN>
      <SalesRank>1234</SalesRank>
      <ItemAttributes><Title>Programming Ruby</Title></ItemAttributes>
    </Item>
  </Items>
</ItemLookupResponse>
""".encode("utf-8")

FAULT_XML_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<ItemSearchResponse>
  <Items>
    <Request>
      <IsValid>False</IsValid>
      <Errors>
        <Error><Code>{code}</Code><Message>{message}</Message></Error>
      </Errors>
    </Request>
  </Items>
</ItemSearchResponse>
"""


def fault_xml(code: str, message: str = "Something went wrong") -> bytes:
    return FAULT_XML_TEMPLATE.format(code=code, message=message).encode("utf-8")


def make_config(**overrides) -> ClientConfig:
    """ClientConfig with retry backoff disabled so retry tests do not sleep."""
    values = {"retry_backoff": 0.0, "retry_backoff_max": 0.0}
    values.update(overrides)
    return ClientConfig(**values)


def make_request(
    handler: Callable[[httpx.Request], httpx.Response],
    cache=None,
    **config_overrides,
) -> Request:
    """Create a Request whose connections go through an httpx.MockTransport."""
    return Request(
        make_config(**config_overrides),
        cache=cache,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def node_registry() -> NodeTypeRegistry:
    return NodeTypeRegistry()


@pytest.fixture
def error_registry() -> ErrorKindRegistry:
    return ErrorKindRegistry()
