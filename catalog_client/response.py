"""Schema-less response tree.

Converts XML response bodies into a tree of ResponseNode objects whose
shape follows the document rather than a fixed schema. Every child element
name maps to a NodeList, even when the element occurs once; a NodeList of
one forwards field access, ``str()``, ``int()``, string equality and
``match()`` to its sole node, so callers can write::

    response.item_search_response.items.item

whether the service returned one item or many.

Element tags are recorded in a process-wide, append-only NodeTypeRegistry
as they are discovered. Serialized trees are reloaded against that
registry; tags the loading process has not yet seen are registered on
demand.
"""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Iterator
from dataclasses import dataclass
from threading import Lock
from typing import IO, TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from catalog_client.operations import Operation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------

_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")


def uncamelise(name: str) -> str:
    """``ItemSearchResponse`` → ``item_search_response``, ``DetailPageURL`` → ``detail_page_url``."""
    name = _ACRONYM_BOUNDARY.sub(r"\1_\2", name)
    name = _WORD_BOUNDARY.sub(r"\1_\2", name)
    return name.replace("-", "_").lower()


def _strip_ns(tag: str) -> str:
    """Remove namespace URI prefix: ``{http://...}Name`` → ``Name``."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


# ---------------------------------------------------------------------------
# Discovered node types
# ---------------------------------------------------------------------------


class UnknownNodeTypeError(KeyError):
    """Raised when a tag has not been registered in a NodeTypeRegistry."""

    def __init__(self, tag: str) -> None:
        super().__init__(tag)
        self.tag = tag


@dataclass(frozen=True)
class NodeType:
    """Metadata for one discovered element tag."""

    tag: str
    attribute_name: str


class NodeTypeRegistry:
    """Append-only, thread-safe mapping of element tag -> NodeType.

    Lookups need no lock because entries are never removed or replaced.
    """

    def __init__(self) -> None:
        self._types: dict[str, NodeType] = {}
        self._lock = Lock()

    def register(self, tag: str) -> NodeType:
        """Return the NodeType for *tag*, adding it if absent."""
        node_type = self._types.get(tag)
        if node_type is not None:
            return node_type
        with self._lock:
            node_type = self._types.get(tag)
            if node_type is None:
                node_type = NodeType(tag=tag, attribute_name=uncamelise(tag))
                self._types[tag] = node_type
                logger.debug("Discovered node type %s", tag)
            return node_type

    def get(self, tag: str) -> NodeType:
        """Return the NodeType for *tag*. Raises UnknownNodeTypeError if unseen."""
        try:
            return self._types[tag]
        except KeyError:
            raise UnknownNodeTypeError(tag) from None

    def __contains__(self, tag: object) -> bool:
        return tag in self._types

    def __len__(self) -> int:
        return len(self._types)

    def tags(self) -> list[str]:
        return sorted(self._types)


NODE_TYPES = NodeTypeRegistry()


# ---------------------------------------------------------------------------
# Object model
# ---------------------------------------------------------------------------


class ResponseNode:
    """One XML element.

    Child elements are reached as attributes named after the snake_cased
    tag (``node.item_attributes``), by subscription (``node["title"]``) or
    with ``node.get("title")``. Missing fields read as ``None``. A leaf
    node holds its text in ``node_value``; unknown attributes on a leaf are
    looked up on that text, so ``node.upper()`` works on a leaf.

    Methods and properties use ``node_`` prefixes or names that do not occur
    as snake_cased tags; a child whose name collides with one of them is
    still reachable with ``node["name"]``.
    """

    __slots__ = ("node_name", "node_type", "attrib", "node_value", "_children")

    def __init__(self, node_type: NodeType | None = None) -> None:
        self.node_type = node_type
        self.node_name: str | None = node_type.tag if node_type is not None else None
        self.attrib: dict[str, str] | None = None
        self.node_value: str | None = None
        self._children: dict[str, NodeList] = {}

    # --- field access ---

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal attribute lookup fails
        if name.startswith("_"):
            raise AttributeError(name)
        children = self._children.get(name)
        if children is not None:
            return children
        if not self._children and self.node_value is not None and hasattr(self.node_value, name):
            return getattr(self.node_value, name)
        return None

    def __getitem__(self, name: str) -> NodeList | None:
        return self._children.get(name)

    def get(self, name: str, default: Any = None) -> Any:
        return self._children.get(name, default)

    def node_children(self) -> dict[str, NodeList]:
        """Child collections keyed by field name, in document order."""
        return self._children

    def properties(self) -> list[str]:
        """Names of the fields present on this node."""
        return list(self._children)

    def add_child(self, node: ResponseNode) -> None:
        if node.node_type is None:
            raise ValueError("Only typed nodes can be attached as children")
        name = node.node_type.attribute_name
        children = self._children.get(name)
        if children is None:
            children = self._children[name] = NodeList()
        children.append(node)

    @property
    def is_leaf(self) -> bool:
        return not self._children

    # --- presentation ---

    def __str__(self) -> str:
        if not self._children:
            return self.node_value or ""
        return "".join(f"{name} = {value}\n" for name, value in self._children.items())

    def __repr__(self) -> str:
        if not self._children:
            return f"<ResponseNode {self.node_name} value={self.node_value!r}>"
        return f"<ResponseNode {self.node_name} fields={self.properties()!r}>"

    def __int__(self) -> int:
        return int(str(self))

    def __float__(self) -> float:
        return float(str(self))

    def __bool__(self) -> bool:
        return True

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str):
            return (self.node_value or "") == other
        if isinstance(other, ResponseNode):
            return (
                self.node_name == other.node_name
                and self.attrib == other.attrib
                and self.node_value == other.node_value
                and self._children == other._children
            )
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def match(self, pattern: str | re.Pattern[str]) -> re.Match[str] | None:
        """``re.search`` *pattern* against the node's string form."""
        return re.search(pattern, str(self))

    def to_dict(self) -> dict[str, Any]:
        """Plain nested dict; single-element collections are unwrapped."""
        result: dict[str, Any] = {}
        if self.attrib:
            result["attrib"] = dict(self.attrib)
        for name, children in self._children.items():
            values = [child.to_dict() if not child.is_leaf else child.node_value for child in children]
            result[name] = values[0] if len(values) == 1 else values
        return result


class NodeList(list):
    """Ordered collection of same-named child nodes.

    With exactly one element, field access, ``str()``, ``int()``, equality
    against a string and ``match()`` go to that element. List methods win
    over child names (``index``, ``count``); use ``[0]`` or ``get()`` then.
    """

    def _sole(self) -> ResponseNode | None:
        return self[0] if len(self) == 1 else None

    def __getattr__(self, name: str) -> Any:
        sole = self._sole()
        if sole is None or name.startswith("_"):
            raise AttributeError(
                f"'{type(self).__name__}' with {len(self)} elements has no attribute '{name}'"
            )
        return getattr(sole, name)

    def get(self, name: str, default: Any = None) -> Any:
        sole = self._sole()
        if sole is None:
            raise AttributeError(f"get() needs exactly one element, not {len(self)}")
        return sole.get(name, default)

    def __str__(self) -> str:
        sole = self._sole()
        return str(sole) if sole is not None else super().__str__()

    def __int__(self) -> int:
        sole = self._sole()
        if sole is None:
            raise TypeError(f"int() needs exactly one element, not {len(self)}")
        return int(sole)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str):
            sole = self._sole()
            return sole is not None and str(sole) == other
        return super().__eq__(other)

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        return result if result is NotImplemented else not result

    __hash__ = None  # type: ignore[assignment]

    def match(self, pattern: str | re.Pattern[str]) -> re.Match[str] | None:
        sole = self._sole()
        if sole is None:
            raise TypeError(f"match() needs exactly one element, not {len(self)}")
        return sole.match(pattern)


class Response(ResponseNode):
    """Document node of a parsed response.

    Attributes:
        operation: The operation that produced the response, if known.
        cache_key: Cache key of the raw body, if fetched through a Request.
    """

    __slots__ = ("operation", "cache_key")

    def __init__(self, operation: Operation | None = None, cache_key: str | None = None) -> None:
        super().__init__(None)
        self.operation = operation
        self.cache_key = cache_key

    @property
    def kernel(self) -> Any:
        """Shortcut to the records of most interest.

        ``ItemSearch`` → ``item_search_response.items.item``;
        ``SellerListingLookup`` → ``seller_listing_lookup_response.seller_listings.seller_listing``.
        Returns None if the operation is unknown or the path is absent.
        """
        if self.operation is None:
            return None
        stub = uncamelise(self.operation.kind)
        record = re.sub(r"_[^_]+$", "", stub)
        node: Any = self.get(f"{stub}_response")
        for name in (f"{record}s", record):
            if node is None or len(node) == 0:
                return None
            node = node[0].get(name)
        return node


def iter_nodes(node: ResponseNode) -> Iterator[ResponseNode]:
    """Yield *node* and its descendants depth-first in document order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        for children in reversed(list(current.node_children().values())):
            stack.extend(reversed(children))


def find_node(node: ResponseNode, tag: str) -> ResponseNode | None:
    """Return the first node in document order whose element tag is *tag*."""
    for candidate in iter_nodes(node):
        if candidate.node_name == tag:
            return candidate
    return None


# ---------------------------------------------------------------------------
# XML → tree
# ---------------------------------------------------------------------------


def _walk(root: ET.Element, document: ResponseNode, registry: NodeTypeRegistry) -> None:
    # Explicit stack; element depth is bounded only by the parser
    stack: list[tuple[ET.Element, ResponseNode]] = [(root, document)]
    while stack:
        element, parent = stack.pop()
        node = ResponseNode(registry.register(_strip_ns(element.tag)))

        attrib: dict[str, str] = {}
        for attr_name, attr_value in element.attrib.items():
            if attr_name.startswith("xmlns") or attr_name.startswith("{"):
                continue
            # Some responses repeat the attribute name inside its value: Name="Name=x"
            if attr_value.startswith(f"{attr_name}="):
                attr_value = attr_value[len(attr_name) + 1:]
            attrib[attr_name.lower()] = attr_value
        if attrib:
            node.attrib = attrib

        parent.add_child(node)

        if len(element):
            stack.extend((child, node) for child in reversed(element))
        else:
            node.node_value = element.text


def parse_response(
    body: bytes | str,
    registry: NodeTypeRegistry | None = None,
    operation: Operation | None = None,
    cache_key: str | None = None,
) -> Response:
    """Parse an XML body into a Response tree.

    Raises:
        ET.ParseError: If *body* is not well-formed XML.
    """
    if registry is None:
        registry = NODE_TYPES
    root = ET.fromstring(body)
    document = Response(operation=operation, cache_key=cache_key)
    _walk(root, document, registry)
    return document


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class SerializedNode(BaseModel):
    """Interchange form of a ResponseNode."""

    model_config = ConfigDict(extra="forbid")

    tag: str | None = Field(default=None, description="Element tag; None for a document node")
    attrib: dict[str, str] | None = Field(default=None, description="Element attributes")
    value: str | None = Field(default=None, description="Leaf text")
    children: dict[str, list[SerializedNode]] = Field(
        default_factory=dict, description="Field name -> child nodes in document order"
    )


SerializedNode.model_rebuild()


def _snapshot_node(node: ResponseNode) -> SerializedNode:
    return SerializedNode(
        tag=node.node_name,
        attrib=dict(node.attrib) if node.attrib is not None else None,
        value=node.node_value,
    )


def snapshot(node: ResponseNode) -> SerializedNode:
    root = _snapshot_node(node)
    stack = [(node, root)]
    while stack:
        current, data = stack.pop()
        for name, children in current.node_children().items():
            entries = data.children[name] = []
            for child in children:
                child_data = _snapshot_node(child)
                entries.append(child_data)
                stack.append((child, child_data))
    return root


def _new_node(data: SerializedNode, registry: NodeTypeRegistry) -> ResponseNode:
    node: ResponseNode = Response() if data.tag is None else ResponseNode(registry.get(data.tag))
    node.attrib = dict(data.attrib) if data.attrib is not None else None
    node.node_value = data.value
    return node


def _rebuild(data: SerializedNode, registry: NodeTypeRegistry) -> ResponseNode:
    root = _new_node(data, registry)
    stack = [(data, root)]
    while stack:
        current, node = stack.pop()
        for children in current.children.values():
            for child in children:
                child_node = _new_node(child, registry)
                node.add_child(child_node)
                stack.append((child, child_node))
    return root


def restore(data: SerializedNode, registry: NodeTypeRegistry | None = None) -> ResponseNode:
    """Rebuild a tree, registering each unknown tag and retrying once for it."""
    if registry is None:
        registry = NODE_TYPES
    retried: set[str] = set()
    while True:
        try:
            return _rebuild(data, registry)
        except UnknownNodeTypeError as e:
            if e.tag in retried:
                raise
            retried.add(e.tag)
            logger.debug("Registering node type %s while loading", e.tag)
            registry.register(e.tag)


def dumps(node: ResponseNode) -> str:
    """Serialize a tree to JSON."""
    return snapshot(node).model_dump_json(exclude_defaults=True)


def loads(data: str | bytes, registry: NodeTypeRegistry | None = None) -> ResponseNode:
    """Load a tree serialized by dumps()."""
    return restore(SerializedNode.model_validate_json(data), registry)


def dump(node: ResponseNode, fp: IO[str]) -> None:
    fp.write(dumps(node))


def load(fp: IO[str], registry: NodeTypeRegistry | None = None) -> ResponseNode:
    return loads(fp.read(), registry)


def dump_yaml(node: ResponseNode) -> str:
    """Serialize a tree to YAML."""
    return yaml.safe_dump(
        snapshot(node).model_dump(exclude_defaults=True),
        sort_keys=False,
        allow_unicode=True,
    )


def load_yaml(data: str | IO[str], registry: NodeTypeRegistry | None = None) -> ResponseNode:
    raw = yaml.safe_load(data)
    if not isinstance(raw, dict):
        raise ValueError("Serialized tree must be a YAML mapping")
    return restore(SerializedNode.model_validate(raw), registry)


def to_json(node: ResponseNode, indent: int | None = 2) -> str:
    """Render ``node.to_dict()`` as JSON for display."""
    return json.dumps(node.to_dict(), indent=indent, ensure_ascii=False)
