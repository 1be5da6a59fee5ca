"""Operation model and the catalog of concrete operation kinds.

An Operation holds, per kind, an ordered list of parameter sets and a
parallel list of response group selectors. A single kind with a single
parameter set encodes in flat syntax; anything larger (a batch of the same
kind, or a MultipleOperation spanning kinds) encodes in indexed batch syntax
``Kind.N.Field``.

Usage:
    search = ItemSearch("Books", {"Title": "ruby programming"})
    search.batch(ItemSearch("Music", {"Artist": "stranglers"}))
    search.response_group = ResponseGroup("Small")
    search.query_parameters()
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Self

from catalog_client.errors import BatchError, ValidationError
from catalog_client.response import ResponseNode, uncamelise


OPERATION_KINDS = frozenset({
    "BrowseNodeLookup",
    "CustomerContentLookup",
    "CustomerContentSearch",
    "Help",
    "ItemLookup",
    "ItemSearch",
    "ListLookup",
    "ListSearch",
    "MultipleOperation",
    "SellerListingLookup",
    "SellerListingSearch",
    "SellerLookup",
    "SimilarityLookup",
    "TagLookup",
    "TransactionLookup",
    "VehiclePartLookup",
    "VehiclePartSearch",
    "VehicleSearch",
    "CartAdd",
    "CartClear",
    "CartCreate",
    "CartGet",
    "CartModify",
})

CART_KINDS = frozenset({"CartAdd", "CartClear", "CartCreate", "CartGet", "CartModify"})

# Not every index works in every locale; that is left to the service.
SEARCH_INDICES = frozenset({
    "All", "Apparel", "Automotive", "Baby", "Beauty", "Blended", "Books",
    "Classical", "DigitalMusic", "DVD", "Electronics", "ForeignBooks",
    "GourmetFood", "Grocery", "HealthPersonalCare", "Hobbies", "HomeGarden",
    "HomeImprovement", "Industrial", "Jewelry", "KindleStore", "Kitchen",
    "Lighting", "Magazines", "Merchants", "Miscellaneous", "MP3Downloads",
    "Music", "MusicalInstruments", "MusicTracks", "OfficeProducts",
    "OutdoorLiving", "Outlet", "PCHardware", "PetSupplies", "Photo", "Shoes",
    "SilverMerchants", "Software", "SoftwareVideoGames", "SportingGoods",
    "Tools", "Toys", "UnboxVideo", "VHS", "Video", "VideoGames", "Watches",
    "Wireless", "WirelessAccessories",
})

HELP_TYPES = frozenset({"Operation", "ResponseGroup"})


class ResponseGroup:
    """One or more response group names, e.g. ``ResponseGroup("Medium", "Offers")``."""

    def __init__(self, *groups: str) -> None:
        if not groups:
            raise ValidationError("ResponseGroup needs at least one group name")
        self._list = ",".join(str(g) for g in groups)

    @classmethod
    def coerce(cls, value: ResponseGroup | str | Iterable[str]) -> ResponseGroup:
        if isinstance(value, ResponseGroup):
            return value
        if isinstance(value, str):
            return cls(*[g.strip() for g in value.split(",") if g.strip()])
        return cls(*value)

    def __str__(self) -> str:
        return self._list

    def __repr__(self) -> str:
        return f"ResponseGroup({self._list!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ResponseGroup):
            return self._list == other._list
        if isinstance(other, str):
            return self._list == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._list)


DEFAULT_RESPONSE_GROUPS: dict[str, ResponseGroup] = {
    "BrowseNodeLookup": ResponseGroup("BrowseNodeInfo", "TopSellers"),
    "CustomerContentLookup": ResponseGroup("CustomerInfo", "CustomerLists"),
    "CustomerContentSearch": ResponseGroup("CustomerInfo"),
    "Help": ResponseGroup("Help"),
    "ItemLookup": ResponseGroup("Large"),
    "ItemSearch": ResponseGroup("Large"),
    "ListLookup": ResponseGroup("ListInfo", "Small"),
    "ListSearch": ResponseGroup("ListInfo"),
    "SellerListingLookup": ResponseGroup("SellerListing"),
    "SellerListingSearch": ResponseGroup("SellerListing"),
    "SellerLookup": ResponseGroup("Seller"),
    "SimilarityLookup": ResponseGroup("Large"),
    "TagLookup": ResponseGroup("Tags", "TagsSummary"),
    "TransactionLookup": ResponseGroup("TransactionDetails"),
    "VehiclePartLookup": ResponseGroup("VehiclePartFit"),
    "VehiclePartSearch": ResponseGroup("VehicleParts"),
    "VehicleSearch": ResponseGroup("VehicleMakes"),
}


@dataclass(frozen=True)
class Pagination:
    """Which parameter selects the results page, and the last page the service serves."""

    parameter: str
    max_page: int


PAGINATION: dict[str, Pagination] = {
    "ItemSearch": Pagination("ItemPage", 400),
    "ItemLookup": Pagination("OfferPage", 100),
    "ListLookup": Pagination("ProductPage", 30),
    "ListSearch": Pagination("ListPage", 20),
    "CustomerContentLookup": Pagination("ReviewPage", 10),
    "CustomerContentSearch": Pagination("CustomerPage", 20),
    "VehiclePartLookup": Pagination("FitmentPage", 10),
}


def _validate_item_search(parameters: Mapping[str, Any]) -> None:
    index = parameters.get("SearchIndex")
    if index is not None and str(index) not in SEARCH_INDICES:
        raise ValidationError(f"Invalid search index: {index}")


def _validate_help(parameters: Mapping[str, Any]) -> None:
    help_type = parameters.get("HelpType")
    if help_type is not None and str(help_type) not in HELP_TYPES:
        valid = ", ".join(sorted(HELP_TYPES))
        raise ValidationError(f"Invalid help type: {help_type}. Valid options: {valid}")


# Per-kind checks run on every construction path, including Operation(kind, ...)
VALIDATORS: dict[str, Callable[[Mapping[str, Any]], None]] = {
    "ItemSearch": _validate_item_search,
    "Help": _validate_help,
}


def flatten_parameters(parameters: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested parameter mappings into dotted names.

    ``{"Item": {"1": {"ASIN": "X"}}}`` becomes ``{"Item.1.ASIN": "X"}``.
    """
    flat: dict[str, Any] = {}
    for name, value in parameters.items():
        key = f"{prefix}.{name}" if prefix else str(name)
        if isinstance(value, Mapping):
            flat.update(flatten_parameters(value, key))
        else:
            flat[key] = value
    return flat


def _iter_operations(operations: Iterable[Any]) -> Iterable[Operation]:
    for op in operations:
        if isinstance(op, Operation):
            yield op
        elif isinstance(op, Iterable) and not isinstance(op, (str, bytes, Mapping)):
            yield from _iter_operations(op)
        else:
            raise BatchError(f"Not an operation: {op!r}")


class Operation:
    """A request descriptor for one operation kind, possibly batched.

    Attributes:
        kind: Operation kind, one of OPERATION_KINDS.
    """

    def __init__(self, kind: str, parameters: Mapping[str, Any] | None = None) -> None:
        if kind not in OPERATION_KINDS:
            raise ValidationError(f"Bad operation: {kind}")

        parameters = dict(parameters or {})
        validator = VALIDATORS.get(kind)
        if validator is not None:
            validator(parameters)

        self.kind = kind
        self._params: dict[str, list[dict[str, Any]]] = {}
        self._response_groups: dict[str, list[ResponseGroup | None]] = {}

        if kind != "MultipleOperation":
            self._params[kind] = [parameters]
            self._response_groups[kind] = [None]

    def __repr__(self) -> str:
        counts = ", ".join(f"{k}x{len(v)}" for k, v in self._params.items())
        return f"<{type(self).__name__} {self.kind} [{counts}]>"

    @property
    def params(self) -> dict[str, list[dict[str, Any]]]:
        """Kind -> ordered parameter sets (live, not a copy)."""
        return self._params

    @property
    def kinds(self) -> list[str]:
        return list(self._params)

    def occurrences(self, kind: str | None = None) -> int:
        """Number of parameter sets held for *kind* (default: own kind)."""
        return len(self._params.get(kind or self.kind, []))

    @property
    def is_batched(self) -> bool:
        return len(self._params) != 1 or self.occurrences() != 1

    @property
    def response_group(self) -> ResponseGroup | None:
        """Effective selector of the first parameter set."""
        for kind, groups in self._response_groups.items():
            return groups[0] or DEFAULT_RESPONSE_GROUPS.get(kind)
        return None

    @response_group.setter
    def response_group(self, value: ResponseGroup | str | Iterable[str] | None) -> None:
        # Applies to every batched parameter set of every kind present
        group = ResponseGroup.coerce(value) if value is not None else None
        for groups in self._response_groups.values():
            groups[:] = [group] * len(groups)

    def response_groups(self, kind: str) -> list[ResponseGroup | None]:
        """Explicitly assigned selectors for *kind*; None where the default applies."""
        return list(self._response_groups.get(kind, []))

    def _absorb(self, other: Operation) -> None:
        # Deep copy so later changes to *other* do not show through
        for kind, parameter_sets in other._params.items():
            self._params.setdefault(kind, []).extend(copy.deepcopy(parameter_sets))
            self._response_groups.setdefault(kind, []).extend(other._response_groups[kind])

    def batch(self, *operations: Operation | Iterable[Operation]) -> Self:
        """Append same-kind operations to this one for a single batched request.

        Use MultipleOperation to combine operations of different kinds.

        Raises:
            BatchError: If any operation has a different kind, or for cart
                operations, which cannot be batched.
        """
        others = list(_iter_operations(operations))
        for op in others:
            if self.kind in CART_KINDS or op.kind in CART_KINDS:
                raise BatchError("Cart operations cannot be batched")
            if op.kind != self.kind:
                raise BatchError(
                    f"Cannot batch {op.kind} with {self.kind}. Use MultipleOperation."
                )
        for op in others:
            self._absorb(op)
        return self

    def with_page(self, page: int) -> Self:
        """Return a copy requesting results page *page* for every set of this kind."""
        pagination = PAGINATION.get(self.kind)
        if pagination is None:
            raise ValidationError(f"{self.kind} does not support pagination")
        paged = copy.deepcopy(self)
        for parameter_set in paged._params.get(self.kind, []):
            parameter_set[pagination.parameter] = page
        return paged

    def query_parameters(self) -> dict[str, Any]:
        """Return the operation's parameters in flat or batch syntax."""
        if len(self._params) == 1:
            [(kind, parameter_sets)] = self._params.items()
            if len(parameter_sets) == 1:
                query: dict[str, Any] = {"Operation": kind}
                group = self._response_groups[kind][0] or DEFAULT_RESPONSE_GROUPS.get(kind)
                if group is not None:
                    query["ResponseGroup"] = str(group)
                query.update(flatten_parameters(parameter_sets[0]))
                return query

        query = {"Operation": ",".join(self._params)}
        for kind, parameter_sets in self._params.items():
            groups = self._response_groups[kind]
            for index, (parameter_set, group) in enumerate(zip(parameter_sets, groups), start=1):
                prefix = f"{kind}.{index}"
                group = group or DEFAULT_RESPONSE_GROUPS.get(kind)
                if group is not None:
                    query[f"{prefix}.ResponseGroup"] = str(group)
                for name, value in flatten_parameters(parameter_set).items():
                    query[f"{prefix}.{name}"] = value
        return query


class MultipleOperation(Operation):
    """Several operations, usually of different kinds, sent as one request.

    Each source operation's parameters are copied at construction; changing
    a source afterwards does not affect the composite. Sources of the same
    kind are encoded together in batch syntax.
    """

    def __init__(self, *operations: Operation | Iterable[Operation]) -> None:
        super().__init__("MultipleOperation")
        sources = list(_iter_operations(operations))
        if not sources:
            raise ValidationError("MultipleOperation needs at least one operation")
        for op in sources:
            if op.kind in CART_KINDS:
                raise BatchError("Cart operations cannot be combined")
        for op in sources:
            self._absorb(op)


# =============================================================================
# Operation catalog
# =============================================================================


def _merge(base: dict[str, Any], parameters: Mapping[str, Any] | None) -> dict[str, Any]:
    base.update(parameters or {})
    return base


class ItemSearch(Operation):
    """Search for items matching broad criteria within a search index."""

    def __init__(self, search_index: str, parameters: Mapping[str, Any] | None = None) -> None:
        if str(search_index) not in SEARCH_INDICES:
            raise ValidationError(f"Invalid search index: {search_index}")
        super().__init__("ItemSearch", _merge({"SearchIndex": str(search_index)}, parameters))


class ItemLookup(Operation):
    """Look up items by identifier, e.g. ``ItemLookup("ASIN", {"ItemId": "B000..."})``."""

    def __init__(self, id_type: str, parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("ItemLookup", _merge({"IdType": id_type}, parameters))


class BrowseNodeLookup(Operation):
    def __init__(self, browse_node_id: str | int, parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("BrowseNodeLookup", _merge({"BrowseNodeId": browse_node_id}, parameters))


class SimilarityLookup(Operation):
    def __init__(self, item_id: str, parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("SimilarityLookup", _merge({"ItemId": item_id}, parameters))


class SellerLookup(Operation):
    def __init__(self, seller_id: str, parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("SellerLookup", _merge({"SellerId": seller_id}, parameters))


class ListLookup(Operation):
    def __init__(
        self,
        list_type: str,
        list_id: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__("ListLookup", _merge({"ListType": list_type, "ListId": list_id}, parameters))


class ListSearch(Operation):
    def __init__(self, list_type: str, parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("ListSearch", _merge({"ListType": list_type}, parameters))


class TagLookup(Operation):
    def __init__(self, tag_name: str, parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("TagLookup", _merge({"TagName": tag_name}, parameters))


class Help(Operation):
    """Ask the service about an operation or a response group."""

    def __init__(
        self,
        help_type: str,
        about: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__("Help", _merge({"HelpType": help_type, "About": about}, parameters))


@dataclass(frozen=True)
class CartHandle:
    """Identifies a remote shopping cart: the CartId plus its HMAC."""

    cart_id: str
    hmac: str

    @classmethod
    def from_node(cls, cart: ResponseNode) -> CartHandle:
        """Build a handle from a parsed ``<Cart>`` element."""
        cart_id = cart.get("cart_id")
        hmac = cart.get("hmac")
        if cart_id is None or hmac is None:
            raise ValidationError("Cart element has no CartId/HMAC")
        return cls(cart_id=str(cart_id), hmac=str(hmac))

    def parameters(self) -> dict[str, str]:
        return {"CartId": self.cart_id, "HMAC": self.hmac}


def _cart_items(items: Mapping[str, int], id_field: str) -> dict[str, Any]:
    if not items:
        raise ValidationError("At least one cart item is required")
    numbered: dict[str, Any] = {}
    for number, (item_id, quantity) in enumerate(items.items(), start=1):
        if int(quantity) < 0:
            raise ValidationError(f"Invalid quantity for {item_id}: {quantity}")
        numbered[str(number)] = {id_field: item_id, "Quantity": int(quantity)}
    return {"Item": numbered}


class CartCreate(Operation):
    """Create a remote cart holding *items* (ASIN -> quantity)."""

    def __init__(self, items: Mapping[str, int], parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("CartCreate", _merge(_cart_items(items, "ASIN"), parameters))


class CartAdd(Operation):
    def __init__(
        self,
        cart: CartHandle,
        items: Mapping[str, int],
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        base = cart.parameters()
        base.update(_cart_items(items, "ASIN"))
        super().__init__("CartAdd", _merge(base, parameters))


class CartModify(Operation):
    """Change quantities of items already in the cart (CartItemId -> quantity)."""

    def __init__(
        self,
        cart: CartHandle,
        items: Mapping[str, int],
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        base = cart.parameters()
        base.update(_cart_items(items, "CartItemId"))
        super().__init__("CartModify", _merge(base, parameters))


class CartGet(Operation):
    def __init__(self, cart: CartHandle, parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("CartGet", _merge(cart.parameters(), parameters))


class CartClear(Operation):
    def __init__(self, cart: CartHandle, parameters: Mapping[str, Any] | None = None) -> None:
        super().__init__("CartClear", _merge(cart.parameters(), parameters))


CATALOG: tuple[type[Operation], ...] = (
    ItemSearch,
    ItemLookup,
    BrowseNodeLookup,
    SimilarityLookup,
    SellerLookup,
    ListLookup,
    ListSearch,
    TagLookup,
    Help,
    CartCreate,
    CartAdd,
    CartModify,
    CartGet,
    CartClear,
)

# item_search -> ItemSearch, cart_create -> CartCreate, ...
SHORTCUTS: dict[str, type[Operation]] = {uncamelise(cls.__name__): cls for cls in CATALOG}
