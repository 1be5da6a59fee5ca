"""Tests for catalog_client.operations.

Tests cover:
- Flat syntax for a single parameter set, default response groups
- Batch syntax for same-kind batches and MultipleOperation
- BatchError for mixed kinds and cart operations
- Response group fan-out to every batched set
- MultipleOperation copies its sources
- Catalog constructors and validation
- Cart item numbering and CartHandle
- Pagination copies
"""

import pytest

from catalog_client.errors import BatchError, ValidationError
from catalog_client.operations import (
    SHORTCUTS,
    BrowseNodeLookup,
    CartAdd,
    CartCreate,
    CartGet,
    CartHandle,
    CartModify,
    Help,
    ItemLookup,
    ItemSearch,
    MultipleOperation,
    Operation,
    ResponseGroup,
    flatten_parameters,
)
from catalog_client.response import parse_response


class TestResponseGroup:
    def test_str_joins_groups(self) -> None:
        assert str(ResponseGroup("Medium", "Offers")) == "Medium,Offers"

    def test_equality_with_string(self) -> None:
        assert ResponseGroup("Small") == "Small"
        assert ResponseGroup("Small", "Offers") == ResponseGroup("Small", "Offers")

    def test_coerce_from_comma_string(self) -> None:
        assert ResponseGroup.coerce("Small, Offers") == ResponseGroup("Small", "Offers")

    def test_coerce_from_list(self) -> None:
        assert ResponseGroup.coerce(["Small", "Reviews"]) == "Small,Reviews"

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ResponseGroup()


class TestOperationConstruction:
    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Bad operation: ItemFind"):
            Operation("ItemFind")

    def test_generic_kind_accepted(self) -> None:
        op = Operation("TransactionLookup", {"TransactionId": "123"})
        assert op.kind == "TransactionLookup"
        assert op.params == {"TransactionLookup": [{"TransactionId": "123"}]}

    def test_generic_item_search_validates_index(self) -> None:
        """The index check applies even without the ItemSearch class."""
        with pytest.raises(ValidationError, match="Invalid search index"):
            Operation("ItemSearch", {"SearchIndex": "Nonsense"})

    def test_item_search_invalid_index(self) -> None:
        with pytest.raises(ValidationError, match="Invalid search index: Nonsense"):
            ItemSearch("Nonsense", {"Title": "x"})

    def test_help_invalid_type(self) -> None:
        with pytest.raises(ValidationError, match="Invalid help type"):
            Help("Widget", "ItemSearch")

    def test_parameters_copied(self) -> None:
        params = {"Title": "ruby"}
        op = ItemSearch("Books", params)
        params["Title"] = "python"
        assert op.params["ItemSearch"][0]["Title"] == "ruby"


class TestFlatSyntax:
    def test_single_item_search(self) -> None:
        op = ItemSearch("Books", {"Title": "ruby programming"})
        assert op.query_parameters() == {
            "Operation": "ItemSearch",
            "ResponseGroup": "Large",
            "SearchIndex": "Books",
            "Title": "ruby programming",
        }

    def test_explicit_response_group(self) -> None:
        op = ItemLookup("ASIN", {"ItemId": "0974514055"})
        op.response_group = ResponseGroup("Small", "Offers")
        assert op.query_parameters()["ResponseGroup"] == "Small,Offers"

    def test_browse_node_default_group(self) -> None:
        op = BrowseNodeLookup(1000)
        query = op.query_parameters()
        assert query["ResponseGroup"] == "BrowseNodeInfo,TopSellers"
        assert query["BrowseNodeId"] == 1000

    def test_not_batched(self) -> None:
        assert not ItemSearch("Books", {"Title": "x"}).is_batched


class TestBatch:
    def test_batch_same_kind(self) -> None:
        op = ItemSearch("Books", {"Title": "ruby programming"})
        op.batch(ItemSearch("Music", {"Artist": "stranglers"}))
        assert op.occurrences() == 2
        assert op.is_batched
        assert op.query_parameters() == {
            "Operation": "ItemSearch",
            "ItemSearch.1.ResponseGroup": "Large",
            "ItemSearch.1.SearchIndex": "Books",
            "ItemSearch.1.Title": "ruby programming",
            "ItemSearch.2.ResponseGroup": "Large",
            "ItemSearch.2.SearchIndex": "Music",
            "ItemSearch.2.Artist": "stranglers",
        }

    def test_batch_returns_self(self) -> None:
        op = ItemSearch("Books", {"Title": "a"})
        assert op.batch(ItemSearch("Books", {"Title": "b"})) is op

    def test_batch_accepts_lists(self) -> None:
        op = ItemSearch("Books", {"Title": "a"})
        op.batch([ItemSearch("Books", {"Title": "b"}), ItemSearch("Books", {"Title": "c"})])
        assert op.occurrences() == 3

    def test_batch_different_kind_rejected(self) -> None:
        op = ItemSearch("Books", {"Title": "a"})
        with pytest.raises(BatchError, match="Use MultipleOperation"):
            op.batch(ItemLookup("ASIN", {"ItemId": "X"}))
        assert op.occurrences() == 1

    def test_batch_cart_rejected(self) -> None:
        cart = CartCreate({"B00001": 1})
        with pytest.raises(BatchError, match="Cart operations cannot be batched"):
            cart.batch(CartCreate({"B00002": 1}))

    def test_batch_non_operation_rejected(self) -> None:
        with pytest.raises(BatchError, match="Not an operation"):
            ItemSearch("Books", {"Title": "a"}).batch("ItemSearch")

    def test_later_changes_to_source_not_visible(self) -> None:
        op = ItemSearch("Books", {"Title": "a"})
        other = ItemSearch("Books", {"Title": "b"})
        op.batch(other)
        other.params["ItemSearch"][0]["Title"] = "changed"
        assert op.params["ItemSearch"][1]["Title"] == "b"

    def test_response_group_fans_out(self) -> None:
        """Setting the response group replaces it on every batched set."""
        op = ItemSearch("Books", {"Title": "a"})
        op.batch(ItemSearch("Books", {"Title": "b"}))
        op.response_group = "Small"
        query = op.query_parameters()
        assert query["ItemSearch.1.ResponseGroup"] == "Small"
        assert query["ItemSearch.2.ResponseGroup"] == "Small"
        assert op.response_groups("ItemSearch") == [ResponseGroup("Small")] * 2

    def test_batched_sets_keep_own_group(self) -> None:
        first = ItemSearch("Books", {"Title": "a"})
        second = ItemSearch("Books", {"Title": "b"})
        second.response_group = "Offers"
        first.batch(second)
        query = first.query_parameters()
        assert query["ItemSearch.1.ResponseGroup"] == "Large"
        assert query["ItemSearch.2.ResponseGroup"] == "Offers"


class TestMultipleOperation:
    def test_mixed_kinds(self) -> None:
        search = ItemSearch("Books", {"Title": "ruby"})
        lookup = ItemLookup("ASIN", {"ItemId": "0974514055"})
        multiple = MultipleOperation(search, lookup)
        query = multiple.query_parameters()
        assert multiple.kind == "MultipleOperation"
        assert query["Operation"] == "ItemSearch,ItemLookup"
        assert query["ItemSearch.1.Title"] == "ruby"
        assert query["ItemLookup.1.ItemId"] == "0974514055"
        assert query["ItemLookup.1.ResponseGroup"] == "Large"

    def test_same_kind_sources_share_numbering(self) -> None:
        multiple = MultipleOperation(
            ItemSearch("Books", {"Title": "a"}),
            ItemLookup("ASIN", {"ItemId": "X"}),
            ItemSearch("Music", {"Artist": "b"}),
        )
        query = multiple.query_parameters()
        assert query["Operation"] == "ItemSearch,ItemLookup"
        assert query["ItemSearch.2.Artist"] == "b"
        assert multiple.occurrences("ItemSearch") == 2
        assert multiple.kinds == ["ItemSearch", "ItemLookup"]

    def test_single_source_encodes_flat(self) -> None:
        multiple = MultipleOperation(ItemSearch("Books", {"Title": "a"}))
        query = multiple.query_parameters()
        assert query["Operation"] == "ItemSearch"
        assert query["Title"] == "a"

    def test_sources_copied(self) -> None:
        search = ItemSearch("Books", {"Title": "ruby"})
        multiple = MultipleOperation(search, ItemLookup("ASIN", {"ItemId": "X"}))
        search.params["ItemSearch"][0]["Title"] = "changed"
        search.response_group = "Small"
        query = multiple.query_parameters()
        assert query["ItemSearch.1.Title"] == "ruby"
        assert query["ItemSearch.1.ResponseGroup"] == "Large"

    def test_batched_source_contributes_all_sets(self) -> None:
        search = ItemSearch("Books", {"Title": "a"}).batch(ItemSearch("Books", {"Title": "b"}))
        multiple = MultipleOperation(search, ItemLookup("ASIN", {"ItemId": "X"}))
        assert multiple.occurrences("ItemSearch") == 2

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MultipleOperation()

    def test_cart_rejected(self) -> None:
        with pytest.raises(BatchError):
            MultipleOperation(ItemSearch("Books", {"Title": "a"}), CartCreate({"B00001": 1}))

    def test_response_group_applies_to_every_kind(self) -> None:
        multiple = MultipleOperation(
            ItemSearch("Books", {"Title": "a"}), ItemLookup("ASIN", {"ItemId": "X"})
        )
        multiple.response_group = "Small"
        query = multiple.query_parameters()
        assert query["ItemSearch.1.ResponseGroup"] == "Small"
        assert query["ItemLookup.1.ResponseGroup"] == "Small"


class TestPagination:
    def test_with_page_returns_copy(self) -> None:
        op = ItemSearch("Books", {"Title": "a"})
        paged = op.with_page(3)
        assert paged.query_parameters()["ItemPage"] == 3
        assert "ItemPage" not in op.query_parameters()
        assert isinstance(paged, ItemSearch)

    def test_item_lookup_uses_offer_page(self) -> None:
        paged = ItemLookup("ASIN", {"ItemId": "X"}).with_page(2)
        assert paged.query_parameters()["OfferPage"] == 2

    def test_unpaginated_kind(self) -> None:
        with pytest.raises(ValidationError, match="does not support pagination"):
            Help("Operation", "ItemSearch").with_page(2)


class TestCart:
    def test_cart_create_numbers_items(self) -> None:
        op = CartCreate({"B00001": 2, "B00002": 1})
        assert op.query_parameters() == {
            "Operation": "CartCreate",
            "Item.1.ASIN": "B00001",
            "Item.1.Quantity": 2,
            "Item.2.ASIN": "B00002",
            "Item.2.Quantity": 1,
        }

    def test_cart_requires_items(self) -> None:
        with pytest.raises(ValidationError):
            CartCreate({})

    def test_negative_quantity_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid quantity"):
            CartCreate({"B00001": -1})

    def test_cart_add_includes_handle(self) -> None:
        handle = CartHandle(cart_id="123-456", hmac="abc=")
        query = CartAdd(handle, {"B00003": 1}).query_parameters()
        assert query["CartId"] == "123-456"
        assert query["HMAC"] == "abc="
        assert query["Item.1.ASIN"] == "B00003"

    def test_cart_modify_uses_cart_item_id(self) -> None:
        handle = CartHandle(cart_id="1", hmac="h")
        query = CartModify(handle, {"U3E7": 0}).query_parameters()
        assert query["Item.1.CartItemId"] == "U3E7"
        assert query["Item.1.Quantity"] == 0

    def test_handle_from_response_node(self) -> None:
        tree = parse_response(
            b"<CartCreateResponse><Cart><CartId>123-456</CartId><HMAC>xyz=</HMAC></Cart></CartCreateResponse>"
        )
        cart = tree.cart_create_response.cart[0]
        handle = CartHandle.from_node(cart)
        assert handle == CartHandle(cart_id="123-456", hmac="xyz=")
        assert CartGet(handle).query_parameters()["CartId"] == "123-456"

    def test_handle_from_node_without_id(self) -> None:
        tree = parse_response(b"<CartCreateResponse><Cart><Other>1</Other></Cart></CartCreateResponse>")
        with pytest.raises(ValidationError):
            CartHandle.from_node(tree.cart_create_response.cart[0])


class TestShortcutsTable:
    def test_snake_case_names(self) -> None:
        assert SHORTCUTS["item_search"] is ItemSearch
        assert SHORTCUTS["browse_node_lookup"] is BrowseNodeLookup
        assert SHORTCUTS["cart_create"] is CartCreate

    def test_multiple_operation_not_a_shortcut(self) -> None:
        assert "multiple_operation" not in SHORTCUTS


class TestFlattenParameters:
    def test_nested(self) -> None:
        assert flatten_parameters({"Item": {"1": {"ASIN": "X"}}, "A": 1}) == {
            "Item.1.ASIN": "X",
            "A": 1,
        }
