"""CLI entry point for catalog-client.

Handles argument parsing and dispatches to search, lookup or help mode.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

from catalog_client.config_loader import (
    ConfigError,
    find_config_path,
    load_client_config,
)
from catalog_client.errors import CatalogError
from catalog_client.models import ClientConfig
from catalog_client.operations import Help, ItemLookup, ItemSearch, Operation
from catalog_client.request import Request
from catalog_client.response import Response, to_json


def positive_int(value: str) -> int:
    """Argparse type for positive integers."""
    try:
        result = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {result}")
    return result


def parse_param(value: str) -> tuple[str, str]:
    """Argparse type for NAME=VALUE operation parameters."""
    name, sep, param_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got '{value}'")
    return name, param_value


@dataclass
class CommonArgs:
    config: Path | None = None
    locale: str | None = None
    response_group: str | None = None
    pages: int = 1
    json: bool = False
    verbose: bool = False
    params: dict[str, str] = field(default_factory=dict)


@dataclass
class SearchArgs(CommonArgs):
    index: str = "All"


@dataclass
class LookupArgs(CommonArgs):
    item_id: str = ""
    id_type: str = "ASIN"


@dataclass
class HelpArgs(CommonArgs):
    about: str = ""
    help_type: str = "Operation"


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to client config YAML (default: $CATALOG_CLIENT_CONFIG or ~/.catalog_client.yaml)",
    )
    parser.add_argument("--locale", help="Override the configured locale (us, uk, de, ...)")
    parser.add_argument(
        "--response-group",
        help="Comma-separated response groups, e.g. Small,Offers",
    )
    parser.add_argument(
        "--param",
        type=parse_param,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Extra operation parameter (repeatable)",
    )
    parser.add_argument(
        "--pages",
        type=positive_int,
        default=1,
        help="Number of result pages to fetch (default: 1)",
    )
    parser.add_argument("--json", action="store_true", help="Print responses as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-client",
        description="Query the product catalog service",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    search_parser = subparsers.add_parser("search", help="Search for items (ItemSearch)")
    search_parser.add_argument("--index", required=True, help="Search index, e.g. Books")
    _add_common_arguments(search_parser)

    lookup_parser = subparsers.add_parser("lookup", help="Look up items by id (ItemLookup)")
    lookup_parser.add_argument("--item-id", required=True, help="Item id(s), comma-separated")
    lookup_parser.add_argument("--id-type", default="ASIN", help="Id type (default: ASIN)")
    _add_common_arguments(lookup_parser)

    help_parser = subparsers.add_parser("help", help="Describe an operation or response group")
    help_parser.add_argument("--about", required=True, help="Operation or response group name")
    help_parser.add_argument(
        "--help-type",
        default="Operation",
        choices=["Operation", "ResponseGroup"],
        help="What --about names (default: Operation)",
    )
    _add_common_arguments(help_parser)

    return parser


def _common_kwargs(namespace: argparse.Namespace) -> dict:
    return {
        "config": namespace.config,
        "locale": namespace.locale,
        "response_group": namespace.response_group,
        "pages": namespace.pages,
        "json": namespace.json,
        "verbose": namespace.verbose,
        "params": dict(namespace.param),
    }


def parse_args(args: list[str] | None = None) -> SearchArgs | LookupArgs | HelpArgs:
    namespace = build_parser().parse_args(args)
    common = _common_kwargs(namespace)
    if namespace.command == "search":
        return SearchArgs(index=namespace.index, **common)
    if namespace.command == "lookup":
        return LookupArgs(item_id=namespace.item_id, id_type=namespace.id_type, **common)
    return HelpArgs(about=namespace.about, help_type=namespace.help_type, **common)


def build_operation(args: SearchArgs | LookupArgs | HelpArgs) -> Operation:
    if isinstance(args, SearchArgs):
        return ItemSearch(args.index, args.params)
    if isinstance(args, LookupArgs):
        return ItemLookup(args.id_type, {"ItemId": args.item_id, **args.params})
    return Help(args.help_type, args.about, args.params)


def load_config(args: CommonArgs) -> ClientConfig:
    path = args.config or find_config_path()
    config = load_client_config(path) if path is not None else ClientConfig()
    if args.locale:
        try:
            config = ClientConfig.model_validate({**config.model_dump(), "locale": args.locale})
        except Exception as e:
            raise ConfigError(f"Invalid locale: {e}") from e
    return config


def print_response(response: Response, as_json: bool) -> None:
    if as_json:
        print(to_json(response))
    else:
        print(response, end="")


def run(args: SearchArgs | LookupArgs | HelpArgs) -> int:
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    try:
        operation = build_operation(args)
        with Request.from_config(config) as request:
            responses = request.search_pages(
                operation, response_group=args.response_group, nr_pages=args.pages
            )
    except (CatalogError, ConfigError) as e:
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    for response in responses:
        print_response(response, args.json)
    return 0


def main() -> int:
    """Main entry point."""
    try:
        return run(parse_args())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
