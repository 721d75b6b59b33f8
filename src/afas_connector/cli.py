"""Command-line interface for the stock synchroniser."""

from __future__ import annotations

import argparse
import json
import sys

from .runner import run_stock_sync


def _settings(args: argparse.Namespace) -> dict:
    settings = {
        "connector_id": args.connector,
        "stock_field": args.stock_field,
        "store_bundle": args.sheet,
        "store_stock_field": args.store_field,
        "tries": args.tries,
        "limit": args.limit,
        "single_item": args.item or "",
        "output": args.mode,
    }
    if args.warehouse_field:
        settings["warehouse_field"] = args.warehouse_field
    if args.warehouse_map:
        settings["warehouse_fields"] = json.loads(args.warehouse_map)
    if args.filters:
        settings["filters"] = json.loads(args.filters)
    if args.combination:
        settings.update(
            {
                "combination_field": args.combination_field,
                "part_field": args.part_field,
                "part_source": args.part_source,
                "part_connector_id": args.part_connector or "",
            }
        )
    else:
        settings["key_field"] = args.key_field
        settings["zero_fill"] = args.zero_fill
    return settings


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Synchronise stock from AFAS Profit into an Excel workbook"
    )
    parser.add_argument(
        "--workbook",
        required=True,
        help="Excel workbook acting as the local store",
    )
    parser.add_argument("--connector", default="", help="GetConnector with stock rows")
    parser.add_argument("--sheet", default="product", help="Worksheet holding the items")
    parser.add_argument("--key-field", default="Itemcode")
    parser.add_argument("--stock-field", default="Stock")
    parser.add_argument("--warehouse-field", default="")
    parser.add_argument("--warehouse-map", help="JSON object: warehouse -> store field")
    parser.add_argument("--store-field", default="stock", help="Stock column in the workbook")
    parser.add_argument("--filters", help="JSON connector filters")
    parser.add_argument("--tries", type=int, default=3)
    parser.add_argument("--limit", type=int, default=0)
    parser.add_argument("--item", help="Synchronise only this item")
    parser.add_argument("--zero-fill", action="store_true")
    parser.add_argument("--mode", choices=("apply", "items", "raw"), default="apply")
    parser.add_argument("--combination", action="store_true", help="Derive combination stock")
    parser.add_argument("--combination-field", default="ItemcodeCombination")
    parser.add_argument("--part-field", default="ItemcodePart")
    parser.add_argument(
        "--part-source", choices=("connector", "primary", "store"), default="connector"
    )
    parser.add_argument("--part-connector", help="GetConnector with part stock")
    parser.add_argument("--output", help="Optional JSON output path")

    args = parser.parse_args(argv)

    path = run_stock_sync(
        args.workbook,
        _settings(args),
        combination=args.combination,
        output_path=args.output,
    )
    print(f"Report written to {path}")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
