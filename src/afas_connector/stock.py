"""Stock aggregation.

Turns fetched rows into per-key stock values:

* :func:`reconcile_stock` builds one :class:`StockItem` per source key, with
  an optional warehouse dimension,
* :func:`reconcile_combinations` derives the stock of combination items as
  the minimum of their parts' stock, per warehouse or overall.

Negative quantities are clamped to zero before they take part in anything.
Repeated keys (or key/warehouse pairs) keep their first value; later ones are
logged and dropped.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from afas_connector.errors import TIMEOUT
from afas_connector.fetcher import RecordFetcher
from afas_connector.logger import get_logger
from afas_connector.model import CombinationItem, StockItem, StockValue
from afas_connector.store import EntityStore

log = get_logger(__name__)

Row = Mapping[str, Any]


def parse_stock(raw: Any) -> Optional[StockValue]:
    """Parse a quantity; empty means zero, unparsable means ``None``."""
    if raw is None:
        return 0
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        if not text:
            return 0
        if "," in text and "." not in text:
            text = text.replace(",", ".")  # Decimal comma
        try:
            value = float(text)
        except ValueError:
            return None
    return int(value) if value.is_integer() else value


def clamp(value: StockValue, key: str = "") -> StockValue:
    if value < 0:
        log.info(f"Negative stock {value} for {key or 'item'} set to 0")
        return 0
    return value


def fetch_rows(
    fetcher: RecordFetcher,
    connector_id: str,
    filters: Any = None,
    tries: int = 1,
    extra: Optional[Mapping[str, Any]] = None,
) -> Union[List[Dict[str, str]], str]:
    """Fetch tabular rows, retrying timeouts up to ``tries`` attempts in total.

    Only errors classified as temporary *and* matching the timeout signature
    are retried; anything else ends the fetch at once. Returns the rows, or
    an error message.
    """
    tries = max(1, int(tries or 1))
    for attempt in range(1, tries + 1):
        result = fetcher.fetch("tabular", connector_id, filters, extra)
        if result.ok:
            if attempt > 1:
                log.info(f"{connector_id} fetched on attempt {attempt}")
            return result.payload

        error = result.error
        message = error.message if error else "unknown error"
        retryable = error is not None and error.temporary and error.signature == TIMEOUT
        if not retryable or attempt == tries:
            return f"Fetching {connector_id} failed after {attempt} attempt(s): {message}"
        log.warning(f"{connector_id} attempt {attempt}/{tries} timed out, retrying: {message}")

    return f"Fetching {connector_id} failed"  # pragma: no cover - loop always returns


def reconcile_stock(
    rows: Iterable[Row],
    key_field: str,
    stock_field: str,
    warehouse_field: Optional[str] = None,
    *,
    quiet_duplicates: bool = False,
) -> Dict[str, StockItem]:
    """Group rows into one :class:`StockItem` per key, in order of appearance."""
    items: Dict[str, StockItem] = {}
    report_duplicate = log.debug if quiet_duplicates else log.warning

    for row in rows:
        key = str(row.get(key_field) or "").strip()
        if not key:
            log.warning(f"Row without '{key_field}' skipped: {dict(row)}")
            continue
        value = parse_stock(row.get(stock_field))
        if value is None:
            log.warning(f"Unreadable stock {row.get(stock_field)!r} for {key}; row skipped")
            continue
        value = clamp(value, key)
        warehouse = str(row.get(warehouse_field) or "").strip() if warehouse_field else ""

        item = items.get(key)
        if not warehouse:
            if item is not None:
                report_duplicate(f"Duplicate stock row for {key} ignored")
                continue
            items[key] = StockItem(key=key, stock=value)
            continue

        if item is None:
            item = items[key] = StockItem(key=key)
        elif item.stock is not None:
            report_duplicate(f"Warehouse row for {key} after an overall value ignored")
            continue
        if warehouse in item.by_warehouse:
            report_duplicate(f"Duplicate stock row for {key} in warehouse {warehouse} ignored")
            continue
        item.by_warehouse[warehouse] = value

    return items


def aggregate(combination: CombinationItem, part_stock: Mapping[str, StockItem]) -> CombinationItem:
    """Set a combination's stock to the minimum of its known part values.

    Parts without a known value are skipped; a part known to be zero makes
    the result zero.
    """
    combination.stock = None
    combination.by_warehouse = {}
    for part in combination.parts:
        stock = part_stock.get(part)
        if stock is None:
            continue
        for warehouse, value in stock.by_warehouse.items():
            current = combination.by_warehouse.get(warehouse)
            combination.by_warehouse[warehouse] = value if current is None else min(current, value)
        if stock.stock is not None:
            combination.stock = (
                stock.stock if combination.stock is None else min(combination.stock, stock.stock)
            )
    return combination


def reconcile_combinations(
    rows: Iterable[Row],
    combination_field: str,
    part_field: str,
    part_stock: Mapping[str, StockItem],
    *,
    limit: int = 0,
    single_item: Optional[str] = None,
) -> Dict[str, CombinationItem]:
    """Build combination items from ``(combination, part)`` rows.

    ``limit`` and ``single_item`` count distinct combination keys, not rows.
    """
    combinations: Dict[str, CombinationItem] = {}
    for row in rows:
        key = str(row.get(combination_field) or "").strip()
        part = str(row.get(part_field) or "").strip()
        if not key or not part:
            log.warning(f"Combination row without '{combination_field}'/'{part_field}': {dict(row)}")
            continue
        if single_item and key != single_item:
            continue
        combination = combinations.get(key)
        if combination is None:
            if limit and len(combinations) >= limit:
                continue
            combination = combinations[key] = CombinationItem(key=key)
        if part in combination.parts:
            log.warning(f"Part {part} listed twice for combination {key}; ignored")
            continue
        combination.parts.append(part)

    for combination in combinations.values():
        aggregate(combination, part_stock)
    return combinations


def part_stock_from_store(
    store: EntityStore,
    part_keys: Iterable[str],
    stock_field: str,
    warehouse_fields: Optional[Mapping[str, str]] = None,
    bundle: Optional[str] = None,
) -> Dict[str, StockItem]:
    """Read part stock from values already held in the local store."""
    identities = store.resolve_keys(set(part_keys), bundle)
    records = store.load(identities.values())
    items: Dict[str, StockItem] = {}
    for key, identity in identities.items():
        record = records.get(identity)
        if record is None:
            continue
        item = StockItem(key=key)
        if warehouse_fields:
            for warehouse, field in warehouse_fields.items():
                if field not in record.fields:
                    continue
                value = parse_stock(record.fields[field])
                if value is not None:
                    item.by_warehouse[warehouse] = clamp(value, key)
        elif stock_field in record.fields:
            value = parse_stock(record.fields[stock_field])
            if value is not None:
                item.stock = clamp(value, key)
        if item.stock is not None or item.by_warehouse:
            items[key] = item
    return items


def store_combination_rows(
    store: EntityStore,
    parts_field: str,
    combination_field: str,
    part_field: str,
    bundle: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Turn store records listing their parts (comma separated) into combination rows."""
    rows: List[Dict[str, str]] = []
    for record in store.records(bundle):
        raw = record.fields.get(parts_field)
        if not raw:
            continue
        for part in str(raw).split(","):
            if part.strip():
                rows.append({combination_field: record.key, part_field: part.strip()})
    return rows


__all__ = [
    "aggregate",
    "clamp",
    "fetch_rows",
    "parse_stock",
    "part_stock_from_store",
    "reconcile_combinations",
    "reconcile_stock",
    "store_combination_rows",
]
