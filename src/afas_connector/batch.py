"""Batch jobs that write remote stock into the local store.

A job run goes through ``init`` (fetch and reconcile), ``process_item`` for
every reconciled item (apply) and ``finish`` (optional zero-fill, summary).
:func:`run_job` drives these steps for callers without a job runner of their
own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from afas_connector.fetcher import RecordFetcher
from afas_connector.logger import get_logger
from afas_connector.model import CombinationItem, StockItem, SyncCounters
from afas_connector.stock import (
    fetch_rows,
    part_stock_from_store,
    reconcile_combinations,
    reconcile_stock,
    store_combination_rows,
)
from afas_connector.store import EntityStore

log = get_logger(__name__)

OUTPUT_MODES = ("apply", "items", "raw")
PART_SOURCES = ("connector", "primary", "store")
MAIN_SOURCES = ("connector", "store")

Item = Union[StockItem, CombinationItem]


@dataclass(frozen=True)
class SettingField:
    name: str
    label: str
    default: Any = None
    required: bool = False
    choices: tuple = ()


@dataclass
class JobContext:
    """State shared by the steps of one job run."""

    counters: SyncCounters = field(default_factory=SyncCounters)
    seen: Set[str] = field(default_factory=set)
    identities: Dict[str, Any] = field(default_factory=dict)
    limited: bool = False  # Run only covers part of the remote data
    warned_warehouses: Set[str] = field(default_factory=set)


@dataclass
class JobRun:
    """Outcome of :func:`run_job`."""

    summary: str
    items: List[Any] = field(default_factory=list)
    context: Optional[JobContext] = None
    error: Optional[str] = None


def with_item_filter(filters: Any, field_name: str, value: str) -> Any:
    """Add an equals clause on ``field_name`` to caller filters of any shape."""
    clause = {field_name: value, "#op": "="}
    if filters is None:
        return [clause]
    if isinstance(filters, Mapping):
        return [dict(filters), clause]
    return [*filters, clause]


class StockSyncJob:
    """Copies stock from a GetConnector into the store's stock field(s)."""

    SETTINGS = (
        SettingField("connector_id", "GetConnector holding stock", required=True),
        SettingField("key_field", "Item key field in the connector", "Itemcode"),
        SettingField("stock_field", "Stock field in the connector", "Stock"),
        SettingField("warehouse_field", "Warehouse field in the connector (optional)", ""),
        SettingField("filters", "Extra connector filters", None),
        SettingField("store_bundle", "Store bundle / worksheet", "product"),
        SettingField("store_stock_field", "Stock field in the store", "stock"),
        SettingField("warehouse_fields", "Warehouse to store field map", None),
        SettingField("tries", "Attempts when the connector times out", 3),
        SettingField("limit", "Process at most this many items (0: all)", 0),
        SettingField("single_item", "Process only this item key", ""),
        SettingField("zero_fill", "Set stock to 0 for items missing remotely", False),
        SettingField("output", "apply, items or raw", "apply", choices=OUTPUT_MODES),
    )

    def __init__(
        self,
        fetcher: RecordFetcher,
        store: EntityStore,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.settings: Dict[str, Any] = {f.name: f.default for f in self.settings_schema()}
        self.settings.update(settings or {})

    @classmethod
    def settings_schema(cls) -> List[SettingField]:
        return list(cls.SETTINGS)

    @property
    def output(self) -> str:
        return self.settings["output"]

    @property
    def limit(self) -> int:
        return int(self.settings.get("limit") or 0)

    @property
    def single_item(self) -> str:
        return str(self.settings.get("single_item") or "").strip()

    def validate(self) -> Optional[str]:
        missing = [
            f.name for f in self.settings_schema()
            if f.required and self.settings.get(f.name) in (None, "")
        ]
        if missing:
            return f"Missing required setting(s): {', '.join(missing)}"
        for f in self.settings_schema():
            if f.choices and self.settings.get(f.name) not in f.choices:
                return f"Setting {f.name} must be one of {', '.join(f.choices)}"
        return None

    # ------------------------------------------------------------------
    # Init: fetch and reconcile
    # ------------------------------------------------------------------
    def fetch_main(self, filter_field: str) -> Union[List[Dict[str, str]], str]:
        filters = self.settings.get("filters")
        if self.single_item:
            filters = with_item_filter(filters, filter_field, self.single_item)
        return fetch_rows(
            self.fetcher,
            self.settings["connector_id"],
            filters,
            tries=int(self.settings.get("tries") or 1),
        )

    @staticmethod
    def row_keys(rows: List[Dict[str, str]], key_field: str) -> Set[str]:
        return {str(row.get(key_field) or "").strip() for row in rows} - {""}

    def reconcile(self, rows: List[Dict[str, str]]) -> List[Item]:
        items = reconcile_stock(
            rows,
            self.settings["key_field"],
            self.settings["stock_field"],
            self.settings.get("warehouse_field") or None,
        )
        selected = list(items.values())
        if self.single_item:
            selected = [item for item in selected if item.key == self.single_item]
        if self.limit:
            selected = selected[: self.limit]
        return selected

    def init(self, context: JobContext) -> Union[List[Any], str]:
        """Return the items to process, or an error message."""
        error = self.validate()
        if error:
            log.error(error)
            return error

        rows = self.fetch_main(self.settings["key_field"])
        if isinstance(rows, str):
            log.error(rows)
            return rows
        if self.output == "raw":
            return rows

        items = self.reconcile(rows)
        # Keys with rows that failed reconciliation were still encountered
        context.seen.update(self.row_keys(rows, self.settings["key_field"]))
        context.limited = bool(self.limit or self.single_item)
        if self.output == "apply":
            context.identities = self.store.resolve_keys(
                [item.key for item in items], self.settings.get("store_bundle") or None
            )
        log.info(f"{len(rows)} rows reconciled into {len(items)} items")
        return items

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------
    def warehouse_field(self, warehouse: str, context: JobContext) -> Optional[str]:
        mapping = self.settings.get("warehouse_fields") or {}
        if not mapping:
            return f"{self.settings['store_stock_field']}_{warehouse}"
        store_field = mapping.get(warehouse)
        if store_field is None and warehouse not in context.warned_warehouses:
            context.warned_warehouses.add(warehouse)
            log.warning(f"Warehouse {warehouse} has no store field; its stock is skipped")
        return store_field

    def store_values(self, item: Item, context: JobContext) -> Dict[str, Any]:
        """Map an item's computed stock onto store fields."""
        values: Dict[str, Any] = {}
        for warehouse, value in item.by_warehouse.items():
            store_field = self.warehouse_field(warehouse, context)
            if store_field:
                values[store_field] = value
        if item.stock is not None:
            values[self.settings["store_stock_field"]] = item.stock
        return values

    def process_item(self, item: Item, context: JobContext) -> None:
        context.seen.add(item.key)
        counters = context.counters

        identity = context.identities.get(item.key)
        if identity is None:
            counters.not_found += 1
            log.debug(f"{item.key} is not present in the store")
            return
        record = self.store.load([identity]).get(identity)
        if record is None:
            counters.load_error += 1
            log.warning(f"Store record {identity!r} for {item.key} could not be loaded")
            return

        changed = False
        for store_field, value in self.store_values(item, context).items():
            if self.store.compare_and_set(record, store_field, value):
                changed = True
        if changed:
            self.store.save(record)
            counters.updated += 1
        else:
            counters.unchanged += 1

    # ------------------------------------------------------------------
    # Finish
    # ------------------------------------------------------------------
    def derived_fields(self, record_fields: Mapping[str, Any]) -> List[str]:
        stock_field = self.settings["store_stock_field"]
        mapping = self.settings.get("warehouse_fields") or {}
        if mapping:
            candidates = [stock_field, *mapping.values()]
        else:
            candidates = [stock_field] + [
                name for name in record_fields if name.startswith(f"{stock_field}_")
            ]
        return [name for name in candidates if name in record_fields]

    def zero_fill(self, context: JobContext) -> None:
        """Set stock to 0 on store records this run did not encounter."""
        bundle = self.settings.get("store_bundle") or None
        for record in list(self.store.records(bundle)):
            if record.key in context.seen:
                continue
            changed = False
            for store_field in self.derived_fields(record.fields):
                value = record.fields.get(store_field)
                if value in (None, "", 0) or value == "0":
                    continue
                if self.store.compare_and_set(record, store_field, 0):
                    changed = True
            if changed:
                self.store.save(record)
                context.counters.updated += 1
                context.counters.zero_filled += 1

    def finish(self, context: JobContext) -> str:
        if self.settings.get("zero_fill") and self.output == "apply":
            if context.limited:
                log.info("Zero-fill skipped: run was limited to part of the items")
            else:
                self.zero_fill(context)
        return summarize(context.counters)


class CombinationStockJob(StockSyncJob):
    """Derives combination stock from the stock of the parts.

    This job never sets missing combinations to zero; subclasses that need
    that can override :meth:`zero_fill`.
    """

    SETTINGS = tuple(
        f for f in StockSyncJob.SETTINGS if f.name not in ("zero_fill", "key_field")
    ) + (
        SettingField("main_source", "Combinations come from", "connector", choices=MAIN_SOURCES),
        SettingField("combination_field", "Combination key field", "ItemcodeCombination"),
        SettingField("part_field", "Part key field", "ItemcodePart"),
        SettingField("part_source", "Part stock comes from", "connector", choices=PART_SOURCES),
        SettingField("part_connector_id", "GetConnector holding part stock", ""),
        SettingField("part_key_field", "Item key field in the part connector", "Itemcode"),
        SettingField("store_parts_field", "Store field listing the parts", "parts"),
    )

    def validate(self) -> Optional[str]:
        for f in self.settings_schema():
            if f.choices and self.settings.get(f.name) not in f.choices:
                return f"Setting {f.name} must be one of {', '.join(f.choices)}"
        missing = []
        if self.settings["main_source"] == "connector" and not self.settings.get("connector_id"):
            missing.append("connector_id")
        if self.settings["part_source"] == "connector" and not self.settings.get(
            "part_connector_id"
        ):
            missing.append("part_connector_id")
        if missing:
            return f"Missing required setting(s): {', '.join(missing)}"
        if self.settings["main_source"] == "store" and self.settings["part_source"] == "primary":
            return "Part stock cannot come from the primary rows when combinations come from the store"
        return None

    def part_stock(self, rows: List[Dict[str, str]]) -> Union[Dict[str, StockItem], str]:
        source = self.settings["part_source"]
        warehouse_field = self.settings.get("warehouse_field") or None
        if source == "primary":
            return reconcile_stock(
                rows,
                self.settings["part_field"],
                self.settings["stock_field"],
                warehouse_field,
                quiet_duplicates=True,  # A part shared by combinations repeats
            )
        if source == "store":
            return part_stock_from_store(
                self.store,
                {str(row.get(self.settings["part_field"]) or "").strip() for row in rows},
                self.settings["store_stock_field"],
                self.settings.get("warehouse_fields") or None,
                self.settings.get("store_bundle") or None,
            )
        part_rows = fetch_rows(
            self.fetcher,
            self.settings["part_connector_id"],
            tries=int(self.settings.get("tries") or 1),
        )
        if isinstance(part_rows, str):
            return part_rows
        return reconcile_stock(
            part_rows, self.settings["part_key_field"], self.settings["stock_field"], warehouse_field
        )

    def init(self, context: JobContext) -> Union[List[Any], str]:
        error = self.validate()
        if error:
            log.error(error)
            return error

        if self.settings.get("main_source") == "store":
            rows = store_combination_rows(
                self.store,
                self.settings["store_parts_field"],
                self.settings["combination_field"],
                self.settings["part_field"],
                self.settings.get("store_bundle") or None,
            )
        else:
            rows = self.fetch_main(self.settings["combination_field"])
            if isinstance(rows, str):
                log.error(rows)
                return rows
        if self.output == "raw":
            return rows

        part_stock = self.part_stock(rows)
        if isinstance(part_stock, str):
            log.error(part_stock)
            return part_stock

        combinations = reconcile_combinations(
            rows,
            self.settings["combination_field"],
            self.settings["part_field"],
            part_stock,
            limit=self.limit,
            single_item=self.single_item or None,
        )
        items = list(combinations.values())
        context.limited = bool(self.limit or self.single_item)
        if self.output == "apply":
            context.identities = self.store.resolve_keys(
                [item.key for item in items], self.settings.get("store_bundle") or None
            )
        log.info(f"{len(rows)} rows reconciled into {len(items)} combinations")
        return items

    def zero_fill(self, context: JobContext) -> None:
        return None


def summarize(counters: SyncCounters) -> str:
    """Human-readable summary of a run's counters."""
    updated = f"{counters.updated} item(s) updated"
    if counters.zero_filled:
        updated += f" ({counters.zero_filled} set to zero)"
    return (
        f"{updated}, {counters.unchanged} unchanged, "
        f"{counters.load_error} failed to load, "
        f"{counters.not_found} not present in the store."
    )


def run_job(job: StockSyncJob) -> JobRun:
    """Run ``job`` from init to finish."""
    context = JobContext()
    items = job.init(context)
    if isinstance(items, str):
        return JobRun(summary=items, context=context, error=items)
    if job.output != "apply":
        return JobRun(summary=f"{len(items)} item(s) returned", items=items, context=context)

    for item in items:
        job.process_item(item, context)
    return JobRun(summary=job.finish(context), items=items, context=context)


__all__ = [
    "CombinationStockJob",
    "JobContext",
    "JobRun",
    "SettingField",
    "StockSyncJob",
    "run_job",
    "summarize",
    "with_item_filter",
]
