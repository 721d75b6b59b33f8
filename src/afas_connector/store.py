"""Local entity stores the stock results are written to.

The aggregation only needs the small :class:`EntityStore` contract. Two
implementations ship with the package: :class:`MemoryStore` and
:class:`WorkbookStore`, which keeps one ``openpyxl`` worksheet per bundle.
"""

from __future__ import annotations

from pathlib import Path  # Filesystem path management
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol

from openpyxl import load_workbook  # Excel file loader

from afas_connector.logger import get_logger
from afas_connector.model import StoreRecord

log = get_logger(__name__)

KEY_COLUMN = "key"  # Column holding the source key in every worksheet


class EntityStore(Protocol):
    """What the batch jobs need from the local store."""

    def resolve_keys(
        self, keys: Iterable[str], bundle: Optional[str] = None
    ) -> Dict[str, Any]: ...

    def load(self, identities: Iterable[Any]) -> Dict[Any, StoreRecord]: ...

    def compare_and_set(self, record: StoreRecord, field: str, value: Any) -> bool: ...

    def save(self, record: StoreRecord) -> None: ...

    def records(self, bundle: Optional[str] = None) -> Iterator[StoreRecord]: ...

    def close(self) -> None: ...


def same_value(current: Any, new: Any) -> bool:
    """Compare stored and computed values, treating ``"5"`` and ``5.0`` as equal."""
    if current is None or current == "":
        return new is None or new == ""
    try:
        return float(current) == float(new)
    except (TypeError, ValueError):
        return str(current) == str(new)


def set_if_changed(record: StoreRecord, field: str, value: Any) -> bool:
    if field in record.fields and same_value(record.fields[field], value):
        return False
    record.fields[field] = value
    return True


def key_text(raw: Any) -> str:
    """Normalise a cell key; numeric cells lose their ``.0`` (``100.0`` -> ``"100"``)."""
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw).strip()


class MemoryStore:
    """Dictionary-backed store, mostly useful for tests and dry runs."""

    def __init__(self, records: Iterable[StoreRecord] = ()) -> None:
        self._records: Dict[Any, StoreRecord] = {}
        for record in records:
            self._records[record.identity] = record
        self.saved: List[Any] = []  # Identities in save order

    def resolve_keys(
        self, keys: Iterable[str], bundle: Optional[str] = None
    ) -> Dict[str, Any]:
        wanted = set(keys)
        return {
            record.key: record.identity
            for record in self._records.values()
            if record.key in wanted and (bundle is None or record.bundle == bundle)
        }

    def load(self, identities: Iterable[Any]) -> Dict[Any, StoreRecord]:
        loaded = {}
        for identity in identities:
            record = self._records.get(identity)
            if record is not None:
                loaded[identity] = StoreRecord(
                    identity=record.identity,
                    key=record.key,
                    bundle=record.bundle,
                    fields=dict(record.fields),
                )
        return loaded

    def compare_and_set(self, record: StoreRecord, field: str, value: Any) -> bool:
        return set_if_changed(record, field, value)

    def save(self, record: StoreRecord) -> None:
        self._records[record.identity] = record
        self.saved.append(record.identity)

    def records(self, bundle: Optional[str] = None) -> Iterator[StoreRecord]:
        for record in list(self._records.values()):
            if bundle is None or record.bundle == bundle:
                yield record

    def get(self, identity: Any) -> Optional[StoreRecord]:
        return self._records.get(identity)

    def close(self) -> None:
        pass


class WorkbookStore:
    """Store backed by an Excel workbook.

    Each worksheet is a bundle. Its first row holds field names and must
    contain a ``key`` column; records are identified by ``(bundle, row)``.
    Changes are written to the file on :meth:`close`.
    """

    def __init__(self, workbook_path: Path) -> None:
        self.path = Path(workbook_path)  # Ensure we have a Path instance
        if not self.path.exists():  # Validate the file exists
            raise FileNotFoundError(f"Workbook not found: {self.path}")
        self.workbook = load_workbook(filename=self.path)
        self._headers: Dict[str, List[str]] = {}
        for sheet in self.workbook.worksheets:
            header_row = next(sheet.iter_rows(min_row=1, max_row=1, values_only=True), ())
            headers = [str(h).strip() if h is not None else "" for h in header_row]
            if KEY_COLUMN in headers:
                self._headers[sheet.title] = headers
            else:
                log.warning(f"Worksheet '{sheet.title}' has no '{KEY_COLUMN}' column; ignored")
        self.dirty = False

    def _rows(self, bundle: str) -> Iterator[StoreRecord]:
        headers = self._headers.get(bundle)
        if headers is None:
            return
        sheet = self.workbook[bundle]
        for row_number, row in enumerate(
            sheet.iter_rows(min_row=2, values_only=True), start=2
        ):
            values = dict(zip(headers, row))
            key = values.pop(KEY_COLUMN, None)
            if key in (None, ""):
                continue  # Skip rows without a key
            fields = {name: value for name, value in values.items() if name}
            yield StoreRecord(
                identity=(bundle, row_number), key=key_text(key), bundle=bundle, fields=fields
            )

    def bundles(self) -> List[str]:
        return list(self._headers)

    def resolve_keys(
        self, keys: Iterable[str], bundle: Optional[str] = None
    ) -> Dict[str, Any]:
        wanted = set(keys)
        resolved: Dict[str, Any] = {}
        for name in [bundle] if bundle else self.bundles():
            for record in self._rows(name):
                if record.key in wanted and record.key not in resolved:
                    resolved[record.key] = record.identity
        return resolved

    def load(self, identities: Iterable[Any]) -> Dict[Any, StoreRecord]:
        wanted = set(identities)
        loaded: Dict[Any, StoreRecord] = {}
        for bundle in {identity[0] for identity in wanted}:
            for record in self._rows(bundle):
                if record.identity in wanted:
                    loaded[record.identity] = record
        return loaded

    def compare_and_set(self, record: StoreRecord, field: str, value: Any) -> bool:
        return set_if_changed(record, field, value)

    def save(self, record: StoreRecord) -> None:
        bundle, row_number = record.identity
        headers = self._headers[bundle]
        sheet = self.workbook[bundle]
        for field, value in record.fields.items():
            if field not in headers:
                headers.append(field)
                sheet.cell(row=1, column=len(headers), value=field)
            sheet.cell(row=row_number, column=headers.index(field) + 1, value=value)
        self.dirty = True

    def records(self, bundle: Optional[str] = None) -> Iterator[StoreRecord]:
        for name in [bundle] if bundle else self.bundles():
            yield from self._rows(name)

    def close(self) -> None:
        if self.dirty:
            self.workbook.save(self.path)
            self.dirty = False
        self.workbook.close()


__all__ = [
    "EntityStore",
    "KEY_COLUMN",
    "MemoryStore",
    "WorkbookStore",
    "key_text",
    "same_value",
]
