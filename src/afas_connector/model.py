"""Domain models for the ERP stock connector.

These dataclasses represent the core entities shared throughout the tool:
call bookkeeping and error information on the connection side, filters, and
the stock / combination items produced by the aggregator.
"""

from __future__ import annotations  # Postponed evaluation of annotations (PEP 563)

from dataclasses import dataclass, field  # Dataclass utilities
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

ConnectorType = Literal["get", "update", "report", "subject", "data"]  # Remote endpoint kinds
StockValue = Union[int, float]


class ErrorSource(str, Enum):
    """Where an error originated."""

    CODE = "code"  # Programming / contract violation
    CALL = "call"  # Bad caller input, rejected before dispatch
    CONFIG = "config"  # Missing required configuration
    WIRE = "wire"  # SOAP / service layer fault
    TRANSPORT = "transport"  # Connection or timeout layer fault


@dataclass(slots=True)
class ErrorInfo:
    """Structured information about the last error of a connection."""

    source: ErrorSource
    message: str
    message_escaped: bool = False  # Message is already HTML-escaped
    detail: Optional[str] = None  # Verbose text (fault detail, traceback)
    temporary: bool = False
    signature: Optional[str] = None  # Name of the matched transient signature
    function: Optional[str] = None  # Operation that was in flight
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return f"{self.source.value} error: {self.message}"


@dataclass(slots=True)
class CallRecord:
    """The most recent call made through a connection."""

    function: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    connector_type: Optional[str] = None
    error: Optional[ErrorInfo] = None


@dataclass(slots=True)
class CallResult:
    """Payload of one call together with the record describing it."""

    payload: Any
    record: CallRecord

    @property
    def ok(self) -> bool:
        return self.record.error is None

    @property
    def error(self) -> Optional[ErrorInfo]:
        return self.record.error


@dataclass(slots=True)
class FilterClause:
    field: str
    value: Any


@dataclass(slots=True)
class FilterGroup:
    """Clauses sharing one operator code."""

    operator: Union[int, str]  # Numeric code, or a numeric string passed through
    clauses: List[FilterClause] = field(default_factory=list)

    @property
    def fields(self) -> List[str]:
        return [clause.field for clause in self.clauses]


@dataclass(slots=True)
class StockItem:
    """Stock for one source key: either one value or a value per warehouse."""

    key: str
    stock: Optional[StockValue] = None
    by_warehouse: Dict[str, StockValue] = field(default_factory=dict)

    @property
    def has_warehouses(self) -> bool:
        return bool(self.by_warehouse)

    def value_for(self, warehouse: Optional[str]) -> Optional[StockValue]:
        if warehouse is None:
            return self.stock
        return self.by_warehouse.get(warehouse)


@dataclass(slots=True)
class CombinationItem:
    """A composite item whose stock is the minimum of its parts' stock."""

    key: str
    parts: List[str] = field(default_factory=list)
    stock: Optional[StockValue] = None  # None: no part value known
    by_warehouse: Dict[str, StockValue] = field(default_factory=dict)

    @property
    def has_warehouses(self) -> bool:
        return bool(self.by_warehouse)


@dataclass(slots=True)
class StoreRecord:
    """A record in the local entity store."""

    identity: Any
    key: str
    bundle: str = "product"
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SyncCounters:
    """Outcome counters for one batch run."""

    updated: int = 0
    unchanged: int = 0
    load_error: int = 0
    not_found: int = 0
    zero_filled: int = 0


class Unknown:
    """Lookup state: nothing known yet."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "Unknown()"


class Failed:
    """Lookup state: a previous lookup failed for this run."""

    __slots__ = ("reason",)

    def __init__(self, reason: str = "") -> None:
        self.reason = reason

    def __repr__(self) -> str:
        return f"Failed({self.reason!r})"


@dataclass(slots=True, frozen=True)
class Resolved:
    value: Any


Lookup = Union[Resolved, Failed, Unknown]


__all__ = [
    "CallRecord",
    "CallResult",
    "CombinationItem",
    "ConnectorType",
    "ErrorInfo",
    "ErrorSource",
    "Failed",
    "FilterClause",
    "FilterGroup",
    "Lookup",
    "Resolved",
    "StockItem",
    "StockValue",
    "StoreRecord",
    "SyncCounters",
    "Unknown",
]  # Public API
