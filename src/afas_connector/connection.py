"""Connection to the Profit SOAP services.

A :class:`Connection` owns the configuration, turns caller arguments into the
argument list each remote operation expects, dispatches through a
:class:`~afas_connector.transport.Transport` and records the outcome of the
last call. Expected failures never raise: ``call`` returns ``None`` and the
structured error is available from :attr:`Connection.last_call` (or from the
:class:`~afas_connector.model.CallResult` returned by ``call_result``).
"""

from __future__ import annotations

import traceback
from typing import Any, Dict, Mapping, Optional, Sequence

from afas_connector.config import ConnectionConfig, get_default_config
from afas_connector.errors import (
    DEFAULT_TEMPORARY_SIGNATURES,
    ErrorReporter,
    ErrorSignature,
    classify,
)
from afas_connector.fetcher import RecordFetcher
from afas_connector.filters import normalize_filters
from afas_connector.logger import get_logger
from afas_connector.model import CallRecord, CallResult, ErrorInfo, ErrorSource
from afas_connector.payload import (
    OUTPUT_TEXT,
    SCHEMA_DATA_ID,
    build_options_xml,
    resolve_options,
    schema_request,
)
from afas_connector.transport import Transport, TransportFault, make_transport

log = get_logger(__name__)

# Keys only used to build other arguments; never sent over the wire
NORMALIZATION_KEYS = ("options_array", "filters", "filter_operator", "skip", "take")

# Required argument per connector type
REQUIRED_ARGUMENTS: Dict[str, Sequence[str]] = {
    "get": ("connectorId",),
    "report": ("reportID",),
    "subject": ("subjectID",),
    "data": ("connectorId",),
    "update": ("connectorType", "dataXml"),
}


class Connection:
    """Calls Profit connectors and keeps track of the last call."""

    OPERATIONS = {
        "get": "GetDataWithOptions",
        "update": "Execute",
        "report": "Execute",
        "subject": "GetAttachment",
        "data": "Execute",
    }

    def __init__(
        self,
        config: Optional[ConnectionConfig] = None,
        transport: Optional[Transport] = None,
        *,
        reporter: Optional[ErrorReporter] = None,
        temporary_signatures: Sequence[ErrorSignature] = DEFAULT_TEMPORARY_SIGNATURES,
    ) -> None:
        self._config = config
        self._transport = transport
        self._transport_given = transport is not None
        self.reporter = reporter or ErrorReporter()
        self.temporary_signatures = tuple(temporary_signatures)
        self.last_call = CallRecord()
        self.calls = 0

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def config(self) -> ConnectionConfig:
        if self._config is None:
            self._config = get_default_config()
        return self._config

    def set_config(self, config: ConnectionConfig) -> None:
        if self.calls:
            raise RuntimeError("Configuration cannot change after the first call")
        self._config = config
        if not self._transport_given:
            self._transport = None  # Rebuilt for the new configuration

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            self._transport = make_transport(self.config)
        return self._transport

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------
    def normalize_arguments(
        self, arguments: Mapping[str, Any], function: str, connector_type: str
    ) -> Dict[str, Any]:
        """Return the wire arguments (without credentials) for one call.

        Raises :class:`ValueError` when the caller input is unusable.
        """
        if connector_type not in self.OPERATIONS:
            raise ValueError(f"Unknown connector type: {connector_type}")

        normalized: Dict[str, Any] = {}
        if connector_type == "get":
            normalized.update({"connectorId": "", "filtersXml": ""})
        elif connector_type == "report":
            normalized.update({"reportID": "", "parametersXml": ""})
        elif connector_type == "subject":
            normalized.update({"subjectID": "", "fileId": ""})
        elif connector_type == "data":
            normalized.update({"dataID": SCHEMA_DATA_ID, "connectorId": ""})
        elif connector_type == "update":
            normalized.update({"connectorType": "", "connectorVersion": 1, "dataXml": ""})
        normalized.update(arguments)

        for key in REQUIRED_ARGUMENTS[connector_type]:
            if normalized.get(key) in (None, ""):
                raise ValueError(f"{function} requires a non-empty '{key}' argument")

        if connector_type == "get":
            if arguments.get("filters") is not None:
                _, normalized["filtersXml"] = normalize_filters(
                    arguments["filters"], arguments.get("filter_operator")
                )
            if function == "GetDataWithOptions":
                normalized["options"] = build_options_xml(resolve_options(arguments))
        elif connector_type == "data":
            normalized["parametersXml"] = schema_request(str(normalized.pop("connectorId")))

        for key in NORMALIZATION_KEYS:
            normalized.pop(key, None)
        return normalized

    def credentials(self) -> Dict[str, str]:
        config = self.config
        return {
            "environmentId": config.environment,
            "userId": config.user,
            "password": config.password,
        }

    def call_result(
        self,
        function: str,
        arguments: Optional[Mapping[str, Any]] = None,
        connector_type: str = "get",
    ) -> CallResult:
        """Make one remote call and return its payload with its record."""
        arguments = dict(arguments or {})
        self.last_call = CallRecord(
            function=function, arguments=arguments, connector_type=connector_type
        )

        missing = self.config.missing_fields()
        if missing:
            self.handle_error(
                ErrorSource.CONFIG,
                f"Configuration incomplete, missing: {', '.join(missing)}",
            )
            return CallResult(None, self.last_call)
        self.calls += 1

        try:
            normalized = self.normalize_arguments(arguments, function, connector_type)
        except (ValueError, TypeError) as exc:
            self.handle_error(ErrorSource.CALL, str(exc))
            return CallResult(None, self.last_call)
        self.last_call.arguments = normalized

        wire_arguments = {**self.credentials(), **normalized}  # Credentials go first
        log.debug(f"Calling {connector_type}/{function} with {sorted(normalized)}")
        try:
            payload = self.transport.execute(function, wire_arguments, connector_type)
        except TransportFault as fault:
            self.handle_error(fault.source, fault.message, detail=fault.detail)
            return CallResult(None, self.last_call)
        except Exception as exc:
            self.handle_error(
                ErrorSource.CODE,
                f"Unexpected {type(exc).__name__} during {function}: {exc}",
                detail=traceback.format_exc(),
            )
            return CallResult(None, self.last_call)

        if connector_type == "get" and function == "GetDataWithOptions":
            if str(resolve_options(arguments).get("Outputmode")) == str(OUTPUT_TEXT):
                self.handle_error(ErrorSource.CALL, "Text output mode is not supported")
                return CallResult(None, self.last_call)

        return CallResult(payload, self.last_call)

    def call(
        self,
        function: str,
        arguments: Optional[Mapping[str, Any]] = None,
        connector_type: str = "get",
    ) -> Any:
        """Make one remote call; returns the payload or ``None`` on failure."""
        return self.call_result(function, arguments, connector_type).payload

    def fetch(
        self,
        data_id: str,
        filters: Any = None,
        mode: str = "tabular",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Fetch data through one of the record fetcher modes; ``None`` on failure."""
        return RecordFetcher(self).fetch(mode, data_id, filters, extra).payload

    def update(self, connector_type: str, data_xml: str, version: int = 1) -> Any:
        """Send ``data_xml`` to an UpdateConnector."""
        return self.call(
            "Execute",
            {"connectorType": connector_type, "connectorVersion": version, "dataXml": data_xml},
            "update",
        )

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------
    def handle_error(
        self,
        source: ErrorSource,
        message: str,
        *,
        detail: Optional[str] = None,
        temporary: Optional[bool] = None,
        escaped: bool = False,
        function: Optional[str] = None,
    ) -> ErrorInfo:
        """Record, classify and report an error against the last call.

        Also used for errors found after a call returned (e.g. while parsing
        its payload); the operation of the last call is kept in that case.
        """
        info = ErrorInfo(
            source=source,
            message=message,
            message_escaped=escaped,
            detail=detail,
            function=function or self.last_call.function,
        )
        classify(info, self.temporary_signatures, temporary)
        if self.last_call.function is None and function:
            self.last_call.function = function
        self.last_call.error = info
        self.reporter.report(info)
        return info

    @property
    def last_error(self) -> Optional[ErrorInfo]:
        return self.last_call.error


__all__ = ["Connection", "NORMALIZATION_KEYS", "REQUIRED_ARGUMENTS"]
