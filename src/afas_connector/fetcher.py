"""Typed retrieval helpers on top of :class:`~afas_connector.connection.Connection`."""

from __future__ import annotations

import base64
import binascii
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from afas_connector.logger import get_logger
from afas_connector.model import CallResult, ErrorSource, Failed, Lookup, Resolved, Unknown
from afas_connector.payload import includes_empty, parse_rows

if TYPE_CHECKING:  # pragma: no cover
    from afas_connector.connection import Connection

log = get_logger(__name__)


@dataclass(frozen=True)
class FetchMode:
    """One retrieval pattern: remote operation plus its identifying argument."""

    function: str
    connector_type: str
    key: str
    parse: bool = False


FETCH_MODES: Dict[str, FetchMode] = {
    "tabular": FetchMode("GetDataWithOptions", "get", "connectorId", parse=True),
    "tabular-raw": FetchMode("GetDataWithOptions", "get", "connectorId"),
    "report": FetchMode("Execute", "report", "reportID"),
    "attachment": FetchMode("GetAttachment", "subject", "subjectID"),
    "schema": FetchMode("Execute", "data", "connectorId"),
}


class RecordFetcher:
    """Dispatches retrievals by mode and shapes tabular payloads into rows."""

    def __init__(self, connection: "Connection") -> None:
        self.connection = connection

    def fetch(
        self,
        mode: str,
        identifier: str,
        filters: Any = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> CallResult:
        try:
            fetch_mode = FETCH_MODES[mode]
        except KeyError:
            raise ValueError(
                f"Unknown fetch mode {mode!r}; expected one of {sorted(FETCH_MODES)}"
            ) from None

        arguments: Dict[str, Any] = dict(extra or {})
        arguments[fetch_mode.key] = identifier
        if filters is not None:
            if fetch_mode.connector_type != "get":
                raise ValueError(f"Filters are not supported in {mode} mode")
            arguments["filters"] = filters

        result = self.connection.call_result(fetch_mode.function, arguments, fetch_mode.connector_type)
        if not fetch_mode.parse or not result.ok:
            return result

        try:
            rows = parse_rows(result.payload, include_empty=includes_empty(arguments))
        except ET.ParseError as exc:
            payload = str(result.payload)
            self.connection.handle_error(
                ErrorSource.WIRE,
                f"{identifier} returned invalid XML: {exc}",
                detail=payload[:2000],
            )
            return CallResult(None, result.record)
        return CallResult(rows, result.record)

    def rows(self, connector_id: str, filters: Any = None, **extra) -> CallResult:
        return self.fetch("tabular", connector_id, filters, extra)

    def report(self, report_id: str, parameters_xml: str = "") -> CallResult:
        return self.fetch("report", report_id, extra={"parametersXml": parameters_xml})

    def attachment(self, subject_id: str, file_id: str) -> CallResult:
        return self.fetch("attachment", subject_id, extra={"fileId": file_id})

    def schema(self, update_connector_id: str) -> CallResult:
        return self.fetch("schema", update_connector_id)


class AttachmentCache:
    """Per-run memo of attachment lookups, including lookups that failed.

    A failed lookup is not retried for the lifetime of the cache.
    """

    def __init__(self, fetcher: RecordFetcher) -> None:
        self.fetcher = fetcher
        self._entries: Dict[Tuple[str, str], Lookup] = {}

    def lookup(self, subject_id: str, file_id: str) -> Lookup:
        return self._entries.get((subject_id, file_id), Unknown())

    def get(self, subject_id: str, file_id: str) -> Optional[bytes]:
        key = (subject_id, file_id)
        state = self.lookup(subject_id, file_id)
        if isinstance(state, Resolved):
            return state.value
        if isinstance(state, Failed):
            return None

        result = self.fetcher.attachment(subject_id, file_id)
        if not result.ok:
            self._entries[key] = Failed(result.error.message if result.error else "")
            return None
        try:
            content = base64.b64decode(result.payload or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            log.warning(f"Attachment {subject_id}/{file_id} is not base64: {exc}")
            self._entries[key] = Failed(str(exc))
            return None
        self._entries[key] = Resolved(content)
        return content

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["AttachmentCache", "FETCH_MODES", "FetchMode", "RecordFetcher"]
