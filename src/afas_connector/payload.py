"""XML fragments sent to, and payloads received from, Profit connectors."""

from __future__ import annotations

import xml.etree.ElementTree as ET  # Options fragment and payload parsing
from typing import Any, Dict, List, Mapping

OUTPUT_XML = 1
OUTPUT_TEXT = 2
OUTPUT_DATASET = 2  # Default dataset: empty fields are left out
OUTPUT_DATASET_EMPTY = 3  # Dataset including empty values

DEFAULT_OPTIONS: Dict[str, int] = {
    "Outputmode": OUTPUT_XML,
    "Metadata": 0,
    "Outputoptions": OUTPUT_DATASET,
}

SCHEMA_DATA_ID = "GetXmlSchema"


def schema_request(connector_id: str) -> str:
    """Return the DataConnector parameters asking for an update connector's schema."""
    root = ET.Element("DataConnector")
    ET.SubElement(root, "UpdateConnectorId").text = connector_id
    ET.SubElement(root, "EncodeBase64").text = "false"
    return ET.tostring(root, encoding="unicode")


def build_options_xml(options: Mapping[str, Any]) -> str:
    """Render the ``options`` argument of GetDataWithOptions."""
    root = ET.Element("options")
    for name, value in options.items():
        ET.SubElement(root, name).text = str(value)
    return ET.tostring(root, encoding="unicode")


def resolve_options(arguments: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``options_array`` / ``skip`` / ``take`` over the default options."""
    options: Dict[str, Any] = dict(DEFAULT_OPTIONS)
    options.update(arguments.get("options_array") or {})
    for key, element in (("skip", "Skip"), ("take", "Take")):
        if arguments.get(key) is not None:
            options[element] = int(arguments[key])
    return options


def includes_empty(arguments: Mapping[str, Any]) -> bool:
    """Whether a call asked for a dataset including empty values."""
    return str(resolve_options(arguments).get("Outputoptions")) == str(OUTPUT_DATASET_EMPTY)


def parse_rows(payload: str, include_empty: bool = False) -> List[Dict[str, str]]:
    """Parse a GetConnector payload into a list of ``{field: text}`` rows.

    Every child of the root element is one row. Empty elements become ``""``
    when the dataset includes empty values and are left out otherwise.
    Raises :class:`xml.etree.ElementTree.ParseError` on malformed XML.
    """
    if not payload or not payload.strip():
        return []
    root = ET.fromstring(payload)
    rows: List[Dict[str, str]] = []
    for row in root:
        record: Dict[str, str] = {}
        for element in row:
            text = element.text or ""
            if not text and not include_empty:
                continue
            record[element.tag] = text
        rows.append(record)
    return rows


__all__ = [
    "DEFAULT_OPTIONS",
    "OUTPUT_DATASET",
    "OUTPUT_DATASET_EMPTY",
    "OUTPUT_TEXT",
    "OUTPUT_XML",
    "SCHEMA_DATA_ID",
    "build_options_xml",
    "includes_empty",
    "parse_rows",
    "resolve_options",
    "schema_request",
]
