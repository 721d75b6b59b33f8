"""Filter normalisation for GetConnector calls.

Callers can express filters in three shapes, all of which end up as the same
canonical list of :class:`FilterGroup` objects and the same ``filtersXml``
fragment:

* a flat ``{field: value}`` mapping; every field gets the request-level
  operator (or ``=``),
* the same flat mapping carrying its own ``"#op"`` key,
* a list of such mappings, each with an optional ``"#op"`` key.

Groups that resolve to the same operator are merged, in order of first
appearance. All clauses are emitted inside a single ``<Filter>`` element.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET  # Building the filtersXml fragment
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from afas_connector.model import FilterClause, FilterGroup

OPERATOR_KEY = "#op"  # Group-level operator tag
DEFAULT_OPERATOR = 1  # equals

OPERATORS: Dict[str, int] = {
    "=": 1,
    "==": 1,
    ">=": 2,
    "<=": 3,
    ">": 4,
    "<": 5,
    "LIKE": 6,
    "CONTAINS": 6,
    "!=": 7,
    "<>": 7,
    "NULL": 8,
    "IS NULL": 8,
    "NOT NULL": 9,
    "IS NOT NULL": 9,
    "STARTS": 10,
    "STARTS WITH": 10,
    "NOT LIKE": 11,
    "NOT CONTAINS": 11,
    "DOES NOT CONTAIN": 11,
    "NOT STARTS": 12,
    "NOT STARTS WITH": 12,
    "DOES NOT START WITH": 12,
    "ENDS": 13,
    "ENDS WITH": 13,
    "NOT ENDS": 14,
    "NOT ENDS WITH": 14,
    "DOES NOT END WITH": 14,
}

RawFilters = Union[Mapping[str, Any], Iterable[Mapping[str, Any]], None]


def _lookup(token: Any) -> Optional[int]:
    """Return the operator code for ``token``, or None when unresolvable."""
    if token is None or isinstance(token, bool):
        return None
    if isinstance(token, int):
        return token
    text = " ".join(str(token).split()).upper()
    if text in OPERATORS:
        return OPERATORS[text]
    if text.isdigit():
        return int(text)
    return None


def _absent(token: Any) -> bool:
    return token is None or (isinstance(token, str) and not token.strip())


def resolve_operator(token: Any, default: Any = None) -> int:
    """Map an operator token to its numeric code.

    Known tokens map through :data:`OPERATORS` and numeric tokens pass
    through. ``default`` is only consulted when no token is given; a token
    that cannot be resolved means ``1`` (equals).
    """
    code = _lookup(default if _absent(token) else token)
    return DEFAULT_OPERATOR if code is None else code


def _groups(raw: RawFilters) -> List[Mapping[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        return [raw]  # Flat map, with or without its own operator tag
    if isinstance(raw, (str, bytes)):
        raise ValueError("Filters must be a mapping or a list of mappings")
    groups = list(raw)
    for group in groups:
        if not isinstance(group, Mapping):
            raise ValueError(
                f"Filter groups must be mappings, got {type(group).__name__}"
            )
    return groups


def _value_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def build_filters_xml(groups: List[FilterGroup]) -> str:
    """Render canonical groups as the ``filtersXml`` wire fragment."""
    if not groups:
        return ""
    root = ET.Element("Filters")
    outer = ET.SubElement(root, "Filter", FilterId="Filter1")
    for group in groups:
        for clause in group.clauses:
            element = ET.SubElement(
                outer, "Field", FieldId=clause.field, OperatorType=str(group.operator)
            )
            element.text = _value_text(clause.value)  # Escaped on serialisation
    return ET.tostring(root, encoding="unicode", short_empty_elements=False)


def normalize_filters(
    raw: RawFilters, operator: Any = None
) -> Tuple[List[FilterGroup], str]:
    """Normalise caller filters into canonical groups plus the wire fragment.

    ``operator`` is the request-level default for groups without an ``"#op"``
    tag; an unknown tag means equals. Raises :class:`ValueError` for malformed input.
    """
    merged: Dict[int, FilterGroup] = {}  # Insertion order is first appearance
    for group in _groups(raw):
        code = resolve_operator(group.get(OPERATOR_KEY), operator)
        for field_name, value in group.items():
            if field_name == OPERATOR_KEY:
                continue
            if not isinstance(field_name, str) or not field_name.strip():
                raise ValueError(f"Invalid filter field name: {field_name!r}")
            target = merged.setdefault(code, FilterGroup(operator=code))
            target.clauses.append(FilterClause(field=field_name.strip(), value=value))

    groups = list(merged.values())
    return groups, build_filters_xml(groups)


__all__ = [
    "DEFAULT_OPERATOR",
    "OPERATORS",
    "OPERATOR_KEY",
    "build_filters_xml",
    "normalize_filters",
    "resolve_operator",
]
