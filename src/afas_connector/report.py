from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from afas_connector.batch import JobRun
from afas_connector.model import CombinationItem, StockItem, SyncCounters


def iso_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialise_counters(counters: SyncCounters) -> Dict[str, Any]:
    return {
        "updated": counters.updated,
        "zero_filled": counters.zero_filled,
        "unchanged": counters.unchanged,
        "load_error": counters.load_error,
        "not_found": counters.not_found,
    }


def _serialise_item(item: Any) -> Dict[str, Any]:
    if isinstance(item, CombinationItem):
        return {
            "key": item.key,
            "parts": list(item.parts),
            "stock": item.stock,
            "by_warehouse": dict(item.by_warehouse),
        }
    if isinstance(item, StockItem):
        return {"key": item.key, "stock": item.stock, "by_warehouse": dict(item.by_warehouse)}
    return dict(item)  # Raw row


def build_report_payload(run: JobRun, include_items: bool = False) -> Dict[str, Any]:
    """Build the JSON payload describing one job run."""

    counters = run.context.counters if run.context else SyncCounters()
    payload: Dict[str, Any] = {
        "status": "error" if run.error else "success",
        "timestamp": iso_timestamp(),
        "summary": run.summary,
        "counters": _serialise_counters(counters),
        "error": run.error,
    }
    if include_items:
        items: List[Dict[str, Any]] = [_serialise_item(item) for item in run.items]
        payload["items"] = items
    return payload


def build_error_payload(message: str) -> Dict[str, Any]:
    return {
        "status": "error",
        "timestamp": iso_timestamp(),
        "summary": message,
        "counters": _serialise_counters(SyncCounters()),
        "error": message,
    }


def write_payload(payload: Dict[str, Any], output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    return output_path


def write_report_to_json(run: JobRun, output_path: Path, include_items: bool = False) -> Path:
    return write_payload(build_report_payload(run, include_items), output_path)
