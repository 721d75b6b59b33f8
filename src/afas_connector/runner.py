from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

from afas_connector.batch import CombinationStockJob, StockSyncJob, run_job
from afas_connector.config import ConnectionConfig, ErrorReporting
from afas_connector.connection import Connection
from afas_connector.errors import ErrorReporter
from afas_connector.fetcher import RecordFetcher
from afas_connector.logger import get_logger
from afas_connector.report import build_error_payload, build_report_payload, write_payload
from afas_connector.store import WorkbookStore
from afas_connector.transport import Transport

DEFAULT_REPORT_NAME = "stock_report.json"

log = get_logger(__name__)


def run_stock_sync(
    workbook_path: str,
    settings: Mapping[str, Any],
    *,
    combination: bool = False,
    output_path: str | None = None,
    config: Optional[ConnectionConfig] = None,
    transport: Optional[Transport] = None,
    reporting: Optional[ErrorReporting] = None,
) -> Path:
    """Synchronise stock into the workbook and write a JSON report of the run."""

    report_path = Path(output_path) if output_path else Path(DEFAULT_REPORT_NAME)

    try:
        # 1. Open the local store
        store = WorkbookStore(Path(workbook_path))

        # 2. Connect to the remote services
        connection = Connection(
            config,
            transport,
            reporter=ErrorReporter(reporting or ErrorReporting.from_env()),
        )
        fetcher = RecordFetcher(connection)

        # 3. Fetch, reconcile and apply
        job_class = CombinationStockJob if combination else StockSyncJob
        job = job_class(fetcher, store, settings)
        try:
            run = run_job(job)
        finally:
            store.close()  # Write changes back to the workbook

        log.info(run.summary)
        payload = build_report_payload(run, include_items=job.output != "apply")

    except Exception as exc:
        log.exception("Stock sync failed")
        payload = build_error_payload(str(exc))

    return write_payload(payload, report_path)


if __name__ == "__main__":
    result_path = run_stock_sync(
        "stock.xlsx",
        {"connector_id": "Profit_Stock"},
        output_path=DEFAULT_REPORT_NAME,
    )

    print(f"Stock sync completed. Report generated at: {result_path}")
