"""Tests for the workbook runner, the JSON report and the command line."""

import json
from unittest.mock import patch

import pytest
from openpyxl import Workbook, load_workbook

from conftest import FakeTransport, get_payload

from afas_connector import cli
from afas_connector.batch import JobContext, JobRun
from afas_connector.config import ErrorReporting
from afas_connector.model import CombinationItem, StockItem
from afas_connector.report import build_report_payload
from afas_connector.runner import run_stock_sync


def create_stock_workbook(file_path):
    """Create a workbook with a product sheet for testing."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "product"
    sheet.append(["key", "name", "stock", "parts"])
    sheet.append(["A100", "Bolt", 1, None])
    sheet.append(["B200", "Nut", 8, None])
    sheet.append(["KIT1", "Bolt and nut", 0, "A100,B200"])
    workbook.save(file_path)
    return file_path


@pytest.fixture
def workbook_path(tmp_path):
    return create_stock_workbook(tmp_path / "stock.xlsx")


@pytest.fixture
def quiet():
    return ErrorReporting.from_bitmask(0)


class TestRunStockSync:
    """Runs against a real workbook with a canned transport."""

    def test_apply_writes_workbook_and_report(self, tmp_path, workbook_path, config, quiet):
        transport = FakeTransport(
            by_connector={
                "Stock": get_payload(
                    [{"Itemcode": "A100", "Stock": "4"}, {"Itemcode": "B200", "Stock": "8"}]
                )
            }
        )
        report_path = tmp_path / "out" / "report.json"

        result = run_stock_sync(
            str(workbook_path),
            {"connector_id": "Stock"},
            output_path=str(report_path),
            config=config,
            transport=transport,
            reporting=quiet,
        )

        assert result == report_path
        payload = json.loads(report_path.read_text(encoding="utf-8"))
        assert payload["status"] == "success"
        assert payload["counters"]["updated"] == 1
        assert payload["counters"]["unchanged"] == 1
        assert "items" not in payload

        sheet = load_workbook(workbook_path)["product"]
        assert sheet["C2"].value == 4

    def test_combination_from_store(self, tmp_path, workbook_path, config, quiet):
        report_path = tmp_path / "report.json"
        run_stock_sync(
            str(workbook_path),
            {"main_source": "store", "part_source": "store"},
            combination=True,
            output_path=str(report_path),
            config=config,
            transport=FakeTransport(),
            reporting=quiet,
        )

        sheet = load_workbook(workbook_path)["product"]
        assert sheet["C4"].value == 1
        assert json.loads(report_path.read_text())["counters"]["updated"] == 1

    def test_items_mode_lists_items(self, tmp_path, workbook_path, config, quiet):
        transport = FakeTransport(
            by_connector={"Stock": get_payload([{"Itemcode": "A100", "Stock": "4"}])}
        )
        report_path = tmp_path / "report.json"
        run_stock_sync(
            str(workbook_path),
            {"connector_id": "Stock", "output": "items"},
            output_path=str(report_path),
            config=config,
            transport=transport,
            reporting=quiet,
        )

        payload = json.loads(report_path.read_text())
        assert payload["items"] == [{"key": "A100", "stock": 4, "by_warehouse": {}}]
        assert load_workbook(workbook_path)["product"]["C2"].value == 1

    def test_job_error_is_reported(self, tmp_path, workbook_path, config, quiet):
        report_path = tmp_path / "report.json"
        run_stock_sync(
            str(workbook_path),
            {},
            output_path=str(report_path),
            config=config,
            transport=FakeTransport(),
            reporting=quiet,
        )
        payload = json.loads(report_path.read_text())
        assert payload["status"] == "error"
        assert "connector_id" in payload["error"]

    def test_missing_workbook_is_reported(self, tmp_path, config):
        report_path = tmp_path / "report.json"
        run_stock_sync(
            str(tmp_path / "missing.xlsx"),
            {"connector_id": "Stock"},
            output_path=str(report_path),
            config=config,
            transport=FakeTransport(),
        )
        payload = json.loads(report_path.read_text())
        assert payload["status"] == "error"
        assert "Workbook not found" in payload["error"]


# --------------------------------------------------------------------
# REPORT PAYLOAD
# --------------------------------------------------------------------
def test_report_serialises_combinations():
    run = JobRun(
        summary="0 item(s) returned",
        items=[CombinationItem("KIT1", parts=["A", "B"], stock=2), StockItem("A", stock=3)],
        context=JobContext(),
    )
    payload = build_report_payload(run, include_items=True)
    assert payload["items"][0] == {
        "key": "KIT1",
        "parts": ["A", "B"],
        "stock": 2,
        "by_warehouse": {},
    }
    assert payload["items"][1]["stock"] == 3
    assert payload["error"] is None


# --------------------------------------------------------------------
# CLI
# --------------------------------------------------------------------
@patch("afas_connector.cli.run_stock_sync")
def test_cli_simple_settings(mock_run, tmp_path, capsys):
    mock_run.return_value = tmp_path / "stock_report.json"

    code = cli.main(
        [
            "--workbook", "stock.xlsx",
            "--connector", "Profit_Stock",
            "--warehouse-field", "Warehouse",
            "--warehouse-map", '{"W1": "stock_w1"}',
            "--filters", '{"Blocked": "0"}',
            "--zero-fill",
        ]
    )

    assert code == 0
    args, kwargs = mock_run.call_args
    assert args[0] == "stock.xlsx"
    settings = args[1]
    assert settings["connector_id"] == "Profit_Stock"
    assert settings["warehouse_fields"] == {"W1": "stock_w1"}
    assert settings["filters"] == {"Blocked": "0"}
    assert settings["zero_fill"] is True
    assert settings["key_field"] == "Itemcode"
    assert kwargs["combination"] is False
    assert "Report written to" in capsys.readouterr().out


@patch("afas_connector.cli.run_stock_sync")
def test_cli_combination_settings(mock_run, tmp_path):
    mock_run.return_value = tmp_path / "stock_report.json"

    cli.main(
        [
            "--workbook", "stock.xlsx",
            "--combination",
            "--connector", "Profit_Combinations",
            "--part-source", "primary",
            "--limit", "5",
        ]
    )

    settings = mock_run.call_args[0][1]
    assert settings["part_source"] == "primary"
    assert settings["limit"] == 5
    assert "zero_fill" not in settings
    assert "key_field" not in settings
    assert mock_run.call_args[1]["combination"] is True


def test_cli_requires_workbook():
    with pytest.raises(SystemExit):
        cli.main([])
