"""Tests for argument normalisation, dispatch and error handling of Connection."""

from unittest.mock import Mock

import pytest

from conftest import FakeTransport, get_payload

from afas_connector.config import ConnectionConfig, ErrorReporting, set_default_config
from afas_connector.connection import Connection
from afas_connector.errors import ErrorReporter
from afas_connector.model import ErrorSource
from afas_connector.payload import parse_rows
from afas_connector.transport import TransportFault


@pytest.fixture
def transport():
    return FakeTransport(responses=[get_payload([{"Itemcode": "A", "Stock": "5"}])])


@pytest.fixture
def connection(config, transport):
    return Connection(config, transport)


# --------------------------------------------------------------------
# CONFIGURATION
# --------------------------------------------------------------------
def test_missing_configuration_fails_before_dispatch(transport):
    conn = Connection(ConnectionConfig(url="https://x", user="u"), transport)

    assert conn.call("GetDataWithOptions", {"connectorId": "Stock"}) is None
    assert transport.calls == []
    error = conn.last_error
    assert error.source is ErrorSource.CONFIG
    assert "environment" in error.message and "password" in error.message
    assert error.temporary is False


def test_default_configuration_is_used_lazily(config, transport):
    set_default_config(config)
    conn = Connection(transport=transport)
    assert conn.config is config


def test_set_config_only_before_first_call(connection, config):
    connection.set_config(config.with_overrides(environment="O99999ZZ"))
    assert connection.config.environment == "O99999ZZ"

    connection.call("GetDataWithOptions", {"connectorId": "Stock"})
    with pytest.raises(RuntimeError):
        connection.set_config(config)


def test_config_can_be_repaired_after_a_config_error(transport, config):
    conn = Connection(ConnectionConfig(url="https://x"), transport)
    conn.call("GetDataWithOptions", {"connectorId": "Stock"})
    assert conn.last_error.source is ErrorSource.CONFIG

    conn.set_config(config)
    assert conn.call("GetDataWithOptions", {"connectorId": "Stock"}) is not None
    assert len(transport.calls) == 1


# --------------------------------------------------------------------
# ARGUMENT NORMALISATION
# --------------------------------------------------------------------
def test_get_arguments_are_normalized(connection, transport):
    connection.call(
        "GetDataWithOptions",
        {"connectorId": "Stock", "filters": {"Itemcode": "A"}, "options_array": {"Metadata": 1}},
    )

    operation, arguments, connector_type = transport.calls[0]
    assert (operation, connector_type) == ("GetDataWithOptions", "get")
    assert list(arguments)[:3] == ["environmentId", "userId", "password"]
    assert arguments["environmentId"] == "O12345AA"
    assert arguments["connectorId"] == "Stock"
    assert arguments["filtersXml"].startswith('<Filters><Filter FilterId="Filter1">')
    assert arguments["options"] == (
        "<options><Outputmode>1</Outputmode><Metadata>1</Metadata>"
        "<Outputoptions>2</Outputoptions></options>"
    )
    assert "filters" not in arguments
    assert "options_array" not in arguments
    # The recorded arguments never hold credentials
    assert "password" not in connection.last_call.arguments


def test_skip_and_take_become_options(connection, transport):
    connection.call("GetDataWithOptions", {"connectorId": "Stock", "skip": 10, "take": 5})
    options = transport.calls[0][1]["options"]
    assert "<Skip>10</Skip><Take>5</Take>" in options
    assert "skip" not in transport.calls[0][1]


def test_missing_required_argument_is_a_call_error(connection, transport):
    assert connection.call("GetDataWithOptions", {}) is None
    assert transport.calls == []
    assert connection.last_error.source is ErrorSource.CALL
    assert "connectorId" in connection.last_error.message


def test_malformed_filters_are_a_call_error(connection, transport):
    assert connection.call("GetDataWithOptions", {"connectorId": "S", "filters": "A=1"}) is None
    assert transport.calls == []
    assert connection.last_error.source is ErrorSource.CALL


def test_report_defaults(config):
    transport = FakeTransport(responses=["cmVwb3J0"])
    conn = Connection(config, transport)
    assert conn.call("Execute", {"reportID": "R1"}, "report") == "cmVwb3J0"
    _, arguments, connector_type = transport.calls[0]
    assert connector_type == "report"
    assert arguments["reportID"] == "R1"
    assert arguments["parametersXml"] == ""


def test_schema_request_payload(config):
    transport = FakeTransport(responses=["<schema/>"])
    conn = Connection(config, transport)
    conn.call("Execute", {"connectorId": "FbItemArticle"}, "data")
    arguments = transport.calls[0][1]
    assert arguments["dataID"] == "GetXmlSchema"
    assert arguments["parametersXml"] == (
        "<DataConnector><UpdateConnectorId>FbItemArticle</UpdateConnectorId>"
        "<EncodeBase64>false</EncodeBase64></DataConnector>"
    )
    assert "connectorId" not in arguments


def test_update_dispatches_update_connector(config):
    transport = FakeTransport(responses=[""])
    conn = Connection(config, transport)
    conn.update("FbItemArticle", "<FbItemArticle/>")
    operation, arguments, connector_type = transport.calls[0]
    assert (operation, connector_type) == ("Execute", "update")
    assert arguments["connectorType"] == "FbItemArticle"
    assert arguments["connectorVersion"] == 1
    assert arguments["dataXml"] == "<FbItemArticle/>"


# --------------------------------------------------------------------
# ERRORS
# --------------------------------------------------------------------
def test_transport_timeout_is_temporary(config):
    transport = FakeTransport(
        responses=[TransportFault("Request timed out: read", source=ErrorSource.TRANSPORT)]
    )
    conn = Connection(config, transport)

    result = conn.call_result("GetDataWithOptions", {"connectorId": "Stock"})
    assert result.payload is None
    assert not result.ok
    assert result.error.source is ErrorSource.TRANSPORT
    assert result.error.temporary is True
    assert result.error.signature == "timeout"
    assert result.error.function == "GetDataWithOptions"


def test_wire_fault_is_not_temporary_by_default(config):
    transport = FakeTransport(responses=[TransportFault("Connector Stock bestaat niet", detail="x")])
    conn = Connection(config, transport)
    conn.call("GetDataWithOptions", {"connectorId": "Stock"})
    assert conn.last_error.source is ErrorSource.WIRE
    assert conn.last_error.temporary is False
    assert conn.last_error.detail == "x"


def test_unexpected_exception_is_a_code_error(config):
    transport = FakeTransport(responses=[RuntimeError("socket timed out")])
    conn = Connection(config, transport)
    assert conn.call("GetDataWithOptions", {"connectorId": "Stock"}) is None
    error = conn.last_error
    assert error.source is ErrorSource.CODE
    # Code errors are never guessed to be temporary
    assert error.temporary is False
    assert "Traceback" in error.detail


def test_text_output_is_rejected_after_the_call(connection, transport):
    payload = connection.call(
        "GetDataWithOptions", {"connectorId": "Stock", "options_array": {"Outputmode": 2}}
    )
    assert payload is None
    assert len(transport.calls) == 1  # The call was still made
    assert connection.last_error.source is ErrorSource.CALL
    assert "Text output" in connection.last_error.message


def test_handle_error_after_call_keeps_operation(connection):
    connection.call("GetDataWithOptions", {"connectorId": "Stock"})
    info = connection.handle_error(ErrorSource.WIRE, "Payload check failed")
    assert info.function == "GetDataWithOptions"
    assert connection.last_call.function == "GetDataWithOptions"
    assert connection.last_call.error is info


def test_custom_signature_table(config):
    from afas_connector.errors import ErrorSignature

    transport = FakeTransport(responses=[TransportFault("Service busy")])
    conn = Connection(config, transport, temporary_signatures=[ErrorSignature("busy", "busy")])
    conn.call("GetDataWithOptions", {"connectorId": "Stock"})
    assert conn.last_error.temporary is True
    assert conn.last_error.signature == "busy"


def test_errors_reach_the_configured_sinks(config):
    display = Mock()
    logger = Mock()
    reporter = ErrorReporter(ErrorReporting.from_bitmask(1 | 8), logger=logger, display=display)
    transport = FakeTransport(responses=[TransportFault("Boom", detail="stack")])
    conn = Connection(config, transport, reporter=reporter)

    conn.call("GetDataWithOptions", {"connectorId": "Stock"})

    logged = logger.error.call_args[0][0]
    shown = display.call_args[0][0]
    assert "Boom" in logged and "stack" not in logged
    assert "Boom" in shown and "stack" in shown


# --------------------------------------------------------------------
# FETCH / PAYLOAD SHAPING
# --------------------------------------------------------------------
def test_fetch_parses_rows(connection):
    rows = connection.fetch("Stock")
    assert rows == [{"Itemcode": "A", "Stock": "5"}]


def test_fetch_raw_returns_payload(connection):
    payload = connection.fetch("Stock", mode="tabular-raw")
    assert payload.startswith("<AfasGetConnector>")


def test_empty_values_follow_output_options(config):
    payload = get_payload([{"A": "x", "B": None}])

    with_empty = Connection(config, FakeTransport(responses=[payload]))
    rows = with_empty.fetch("Stock", extra={"options_array": {"Outputoptions": 3}})
    assert rows == [{"A": "x", "B": ""}]

    default = Connection(config, FakeTransport(responses=[payload]))
    assert default.fetch("Stock") == [{"A": "x"}]


def test_invalid_xml_payload_is_a_wire_error(config):
    conn = Connection(config, FakeTransport(responses=["<AfasGetConnector><Row>"]))
    assert conn.fetch("Stock") is None
    assert conn.last_error.source is ErrorSource.WIRE
    assert conn.last_error.function == "GetDataWithOptions"


def test_fetch_rejects_unknown_mode(connection):
    with pytest.raises(ValueError):
        connection.fetch("Stock", mode="csv")


def test_parse_rows_keeps_row_order():
    payload = get_payload([{"Itemcode": "B"}, {"Itemcode": "A"}])
    assert [row["Itemcode"] for row in parse_rows(payload)] == ["B", "A"]
    assert parse_rows("") == []
