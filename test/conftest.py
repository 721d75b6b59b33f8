import xml.etree.ElementTree as ET

import pytest

from afas_connector.config import ConnectionConfig, set_default_config
from afas_connector.connection import Connection
from afas_connector.fetcher import RecordFetcher


class FakeTransport:
    """Transport double returning canned payloads, in order or per connector id."""

    def __init__(self, responses=None, by_connector=None):
        self.responses = list(responses or [])
        self.by_connector = dict(by_connector or {})
        self.calls = []

    def execute(self, operation, arguments, connector_type):
        self.calls.append((operation, dict(arguments), connector_type))
        if self.by_connector:
            response = self.by_connector[arguments.get("connectorId")]
        else:
            response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def get_payload(rows, row_tag="Profit_Stock"):
    """Build a GetConnector payload from a list of dicts."""
    root = ET.Element("AfasGetConnector")
    for row in rows:
        element = ET.SubElement(root, row_tag)
        for name, value in row.items():
            ET.SubElement(element, name).text = None if value is None else str(value)
    return ET.tostring(root, encoding="unicode")


@pytest.fixture
def config():
    return ConnectionConfig(
        url="https://profit.example.com/profitservices",
        environment="O12345AA",
        domain="AOL",
        user="stockuser",
        password="secret",
    )


@pytest.fixture
def make_fetcher(config):
    def _make(transport, **kwargs):
        return RecordFetcher(Connection(config, transport, **kwargs))

    return _make


@pytest.fixture(autouse=True)
def reset_default_config():
    set_default_config(None)
    yield
    set_default_config(None)
