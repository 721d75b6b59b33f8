import base64

import pytest

from conftest import FakeTransport, get_payload

from afas_connector.fetcher import AttachmentCache
from afas_connector.model import Failed, Resolved, Unknown
from afas_connector.transport import TransportFault


def test_rows_mode_passes_filters(make_fetcher):
    transport = FakeTransport(responses=[get_payload([{"Itemcode": "A", "Stock": "1"}])])
    result = make_fetcher(transport).rows("Stock", {"Itemcode": "A"})

    assert result.ok
    assert result.payload == [{"Itemcode": "A", "Stock": "1"}]
    assert 'FieldId="Itemcode"' in transport.calls[0][1]["filtersXml"]


def test_report_mode(make_fetcher):
    transport = FakeTransport(responses=["JVBERi0="])
    result = make_fetcher(transport).report("Pakbon", "<params/>")
    operation, arguments, connector_type = transport.calls[0]
    assert (operation, connector_type) == ("Execute", "report")
    assert arguments["reportID"] == "Pakbon"
    assert arguments["parametersXml"] == "<params/>"
    assert result.payload == "JVBERi0="


def test_filters_outside_get_mode_raise(make_fetcher):
    with pytest.raises(ValueError):
        make_fetcher(FakeTransport()).fetch("report", "Pakbon", {"A": "1"})


# --------------------------------------------------------------------
# ATTACHMENT CACHE
# --------------------------------------------------------------------
def test_attachment_is_decoded_and_memoized(make_fetcher):
    encoded = base64.b64encode(b"%PDF-1.4").decode()
    transport = FakeTransport(responses=[encoded])
    cache = AttachmentCache(make_fetcher(transport))

    assert isinstance(cache.lookup("123", "F1"), Unknown)
    assert cache.get("123", "F1") == b"%PDF-1.4"
    assert cache.get("123", "F1") == b"%PDF-1.4"
    assert len(transport.calls) == 1
    assert transport.calls[0][0] == "GetAttachment"
    assert transport.calls[0][1]["subjectID"] == "123"
    assert transport.calls[0][1]["fileId"] == "F1"
    assert isinstance(cache.lookup("123", "F1"), Resolved)


def test_failed_lookup_is_not_repeated(make_fetcher):
    transport = FakeTransport(responses=[TransportFault("Bijlage niet gevonden")])
    cache = AttachmentCache(make_fetcher(transport))

    assert cache.get("123", "F1") is None
    assert cache.get("123", "F1") is None
    assert len(transport.calls) == 1
    state = cache.lookup("123", "F1")
    assert isinstance(state, Failed)
    assert "niet gevonden" in state.reason


def test_invalid_base64_is_a_failed_lookup(make_fetcher):
    cache = AttachmentCache(make_fetcher(FakeTransport(responses=["not base64!"])))
    assert cache.get("123", "F1") is None
    assert isinstance(cache.lookup("123", "F1"), Failed)


def test_clear_forgets_entries(make_fetcher):
    transport = FakeTransport(responses=[TransportFault("Boom"), base64.b64encode(b"x").decode()])
    cache = AttachmentCache(make_fetcher(transport))
    cache.get("1", "F")
    cache.clear()
    assert cache.get("1", "F") == b"x"
    assert len(transport.calls) == 2
