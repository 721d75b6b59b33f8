"""Wire transports for Profit SOAP connectors.

Two interchangeable strategies execute a remote operation:

* :class:`WsdlTransport` lets ``zeep`` read each connector's WSDL and build
  the request,
* :class:`EnvelopeTransport` writes the SOAP envelope itself and posts it
  with ``requests``.

Both authenticate over an NTLM-capable ``requests`` session, honour an
optional proxy and raise :class:`TransportFault` on failure.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET  # Envelope construction and parsing
from typing import Any, Dict, Mapping, Optional, Protocol

import requests
from requests_ntlm import HttpNtlmAuth
from zeep import Client
from zeep.cache import InMemoryCache
from zeep.exceptions import Error as ZeepError
from zeep.exceptions import Fault
from zeep.exceptions import TransportError as ZeepTransportError
from zeep.transports import Transport as ZeepTransport

from afas_connector.config import ConnectionConfig
from afas_connector.logger import get_logger
from afas_connector.model import ErrorSource

log = get_logger(__name__)

SOAP_ENV = "http://schemas.xmlsoap.org/soap/envelope/"
PROFIT_NS = "urn:Afas.Profit.Services"
WSDL_TIMEOUT = 30  # Seconds allowed for loading a WSDL document

ET.register_namespace("soap", SOAP_ENV)


class TransportFault(Exception):
    """A remote call failed at the wire or transport level."""

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[str] = None,
        source: ErrorSource = ErrorSource.WIRE,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.source = source


class Transport(Protocol):
    """Executes one remote operation and returns the raw result payload."""

    def execute(
        self, operation: str, arguments: Mapping[str, Any], connector_type: str
    ) -> Any: ...


def build_session(config: ConnectionConfig) -> requests.Session:
    """Create an HTTP session with NTLM credentials and proxy applied."""
    session = requests.Session()
    if config.ntlm:
        session.auth = HttpNtlmAuth(config.login, config.password)
    if config.proxy:
        session.proxies.update({"http": config.proxy, "https": config.proxy})
    return session


def _request_fault(exc: requests.RequestException) -> TransportFault:
    if isinstance(exc, requests.Timeout):
        return TransportFault(
            f"Request timed out: {exc}", source=ErrorSource.TRANSPORT
        )
    return TransportFault(f"HTTP request failed: {exc}", source=ErrorSource.TRANSPORT)


class WsdlTransport:
    """Strategy that lets zeep drive the call from the connector's WSDL."""

    def __init__(
        self, config: ConnectionConfig, session: Optional[requests.Session] = None
    ) -> None:
        self.config = config
        self.session = session or build_session(config)
        self.transport = ZeepTransport(
            session=self.session,
            cache=InMemoryCache(timeout=config.cache_ttl),  # Schema metadata
            timeout=WSDL_TIMEOUT,
            operation_timeout=config.timeout,
        )
        self._clients: Dict[str, Client] = {}

    def client(self, connector_type: str) -> Client:
        if connector_type not in self._clients:
            wsdl = f"{self.config.endpoint(connector_type)}?WSDL"
            log.debug(f"Loading WSDL {wsdl}")
            try:
                self._clients[connector_type] = Client(wsdl, transport=self.transport)
            except requests.RequestException as exc:
                raise _request_fault(exc) from exc
            except ZeepError as exc:
                raise TransportFault(f"Parsing WSDL {wsdl} failed: {exc}") from exc
        return self._clients[connector_type]

    def execute(
        self, operation: str, arguments: Mapping[str, Any], connector_type: str
    ) -> Any:
        client = self.client(connector_type)
        try:
            result = getattr(client.service, operation)(**dict(arguments))
        except Fault as fault:
            detail = None
            if fault.detail is not None:
                detail = "".join(fault.detail.itertext()).strip() or None
            raise TransportFault(fault.message, detail=detail) from fault
        except ZeepTransportError as exc:
            raise TransportFault(
                f"Unexpected HTTP status {exc.status_code}: {exc.message}",
                detail=exc.content.decode("utf-8", "replace") if exc.content else None,
                source=ErrorSource.TRANSPORT,
            ) from exc
        except requests.RequestException as exc:
            raise _request_fault(exc) from exc
        return "" if result is None else result


def build_envelope(operation: str, arguments: Mapping[str, Any]) -> bytes:
    """Return a SOAP 1.1 request envelope for ``operation``."""
    envelope = ET.Element(f"{{{SOAP_ENV}}}Envelope")
    body = ET.SubElement(envelope, f"{{{SOAP_ENV}}}Body")
    call = ET.SubElement(body, f"{{{PROFIT_NS}}}{operation}")
    for name, value in arguments.items():
        element = ET.SubElement(call, f"{{{PROFIT_NS}}}{name}")
        element.text = "" if value is None else str(value)
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def parse_envelope(operation: str, content: bytes) -> str:
    """Extract the ``<operation>Result`` text, raising on SOAP faults."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise TransportFault(f"Response is not valid XML: {exc}") from exc

    fault = root.find(f".//{{{SOAP_ENV}}}Fault")
    if fault is not None:
        message = (fault.findtext("faultstring") or "SOAP fault").strip()
        detail_element = fault.find("detail")
        detail = None
        if detail_element is not None:
            detail = "".join(detail_element.itertext()).strip() or None
        raise TransportFault(message, detail=detail)

    result = root.find(f".//{{{PROFIT_NS}}}{operation}Result")
    if result is None:
        raise TransportFault(f"Response holds no {operation}Result element")
    return result.text or ""


class EnvelopeTransport:
    """Strategy that posts hand-built envelopes over an authenticated session."""

    def __init__(
        self, config: ConnectionConfig, session: Optional[requests.Session] = None
    ) -> None:
        self.config = config
        self.session = session or build_session(config)

    def execute(
        self, operation: str, arguments: Mapping[str, Any], connector_type: str
    ) -> Any:
        url = self.config.endpoint(connector_type)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f"{PROFIT_NS}/{operation}",
        }
        log.debug(f"POST {operation} to {url}")
        try:
            response = self.session.post(
                url,
                data=build_envelope(operation, arguments),
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.RequestException as exc:
            raise _request_fault(exc) from exc

        content_type = response.headers.get("Content-Type", "")
        if "xml" not in content_type.lower():
            raise TransportFault(
                f"Response has not an XML content type ({content_type or 'none'}), "
                f"HTTP status {response.status_code}",
                detail=response.text[:2000] or None,
                source=ErrorSource.TRANSPORT,
            )
        # Faults come back as HTTP 500 with an XML body; parse before the status check
        if response.status_code == 200 or response.status_code == 500:
            return parse_envelope(operation, response.content)
        raise TransportFault(
            f"Unexpected HTTP status {response.status_code}",
            detail=response.text[:2000] or None,
            source=ErrorSource.TRANSPORT,
        )


def make_transport(config: ConnectionConfig) -> Transport:
    """Pick the transport strategy for ``config.use_wsdl``."""
    if config.use_wsdl:
        return WsdlTransport(config)
    return EnvelopeTransport(config)


__all__ = [
    "EnvelopeTransport",
    "Transport",
    "TransportFault",
    "WsdlTransport",
    "build_envelope",
    "build_session",
    "make_transport",
    "parse_envelope",
]
