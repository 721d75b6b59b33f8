"""Error classification and reporting.

Whether an error is temporary is guessed from its message. The table below
is a heuristic, not an exhaustive list: it is known to match some messages
that are really application warnings, so connections accept their own table.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from afas_connector.config import Detail, ErrorReporting
from afas_connector.logger import get_logger
from afas_connector.model import ErrorInfo, ErrorSource

log = get_logger(__name__)

TIMEOUT = "timeout"  # Signature name the stock fetch retries on


@dataclass(frozen=True)
class ErrorSignature:
    """A substring that marks a message as a likely transient failure."""

    name: str
    needle: str

    def matches(self, message: str) -> bool:
        return self.needle.lower() in message.lower()


DEFAULT_TEMPORARY_SIGNATURES: Tuple[ErrorSignature, ...] = (
    ErrorSignature(TIMEOUT, "timed out"),
    ErrorSignature(TIMEOUT, "timeout"),
    ErrorSignature("wsdl", "Parsing WSDL"),
    ErrorSignature("wsdl", "Couldn't load from"),
    ErrorSignature("memory", "Out of memory"),
    ErrorSignature("memory", "OutOfMemoryException"),
    ErrorSignature("database_capacity", "Could not allocate space"),
    ErrorSignature("database_capacity", "database capacity"),
    ErrorSignature("http_403", "Unexpected HTTP status 403"),
    ErrorSignature("content_type", "not an XML content type"),
    ErrorSignature("upstream_warning", "General message"),
)

TEMPORARY_SOURCES = (ErrorSource.WIRE, ErrorSource.TRANSPORT)


def match_signature(
    message: str, signatures: Sequence[ErrorSignature] = DEFAULT_TEMPORARY_SIGNATURES
) -> Optional[ErrorSignature]:
    """Return the first signature matching ``message``, in table order."""
    for signature in signatures:
        if signature.matches(message):
            return signature
    return None


def classify(
    info: ErrorInfo,
    signatures: Sequence[ErrorSignature] = DEFAULT_TEMPORARY_SIGNATURES,
    temporary: Optional[bool] = None,
) -> ErrorInfo:
    """Fill in ``temporary`` / ``signature`` on ``info`` and return it.

    An explicit ``temporary`` wins. Otherwise only wire and transport errors
    are matched against ``signatures``.
    """
    if info.source in TEMPORARY_SOURCES:
        signature = match_signature(info.message, signatures)
        if signature is None and info.detail:
            signature = match_signature(info.detail, signatures)
        info.signature = signature.name if signature else None
    if temporary is not None:
        info.temporary = temporary
    else:
        info.temporary = info.signature is not None
    return info


def _plain(info: ErrorInfo) -> str:
    return html.unescape(info.message) if info.message_escaped else info.message


def print_message(message: str) -> None:
    """Default user-facing sink."""
    print(message)


class ErrorReporter:
    """Sends handled errors to a log sink and a user-facing sink.

    The two sinks are configured independently; ``DETAILED`` adds the error
    detail to what ``BRIEF`` already sends.
    """

    def __init__(
        self,
        reporting: Optional[ErrorReporting] = None,
        logger: Optional[logging.Logger] = None,
        display: Callable[[str], None] = print_message,
    ) -> None:
        self.reporting = reporting or ErrorReporting()
        self.logger = logger or log
        self.display = display

    def brief(self, info: ErrorInfo) -> str:
        prefix = f"{info.function}: " if info.function else ""
        suffix = " (temporary)" if info.temporary else ""
        return f"AFAS {info.source.value} error: {prefix}{_plain(info)}{suffix}"

    def detailed(self, info: ErrorInfo) -> str:
        if not info.detail:
            return self.brief(info)
        return f"{self.brief(info)}\n{info.detail}"

    def _render(self, info: ErrorInfo, level: Detail) -> Optional[str]:
        if level >= Detail.DETAILED:
            return self.detailed(info)
        if level >= Detail.BRIEF:
            return self.brief(info)
        return None

    def report(self, info: ErrorInfo) -> None:
        logged = self._render(info, self.reporting.log)
        if logged is not None:
            self.logger.error(logged)
        shown = self._render(info, self.reporting.display)
        if shown is not None:
            self.display(shown)


__all__ = [
    "DEFAULT_TEMPORARY_SIGNATURES",
    "ErrorReporter",
    "ErrorSignature",
    "TIMEOUT",
    "classify",
    "match_signature",
]
