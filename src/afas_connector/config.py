"""Connection and error-reporting configuration.

Process-wide defaults are read from ``AFAS_*`` environment variables at
startup. A :class:`ConnectionConfig` built from them is registered with
:func:`set_default_config` and picked up by connections constructed without
an explicit configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from enum import IntEnum
from typing import List, Optional

IDENTITY_FIELDS = ("url", "environment", "domain", "user", "password")

DEFAULT_CACHE_TTL = 86400  # Schema metadata (WSDL) cache, seconds
DEFAULT_TIMEOUT = 300  # The remote side times out after a few minutes itself


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ConnectionConfig:
    """Endpoint, identity and wire settings of one connection."""

    url: str = ""  # e.g. https://profitweb.afasonline.nl/profitservices
    environment: str = ""
    domain: str = ""
    user: str = ""
    password: str = ""
    use_wsdl: bool = True
    cache_ttl: int = DEFAULT_CACHE_TTL
    ntlm: bool = True
    proxy: Optional[str] = None
    timeout: int = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> "ConnectionConfig":
        return cls(
            url=os.getenv("AFAS_URL", "").rstrip("/"),
            environment=os.getenv("AFAS_ENVIRONMENT", ""),
            domain=os.getenv("AFAS_DOMAIN", ""),
            user=os.getenv("AFAS_USER", ""),
            password=os.getenv("AFAS_PASSWORD", ""),
            use_wsdl=_env_bool("AFAS_USE_WSDL", True),
            cache_ttl=int(os.getenv("AFAS_CACHE_TTL", str(DEFAULT_CACHE_TTL))),
            ntlm=_env_bool("AFAS_NTLM", True),
            proxy=os.getenv("AFAS_PROXY") or None,
            timeout=int(os.getenv("AFAS_TIMEOUT", str(DEFAULT_TIMEOUT))),
        )

    def missing_fields(self) -> List[str]:
        """Return the identity fields that are still empty."""
        return [name for name in IDENTITY_FIELDS if not getattr(self, name)]

    def with_overrides(self, **overrides) -> "ConnectionConfig":
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return replace(self, **overrides)

    def endpoint(self, connector_type: str) -> str:
        return f"{self.url.rstrip('/')}/{connector_type}connector.asmx"

    @property
    def login(self) -> str:
        """User name in the ``DOMAIN\\user`` form NTLM expects."""
        return f"{self.domain}\\{self.user}" if self.domain else self.user


_default_config: Optional[ConnectionConfig] = None


def set_default_config(config: Optional[ConnectionConfig]) -> None:
    """Register the process-wide default configuration (``None`` resets it)."""
    global _default_config
    _default_config = config


def get_default_config() -> ConnectionConfig:
    """Return the registered default, building it from the environment once."""
    global _default_config
    if _default_config is None:
        _default_config = ConnectionConfig.from_env()
    return _default_config


class Detail(IntEnum):
    """How much of an error a sink receives."""

    OFF = 0
    BRIEF = 1
    DETAILED = 2


@dataclass(frozen=True)
class ErrorReporting:
    """Which error sinks are active, and how verbose each one is."""

    log: Detail = Detail.BRIEF
    display: Detail = Detail.OFF

    # Legacy bitmask values
    LOG_BRIEF = 1
    LOG_DETAILED = 2
    DISPLAY_BRIEF = 4
    DISPLAY_DETAILED = 8

    @classmethod
    def from_bitmask(cls, mask: int) -> "ErrorReporting":
        def level(brief: int, detailed: int) -> Detail:
            if mask & detailed:
                return Detail.DETAILED
            if mask & brief:
                return Detail.BRIEF
            return Detail.OFF

        return cls(
            log=level(cls.LOG_BRIEF, cls.LOG_DETAILED),
            display=level(cls.DISPLAY_BRIEF, cls.DISPLAY_DETAILED),
        )

    @classmethod
    def from_env(cls) -> "ErrorReporting":
        return cls.from_bitmask(int(os.getenv("AFAS_ERROR_REPORTING", "1")))


__all__ = [
    "ConnectionConfig",
    "Detail",
    "ErrorReporting",
    "IDENTITY_FIELDS",
    "get_default_config",
    "set_default_config",
]
