"""
endpoints
=========

Database endpoint value type.

An endpoint names one database + schema pair to compare. Endpoints are built
once at configuration-load time (see :mod:`schemadiff.config`) and never
change afterwards.

Connection locators
-------------------
Both libpq URIs and JDBC URLs are accepted::

    postgresql://db-prod:5432/app
    jdbc:postgresql://db-prod:5432/app

The host and port are only used for :attr:`DatabaseEndpoint.display_name`;
:func:`schemadiff.connection.to_dsn` turns the locator into a DSN.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple
from urllib.parse import urlsplit

from .errors import ConfigError

DEFAULT_SCHEMA = "public"
DEFAULT_PORT = 5432
JDBC_PREFIX = "jdbc:"


def parse_host_port(url: str) -> Optional[Tuple[str, int]]:
    """Return ``(host, port)`` from a connection locator, or None.

    Parameters
    ----------
    url:
        libpq URI or JDBC URL.

    Returns
    -------
    tuple or None
        Host and port (``5432`` when the locator has none). None when the
        locator carries no parseable host.
    """
    value = url.strip()
    if value.lower().startswith(JDBC_PREFIX):
        value = value[len(JDBC_PREFIX):]
    if "://" not in value:
        return None
    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError:
        return None
    if not parts.hostname:
        return None
    return parts.hostname, port or DEFAULT_PORT


@dataclass(frozen=True)
class DatabaseEndpoint:
    """One database + schema to introspect.

    Attributes:
        name: Logical name, unique within a run.
        url: Connection locator (libpq URI or JDBC URL).
        username: Login role.
        password: Password for ``username``. Never shown in ``repr``.
        schema: Schema to compare; blank values fall back to ``public``.
    """

    name: str
    url: str
    username: str = ""
    password: str = field(default="", repr=False)
    schema: str = DEFAULT_SCHEMA

    def __post_init__(self) -> None:
        if not (self.name or "").strip():
            raise ConfigError("endpoint name must not be blank")
        if not (self.url or "").strip():
            raise ConfigError(f"endpoint {self.name!r} has no connection url")
        schema = (self.schema or "").strip() or DEFAULT_SCHEMA
        object.__setattr__(self, "schema", schema)

    @property
    def display_name(self) -> str:
        """``name(host:port)``, or the bare name when the url has no host."""
        host_port = parse_host_port(self.url)
        if host_port is None:
            return self.name
        host, port = host_port
        return f"{self.name}({host}:{port})"

    def describe(self) -> str:
        """Return a human-readable description for logs/reports."""
        return f"{self.display_name} schema={self.schema} user={self.username or '-'}"
