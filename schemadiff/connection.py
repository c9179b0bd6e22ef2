"""
connection
==========

PostgreSQL connection helpers.

This module is the only place that calls :func:`psycopg2.connect`. The rest of
the codebase treats database access as:

- input: :class:`~schemadiff.endpoints.DatabaseEndpoint` + options
- output: an open connection inside a ``with`` block, closed on every exit path

Connection failures surface as :class:`~schemadiff.errors.ConnectivityError`
so callers never need to know psycopg2's exception hierarchy.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Tuple

import psycopg2

from .endpoints import JDBC_PREFIX, DatabaseEndpoint
from .errors import ConfigError, ConnectivityError

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10
DEFAULT_STATEMENT_TIMEOUT_SECONDS = 120


@dataclass(frozen=True)
class ConnectOptions:
    """Timeouts applied to every connection.

    Parameters
    ----------
    connect_timeout:
        Seconds to wait for the server to accept the connection.
    statement_timeout:
        Server-side limit for each catalog query, in seconds. ``None``
        leaves the server default in place.
    """

    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT_SECONDS
    statement_timeout: Optional[int] = DEFAULT_STATEMENT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.connect_timeout < 1:
            raise ConfigError(f"connect_timeout must be positive, got {self.connect_timeout}")
        if self.statement_timeout is not None and self.statement_timeout < 1:
            raise ConfigError(f"statement_timeout must be positive, got {self.statement_timeout}")


def to_dsn(url: str) -> str:
    """Turn a connection locator into a libpq DSN.

    JDBC URLs (``jdbc:postgresql://host:5432/db``) lose their ``jdbc:`` prefix;
    libpq URIs and ``key=value`` DSNs pass through unchanged.
    """
    value = url.strip()
    if value.lower().startswith(JDBC_PREFIX):
        value = value[len(JDBC_PREFIX):]
    return value


def connect_kwargs(endpoint: DatabaseEndpoint, options: ConnectOptions) -> dict:
    """Keyword arguments for :func:`psycopg2.connect` (excluding the DSN)."""
    kwargs: dict = {"connect_timeout": options.connect_timeout, "application_name": "schemadiff"}
    if endpoint.username:
        kwargs["user"] = endpoint.username
    if endpoint.password:
        kwargs["password"] = endpoint.password
    if options.statement_timeout is not None:
        kwargs["options"] = f"-c statement_timeout={options.statement_timeout * 1000}"
    return kwargs


@contextmanager
def open_connection(
    endpoint: DatabaseEndpoint,
    options: Optional[ConnectOptions] = None,
    connect: Optional[Callable[..., Any]] = None,
) -> Iterator[Any]:
    """Open a read-only connection to *endpoint* for the duration of a block.

    Parameters
    ----------
    endpoint:
        Endpoint to connect to.
    options:
        Timeouts; defaults to :class:`ConnectOptions`.
    connect:
        Connection factory; defaults to :func:`psycopg2.connect`.

    Raises
    ------
    ConnectivityError
        If the connection cannot be established.
    """
    options = options or ConnectOptions()
    connect = connect or psycopg2.connect
    try:
        conn = connect(to_dsn(endpoint.url), **connect_kwargs(endpoint, options))
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as exc:
        message = str(exc).strip() or exc.__class__.__name__
        raise ConnectivityError(f"cannot connect to {endpoint.display_name}: {message}") from exc

    logger.debug("connected to %s (schema %s)", endpoint.display_name, endpoint.schema)
    try:
        conn.set_session(readonly=True, autocommit=True)
        yield conn
    finally:
        conn.close()
        logger.debug("closed connection to %s", endpoint.display_name)


def connection_test(endpoint: DatabaseEndpoint, options: Optional[ConnectOptions] = None) -> Tuple[bool, str]:
    """Perform a lightweight connectivity test.

    Returns
    -------
    tuple[bool, str]
        ``(ok, message)`` where message is the server version string or the
        error text.
    """
    try:
        with open_connection(endpoint, options) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT version()")
                row = cur.fetchone()
    except ConnectivityError as exc:
        return False, str(exc)
    except psycopg2.Error as exc:
        return False, f"{endpoint.display_name}: {str(exc).strip()}"
    return True, row[0] if row else "unknown"
