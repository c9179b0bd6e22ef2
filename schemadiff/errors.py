"""
errors
======

Exception taxonomy for schema comparison runs.

- :class:`ConfigError`: malformed or missing endpoint/run configuration.
  Always fatal, raised before any database is touched.
- :class:`ConnectivityError`: an endpoint cannot be reached.
- :class:`IntrospectionError`: a catalog query failed (e.g. missing schema).
- :class:`TargetTimeoutError`: a target produced no result in time.

Connectivity and introspection errors abort the run for the base endpoint and
are recorded per target otherwise (see :mod:`schemadiff.orchestrator`).
"""

from __future__ import annotations


class SchemaDiffError(Exception):
    """Base class for all schemadiff errors."""


class ConfigError(SchemaDiffError):
    """Configuration is missing or invalid."""


class ConnectivityError(SchemaDiffError):
    """A connection to an endpoint could not be established."""


class IntrospectionError(SchemaDiffError):
    """Reading the catalog of an endpoint failed."""


class TargetTimeoutError(SchemaDiffError):
    """A target did not finish within the per-target timeout."""
