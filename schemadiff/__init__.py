"""
schemadiff
==========

Structural comparison of PostgreSQL schemas: one base, many targets.

Modules
-------
- :mod:`schemadiff.models`: immutable schema snapshots
- :mod:`schemadiff.diffing`: the diff engine (:func:`diff_schemas`)
- :mod:`schemadiff.collectors`: loading snapshots from PostgreSQL catalogs
- :mod:`schemadiff.orchestrator`: concurrent multi-target runs
- :mod:`schemadiff.reporting`: Markdown/JSON output
- :mod:`schemadiff.cli`: the ``schemadiff`` command
"""

from .differences import Difference, DifferenceKind, Severity, severity_of
from .diffing import diff_schemas
from .endpoints import DatabaseEndpoint
from .errors import ConfigError, ConnectivityError, IntrospectionError, SchemaDiffError, TargetTimeoutError
from .models import ColumnDescriptor, IndexDescriptor, SchemaSnapshot, TableDescriptor
from .orchestrator import RunPolicy, RunReport, RunResult, run_comparison, summarize

__all__ = [
    "ColumnDescriptor",
    "ConfigError",
    "ConnectivityError",
    "DatabaseEndpoint",
    "Difference",
    "DifferenceKind",
    "IndexDescriptor",
    "IntrospectionError",
    "RunPolicy",
    "RunReport",
    "RunResult",
    "SchemaDiffError",
    "SchemaSnapshot",
    "Severity",
    "TableDescriptor",
    "TargetTimeoutError",
    "diff_schemas",
    "run_comparison",
    "severity_of",
    "summarize",
]
