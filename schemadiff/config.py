"""
config
======

YAML configuration for a comparison run.

Example ``config.yml``::

    out_dir: out

    base:
      name: prod
      url: postgresql://db-prod:5432/app
      username: reader
      schema: public

    targets:
      - name: stage
        url: jdbc:postgresql://db-stage:5432/app
        username: reader
      - name: qa
        url: postgresql://db-qa/app
        username: reader
        schema: app

    run:
      workers: 8
      batch_size: 10
      target_timeout: 300
      shutdown_grace: 60

    connection:
      connect_timeout: 10
      statement_timeout: 120

    table_filter:
      include: ["%"]
      exclude: ["tmp_%", "re:^zz_"]
      case_sensitive: false
      exclude_system_tables: true

Precedence
----------
For endpoint fields: environment variable > config file. Environment
variables are named ``SCHEMADIFF_<ENDPOINT>_<FIELD>``, e.g.
``SCHEMADIFF_PROD_PASSWORD``; the endpoint name is upper-cased and every
non-alphanumeric character becomes ``_``.

For run options: CLI flag > config file > default. CLI table patterns are
appended to the configured ones.
"""

from __future__ import annotations

import argparse
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .collectors import TableFilter
from .connection import DEFAULT_CONNECT_TIMEOUT_SECONDS, DEFAULT_STATEMENT_TIMEOUT_SECONDS, ConnectOptions
from .endpoints import DEFAULT_SCHEMA, DatabaseEndpoint
from .errors import ConfigError
from .orchestrator import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
    DEFAULT_TARGET_TIMEOUT_SECONDS,
    DEFAULT_WORKERS,
    RunPolicy,
)
from .utils import safe_name

ENV_PREFIX = "SCHEMADIFF"
ENDPOINT_FIELDS = ("url", "username", "password", "schema")
REQUIRED_FIELDS = ("url", "username")


@dataclass(frozen=True)
class AppConfig:
    """Fully validated settings for one run."""

    base: DatabaseEndpoint
    targets: Tuple[DatabaseEndpoint, ...]
    policy: RunPolicy = field(default_factory=RunPolicy)
    connect: ConnectOptions = field(default_factory=ConnectOptions)
    table_filter: TableFilter = field(default_factory=TableFilter)
    out_dir: Path = Path("out")


def load_config(path: Path) -> Dict[str, Any]:
    """Load a YAML config file; an empty file yields ``{}``."""
    if not path.exists():
        raise ConfigError(f"config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    return data


def deep_get(d: Dict[str, Any], keys: List[str], default: Any = None) -> Any:
    """Safely get nested dict value with default."""
    cur: Any = d
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def env_var_name(endpoint_name: str, field_name: str) -> str:
    token = re.sub(r"[^A-Za-z0-9]+", "_", endpoint_name).strip("_").upper()
    return f"{ENV_PREFIX}_{token}_{field_name.upper()}"


def get_env_var(endpoint_name: str, field_name: str) -> Optional[str]:
    """Return the environment override for one endpoint field, if set."""
    value = os.environ.get(env_var_name(endpoint_name, field_name))
    return value if value else None


def build_endpoint(raw: Any, where: str) -> DatabaseEndpoint:
    """Build an endpoint from its config mapping plus environment overrides.

    Parameters
    ----------
    raw:
        Mapping with ``name``, ``url``, ``username``, ``password``, ``schema``.
    where:
        Config path used in error messages (``base``, ``targets[2]``).

    Raises
    ------
    ConfigError
        If ``raw`` is not a mapping or a required field is missing.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a mapping")
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ConfigError(f"missing {where}.name")

    values: Dict[str, str] = {}
    for key in ENDPOINT_FIELDS:
        value = get_env_var(name, key)
        if value is None and raw.get(key) is not None:
            value = str(raw[key])
        values[key] = value or ""

    for key in REQUIRED_FIELDS:
        if not values[key]:
            raise ConfigError(
                f"missing {where}.{key}. Set it in the config file or via {env_var_name(name, key)}"
            )

    return DatabaseEndpoint(
        name=name,
        url=values["url"],
        username=values["username"],
        password=values["password"],
        schema=values["schema"] or DEFAULT_SCHEMA,
    )


def read_targets(cfg: Dict[str, Any]) -> Tuple[DatabaseEndpoint, ...]:
    raw = cfg.get("targets")
    if not isinstance(raw, list) or not raw:
        raise ConfigError("targets must be a non-empty list")
    targets = tuple(build_endpoint(item, f"targets[{i}]") for i, item in enumerate(raw))
    seen: Dict[str, int] = {}
    files: Dict[str, int] = {}
    for i, target in enumerate(targets):
        if target.name in seen:
            raise ConfigError(f"duplicate target name {target.name!r} (targets[{seen[target.name]}] and targets[{i}])")
        seen[target.name] = i
        # report files are named after safe_name(target.name)
        file_name = safe_name(target.name)
        if file_name in files:
            other = targets[files[file_name]].name
            raise ConfigError(
                f"target names {other!r} and {target.name!r} map to the same report file name {file_name!r} "
                f"(targets[{files[file_name]}] and targets[{i}])"
            )
        files[file_name] = i
    return targets


def _number(value: Any, where: str, kind: type = int) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{where} must be a number, got {value!r}") from exc


def _pick(cli: Any, cfg: Dict[str, Any], keys: List[str], default: Any) -> Any:
    if cli is not None:
        return cli
    return deep_get(cfg, keys, default)


def read_policy(cfg: Dict[str, Any], args: argparse.Namespace) -> RunPolicy:
    """Build the run policy from config and CLI overrides."""
    timeout = _pick(getattr(args, "target_timeout", None), cfg, ["run", "target_timeout"], DEFAULT_TARGET_TIMEOUT_SECONDS)
    return RunPolicy(
        workers=_number(_pick(getattr(args, "workers", None), cfg, ["run", "workers"], DEFAULT_WORKERS), "run.workers"),
        batch_size=_number(
            _pick(getattr(args, "batch_size", None), cfg, ["run", "batch_size"], DEFAULT_BATCH_SIZE), "run.batch_size"
        ),
        target_timeout=None if timeout in (None, 0) else _number(timeout, "run.target_timeout", float),
        shutdown_grace=_number(
            deep_get(cfg, ["run", "shutdown_grace"], DEFAULT_SHUTDOWN_GRACE_SECONDS), "run.shutdown_grace", float
        ),
    )


def read_connect_options(cfg: Dict[str, Any]) -> ConnectOptions:
    statement_timeout = deep_get(cfg, ["connection", "statement_timeout"], DEFAULT_STATEMENT_TIMEOUT_SECONDS)
    return ConnectOptions(
        connect_timeout=_number(
            deep_get(cfg, ["connection", "connect_timeout"], DEFAULT_CONNECT_TIMEOUT_SECONDS),
            "connection.connect_timeout",
        ),
        statement_timeout=None
        if statement_timeout in (None, 0)
        else _number(statement_timeout, "connection.statement_timeout"),
    )


def read_table_filter(cfg: Dict[str, Any], args: argparse.Namespace) -> TableFilter:
    """Config patterns first, then CLI ``--include``/``--exclude`` patterns."""
    include = list(deep_get(cfg, ["table_filter", "include"], []) or []) + list(getattr(args, "include", None) or [])
    exclude = list(deep_get(cfg, ["table_filter", "exclude"], []) or []) + list(getattr(args, "exclude", None) or [])
    return TableFilter(
        include=tuple(include),
        exclude=tuple(exclude),
        case_sensitive=bool(deep_get(cfg, ["table_filter", "case_sensitive"], False)),
        exclude_system_tables=bool(deep_get(cfg, ["table_filter", "exclude_system_tables"], True)),
    )


def read_config(cfg: Dict[str, Any], args: argparse.Namespace) -> AppConfig:
    """Validate a raw config mapping and merge CLI overrides into it."""
    if "base" not in cfg:
        raise ConfigError("missing base endpoint")
    base = build_endpoint(cfg["base"], "base")
    return AppConfig(
        base=base,
        targets=read_targets(cfg),
        policy=read_policy(cfg, args),
        connect=read_connect_options(cfg),
        table_filter=read_table_filter(cfg, args),
        out_dir=Path(getattr(args, "out", None) or cfg.get("out_dir") or "out"),
    )
