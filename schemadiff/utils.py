"""
utils
=====

Small, shared utilities used across the codebase.

This module contains only low-level helpers that are safe to import from
anywhere (no database calls, no heavy imports).

Functions
---------
- :func:`safe_name`:
  Convert an arbitrary identifier (endpoint or table name) into a
  filesystem-safe filename component.
- :func:`write_text`, :func:`write_json`:
  Write report files as UTF-8, creating parent directories.
- :func:`rel_link`, :func:`md_anchor`:
  Link helpers for ``SUMMARY.md``.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any


def safe_name(value: str) -> str:
    """Return a filesystem-safe version of *value*.

    Used for naming per-target report files consistently across modules.

    Parameters
    ----------
    value:
        The input string to sanitize (e.g., an endpoint name).

    Returns
    -------
    str
        A sanitized string containing only ``[A-Za-z0-9._-]`` plus underscores,
        with surrounding underscores removed. Returns ``"unnamed"`` if the
        result would otherwise be empty.

    Examples
    --------
    >>> safe_name("prod eu/1")
    'prod_eu_1'
    >>> safe_name("")
    'unnamed'
    """
    out = re.sub(r"[^A-Za-z0-9._-]+", "_", value).strip("_")
    return out or "unnamed"


def write_text(path: Path, content: str) -> Path:
    """Write *content* as UTF-8 with ``\\n`` newlines and a final newline.

    Parent directories are created as needed. Returns *path*.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    if content and not content.endswith("\n"):
        content += "\n"
    path.write_text(content, encoding="utf-8")
    return path


def write_json(path: Path, payload: Any) -> Path:
    """Write *payload* as indented JSON; non-ASCII names are kept as is."""
    return write_text(path, json.dumps(payload, indent=2, ensure_ascii=False))


def rel_link(from_file: Path, to_file: Path) -> str:
    """Relative link from *from_file* to *to_file*, always with ``/`` separators."""
    return os.path.relpath(to_file, start=from_file.parent).replace(os.sep, "/")


def md_anchor(title: str) -> str:
    """Approximate GitHub anchor for a Markdown heading.

    >>> md_anchor("Critical (3)")
    'critical-3'
    """
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
