"""
reporting
=========

Markdown summary and JSON report generation.

This module turns a :class:`~schemadiff.orchestrator.RunReport` into files
under the output directory:

- ``targets/<base>_vs_<target>.json``: one file per target
- ``SUMMARY.md``: overview with links to the JSON files

Renderers only format the fields of :class:`~schemadiff.differences.Difference`;
they never re-derive difference semantics.

Primary API
-----------
- :func:`write_reports`
- :func:`generate_summary_md`

"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

from .differences import Difference, Severity
from .orchestrator import RunReport, RunResult
from .utils import md_anchor, rel_link, safe_name, write_json, write_text

PROBLEM_TARGET_LIMIT = 10


def _md_cell(value: str) -> str:
    return value.replace("|", "\\|").replace("\n", " ")


def format_difference(diff: Difference) -> str:
    """One-line console rendering: ``table.item - description``."""
    text = diff.qualified_item
    if diff.description:
        text += f" - {diff.description}"
    return text


def target_report_path(out_dir: Path, report: RunReport, result: RunResult) -> Path:
    name = f"{safe_name(report.base.name)}_vs_{safe_name(result.endpoint.name)}.json"
    return out_dir / "targets" / name


def target_payload(report: RunReport, result: RunResult) -> Dict[str, Any]:
    """JSON-ready description of one target's outcome."""
    return {
        "base": {
            "name": report.base.name,
            "display_name": report.base.display_name,
            "schema": report.base.schema,
        },
        "target": {
            "name": result.endpoint.name,
            "display_name": result.endpoint.display_name,
            "schema": result.endpoint.schema,
        },
        "success": result.success,
        "error": result.error_message or None,
        "duration_seconds": round(result.duration, 3),
        "difference_count": result.difference_count,
        "differences": [d.to_dict() for d in result.differences],
    }


def write_target_json(out_dir: Path, report: RunReport, result: RunResult) -> Path:
    return write_json(target_report_path(out_dir, report, result), target_payload(report, result))


def _severity_line(counts: Dict[Severity, int]) -> str:
    return ", ".join(f"{s.value}: {counts.get(s, 0)}" for s in Severity)


def generate_summary_md(out_dir: Path, report: RunReport) -> Path:
    """Generate a Markdown summary linking to the per-target JSON files.

    Parameters
    ----------
    out_dir:
        Output directory where ``SUMMARY.md`` is written.
    report:
        Finished run.

    Returns
    -------
    pathlib.Path
        The path to the generated ``SUMMARY.md``.

    Notes
    -----
    Links are written as *relative* paths so the whole output directory can be
    moved or archived while preserving navigation.
    """
    summary_path = out_dir / "SUMMARY.md"
    summary = report.summary

    lines: List[str] = []
    lines.append("# Schema Diff Summary\n\n")
    lines.append(f"_Generated: {report.finished_at.strftime('%Y-%m-%d %H:%M:%S %Z')}_\n\n")
    lines.append(f"- Base: `{report.base.display_name}` (schema `{report.base.schema}`)\n")
    lines.append(f"- Base tables: {len(report.base_snapshot.tables)}\n")
    lines.append(f"- Targets: {summary.total} (succeeded: {summary.success_count}, failed: {summary.failure_count})\n")
    lines.append(f"- Differences: {summary.difference_count} ({_severity_line(summary.severity_counts)})\n\n")

    sections = ["Overview", "Problem targets", "Failed targets"] + [r.endpoint.name for r in report.results]
    lines.append("## Contents\n")
    for title in sections:
        lines.append(f"- [{title}](#{md_anchor(title)})\n")
    lines.append("\n")

    lines.append("## Overview\n\n")
    lines.append("| Target | Schema | Status | Differences | Report |\n")
    lines.append("|---|---|---|---|---|\n")
    for r in report.results:
        link = rel_link(summary_path, target_report_path(out_dir, report, r))
        status = "ok" if r.success else "FAILED"
        count = str(r.difference_count) if r.success else "n/a"
        lines.append(f"| {_md_cell(r.endpoint.display_name)} | {r.endpoint.schema} | {status} | {count} | [json]({link}) |\n")
    lines.append("\n")

    lines.append("## Problem targets\n\n")
    if not summary.problem_targets:
        lines.append("- ✅ No differences\n")
    for r in summary.problem_targets[:PROBLEM_TARGET_LIMIT]:
        lines.append(f"- {r.endpoint.display_name}: {r.difference_count} difference(s)\n")
    lines.append("\n")

    lines.append("## Failed targets\n\n")
    if not summary.failed_targets:
        lines.append("- None\n")
    for r in summary.failed_targets:
        lines.append(f"- {r.endpoint.display_name}: `{_md_cell(r.error_message)}`\n")
    lines.append("\n")

    for r in report.results:
        lines.append(f"## {r.endpoint.name}\n\n")
        if not r.success:
            lines.append(f"- ❌ Comparison failed: `{_md_cell(r.error_message)}`\n\n")
            continue
        if not r.differences:
            lines.append("- ✅ No differences\n\n")
            continue
        for severity in Severity:
            diffs = [d for d in r.differences if d.severity is severity]
            if not diffs:
                continue
            lines.append(f"### {severity.value} ({len(diffs)})\n\n")
            for d in diffs:
                lines.append(f"- **{d.kind.label}** `{d.qualified_item}`: {_md_cell(d.description)}\n")
            lines.append("\n")

    write_text(summary_path, "".join(lines))
    return summary_path


def write_reports(out_dir: Path, report: RunReport) -> Path:
    """Write every per-target JSON file plus ``SUMMARY.md``; return the summary path."""
    for result in report.results:
        write_target_json(out_dir, report, result)
    return generate_summary_md(out_dir, report)
