"""Report aggregation and JSON serialization."""

import json
from datetime import datetime
from pathlib import Path

from mobaudit import RULESET_VERSION, __version__
from mobaudit.models import (
    Category,
    CombinedReport,
    Finding,
    ScanReport,
    Severity,
    sort_findings,
)

REPORT_SCHEMA_ID = "mobaudit-report-v1"
SUMMARY_SCHEMA_ID = "mobaudit-summary-v1"

_FINDING_SCHEMA = {
    "type": "object",
    "required": [
        "rule_id", "category", "severity", "confidence", "file_path",
        "line_number", "matched_snippet", "message", "remediation_hint", "cwe_id",
    ],
    "properties": {
        "rule_id": {"type": "string"},
        "category": {"enum": [c.value for c in Category]},
        "severity": {"enum": [s.value for s in Severity]},
        "confidence": {"enum": ["HIGH", "MEDIUM", "LOW"]},
        "file_path": {"type": "string"},
        "line_number": {"type": ["integer", "null"]},
        "matched_snippet": {"type": "string"},
        "message": {"type": "string"},
        "remediation_hint": {"type": "string"},
        "cwe_id": {"type": ["string", "null"]},
    },
}

# JSON Schema (draft 2020-12) of the per-category document, published for
# downstream consumers such as pre-commit gates.
REPORT_SCHEMA = {
    "$id": REPORT_SCHEMA_ID,
    "type": "object",
    "required": [
        "$schema", "tool", "category", "scanned_at", "scanned_file_count",
        "incomplete", "skipped_files", "summary", "findings",
    ],
    "properties": {
        "$schema": {"const": REPORT_SCHEMA_ID},
        "tool": {
            "type": "object",
            "required": ["name", "version", "ruleset_version"],
        },
        "category": {"enum": [c.value for c in Category]},
        "scanned_at": {"type": "string", "format": "date-time"},
        "scanned_file_count": {"type": "integer", "minimum": 0},
        "incomplete": {"type": "boolean"},
        "skipped_files": {"type": "array", "items": {"type": "string"}},
        "summary": {
            "type": "object",
            "required": ["total", "by_severity"],
        },
        "findings": {"type": "array", "items": _FINDING_SCHEMA},
    },
}


def build_report(
    category: Category,
    findings: list[Finding],
    scanned_file_count: int,
    scanned_at: datetime,
    skipped_files=(),
    incomplete: bool = False,
    ruleset_version: str = RULESET_VERSION,
) -> ScanReport:
    """Freeze one scanner's findings into a sorted report."""
    for f in findings:
        if f.category is not category:
            raise ValueError(f"Finding {f.rule_id} is {f.category.value}, report is {category.value}")
    return ScanReport(
        category=category,
        ruleset_version=ruleset_version,
        scanned_at=scanned_at,
        scanned_file_count=scanned_file_count,
        findings=sort_findings(findings),
        skipped_files=tuple(sorted(set(skipped_files))),
        incomplete=incomplete,
    )


def merge_reports(reports: list[ScanReport]) -> CombinedReport:
    """Concatenate and re-sort. Suppression and deduplication are not repeated."""
    ordered = tuple(sorted(reports, key=lambda r: r.category.value))
    findings = [f for r in ordered for f in r.findings]
    return CombinedReport(reports=ordered, findings=sort_findings(findings))


def _tool(ruleset_version: str) -> dict:
    return {"name": "mobaudit", "version": __version__, "ruleset_version": ruleset_version}


def report_to_document(report: ScanReport) -> dict:
    data = report.to_dict()
    return {
        "$schema": REPORT_SCHEMA_ID,
        "tool": _tool(data.pop("ruleset_version")),
        **data,
    }


def render_json(report: ScanReport) -> str:
    return json.dumps(report_to_document(report), indent=2) + "\n"


def render_summary_json(combined: CombinedReport) -> str:
    scanned_at = combined.scanned_at
    output = {
        "$schema": SUMMARY_SCHEMA_ID,
        "tool": _tool(combined.reports[0].ruleset_version if combined.reports else RULESET_VERSION),
        "scanned_at": scanned_at.isoformat() if scanned_at else None,
        "incomplete": combined.incomplete,
        "categories": [
            {
                "category": r.category.value,
                "scanned_file_count": r.scanned_file_count,
                "incomplete": r.incomplete,
                "skipped_files": list(r.skipped_files),
                "by_severity": r.summary_counts,
            }
            for r in combined.reports
        ],
        "summary": {
            "total": len(combined.findings),
            "by_severity": combined.summary_counts,
        },
        "findings": [f.to_dict() for f in combined.findings],
    }
    return json.dumps(output, indent=2) + "\n"


def write_report(text: str, output: str | Path) -> Path:
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def exceeds_threshold(findings, threshold: Severity | None) -> bool:
    if threshold is None:
        return False
    return any(f.severity >= threshold for f in findings)
