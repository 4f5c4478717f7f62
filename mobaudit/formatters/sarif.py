"""SARIF v2.1.0 output formatter for mobaudit findings."""

import json

from mobaudit import __version__
from mobaudit.models import CombinedReport, Finding, ScanReport, Severity

SARIF_SCHEMA = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/main/sarif-2.1/schema/sarif-schema-2.1.0.json"

SEVERITY_TO_SARIF_LEVEL = {
    Severity.CRITICAL: "error",
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "note",
}

# CWE taxonomy reference
CWE_TAXONOMY = {
    "name": "CWE",
    "organization": "MITRE",
    "shortDescription": {"text": "Common Weakness Enumeration"},
    "informationUri": "https://cwe.mitre.org/",
}


def _location(finding: Finding) -> dict:
    physical = {"artifactLocation": {"uri": finding.file_path}}
    if finding.line_number:
        physical["region"] = {"startLine": finding.line_number}
        if finding.matched_snippet:
            physical["region"]["snippet"] = {"text": finding.matched_snippet}
    return {"physicalLocation": physical}


def render_sarif(report: ScanReport | CombinedReport) -> str:
    """Render a category report or a combined report as SARIF v2.1.0 JSON.

    The output carries no wall-clock data so that it is as reproducible as
    the JSON reports; the scan time is recorded in the run properties.
    """
    findings = list(report.findings)

    rules_map: dict[str, dict] = {}
    for f in findings:
        if f.rule_id in rules_map:
            continue
        rule = {
            "id": f.rule_id,
            "shortDescription": {"text": f.message},
            "defaultConfiguration": {"level": SEVERITY_TO_SARIF_LEVEL[f.severity]},
            "help": {
                "text": f.remediation_hint,
                "markdown": f"**Remediation:** {f.remediation_hint}",
            },
            "properties": {"tags": ["security", f.category.value.lower()]},
        }
        if f.cwe_id:
            rule["properties"]["tags"].append(f.cwe_id)
            rule["relationships"] = [
                {
                    "target": {"id": f.cwe_id, "toolComponent": {"name": "CWE"}},
                    "kinds": ["superset"],
                }
            ]
        rules_map[f.rule_id] = rule

    sarif_results = []
    for f in findings:
        sarif_result = {
            "ruleId": f.rule_id,
            "level": SEVERITY_TO_SARIF_LEVEL[f.severity],
            "message": {"text": f.message},
            "locations": [_location(f)],
            "properties": {
                "severity": f.severity.value,
                "confidence": f.confidence.value,
                "category": f.category.value,
            },
        }
        if f.cwe_id:
            sarif_result["taxa"] = [{"id": f.cwe_id, "toolComponent": {"name": "CWE"}}]
        sarif_results.append(sarif_result)

    cwe_taxa = [
        {"id": cwe, "shortDescription": {"text": cwe}}
        for cwe in sorted({f.cwe_id for f in findings if f.cwe_id})
    ]

    scanned_at = report.scanned_at
    sarif = {
        "$schema": SARIF_SCHEMA,
        "version": "2.1.0",
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "mobaudit",
                        "version": __version__,
                        "rules": [rules_map[rule_id] for rule_id in sorted(rules_map)],
                    }
                },
                "results": sarif_results,
                "taxonomies": [{**CWE_TAXONOMY, "taxa": cwe_taxa}] if cwe_taxa else [],
                "invocations": [
                    {
                        "executionSuccessful": not report.incomplete,
                        "properties": {"scannedAt": scanned_at.isoformat() if scanned_at else None},
                    }
                ],
            }
        ],
    }

    return json.dumps(sarif, indent=2) + "\n"
