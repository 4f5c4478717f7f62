"""Data models for security scan findings and reports."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class _Ranked(Enum):
    """Enum ordered by an explicit rank, highest first in reports."""

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def __ge__(self, other):
        if self.__class__ is not other.__class__:
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other):
        if self.__class__ is not other.__class__:
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other):
        if self.__class__ is not other.__class__:
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other):
        if self.__class__ is not other.__class__:
            return NotImplemented
        return self.rank < other.rank


class Severity(_Ranked):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Confidence(_Ranked):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


_RANKS = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Confidence.HIGH: 3,
    Confidence.MEDIUM: 2,
    Confidence.LOW: 1,
}


class Category(Enum):
    SECRETS = "Secrets"
    DEPENDENCIES = "Dependencies"
    NETWORK = "Network"
    STORAGE = "Storage"


@dataclass(frozen=True)
class Finding:
    rule_id: str
    category: Category
    severity: Severity
    confidence: Confidence
    file_path: str
    line_number: int | None
    matched_snippet: str
    message: str
    remediation_hint: str
    cwe_id: str | None = None

    @property
    def sort_key(self) -> tuple:
        """Total order used by every report: severity first, then location."""
        return (
            -self.severity.rank,
            self.file_path,
            self.line_number or 0,
            self.rule_id,
            -self.confidence.rank,
            self.message,
            self.matched_snippet,
        )

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "category": self.category.value,
            "severity": self.severity.value,
            "confidence": self.confidence.value,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "matched_snippet": self.matched_snippet,
            "message": self.message,
            "remediation_hint": self.remediation_hint,
            "cwe_id": self.cwe_id,
        }


def sort_findings(findings) -> tuple[Finding, ...]:
    return tuple(sorted(findings, key=lambda f: f.sort_key))


def count_by_severity(findings) -> dict[str, int]:
    counts = {s.value: 0 for s in Severity}
    for f in findings:
        counts[f.severity.value] += 1
    return counts


@dataclass(frozen=True)
class ScanReport:
    category: Category
    ruleset_version: str
    scanned_at: datetime
    scanned_file_count: int
    findings: tuple[Finding, ...] = ()
    skipped_files: tuple[str, ...] = ()
    incomplete: bool = False

    @property
    def summary_counts(self) -> dict[str, int]:
        return count_by_severity(self.findings)

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "ruleset_version": self.ruleset_version,
            "scanned_at": self.scanned_at.isoformat(),
            "scanned_file_count": self.scanned_file_count,
            "incomplete": self.incomplete,
            "skipped_files": list(self.skipped_files),
            "summary": {
                "total": len(self.findings),
                "by_severity": self.summary_counts,
            },
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass(frozen=True)
class CombinedReport:
    """Several category reports reduced into one summary."""

    reports: tuple[ScanReport, ...]
    findings: tuple[Finding, ...] = field(default=())

    @property
    def incomplete(self) -> bool:
        return any(r.incomplete for r in self.reports)

    @property
    def summary_counts(self) -> dict[str, int]:
        return count_by_severity(self.findings)

    @property
    def scanned_at(self) -> datetime | None:
        return max((r.scanned_at for r in self.reports), default=None)
