"""Rule framework shared by all category scanners.

A rule looks at one ``ScanUnit`` (a file's text plus its role) and yields raw
``Signal`` objects. Rules are immutable and module-level; a ``RuleSet`` is an
ordered collection of them for one category.
"""

import logging
import re
from dataclasses import dataclass
from functools import cached_property
from typing import Iterable, Protocol

from mobaudit.catalog import FileRole
from mobaudit.errors import RuleEvaluationError
from mobaudit.models import Category, Confidence, Finding, Severity

logger = logging.getLogger(__name__)

SNIPPET_LIMIT = 120

ALL_ROLES = frozenset(FileRole)

CODE_ROLES = frozenset({FileRole.SOURCE})

CONFIG_ROLES = frozenset({
    FileRole.PLATFORM_CONFIG,
    FileRole.PROPERTY_CONFIG,
    FileRole.BUILD_CONFIG,
    FileRole.DEPENDENCY_MANIFEST,
})

COMMENT_LINE = re.compile(r"^\s*(?://|/\*|\*|#|<!--)")


@dataclass(frozen=True)
class ScanUnit:
    path: str
    role: FileRole
    text: str

    @cached_property
    def lines(self) -> list[str]:
        return self.text.splitlines()

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def line_of(self, needle: str, start: int = 1) -> int | None:
        """1-based number of the first line at or after ``start`` containing ``needle``."""
        for lineno in range(max(start, 1), len(self.lines) + 1):
            if needle in self.lines[lineno - 1]:
                return lineno
        return None


def redact(value: str) -> str:
    if len(value) <= 8:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 8) + value[-4:]


def make_snippet(line: str, secret_span: tuple[int, int] | None = None) -> str:
    if secret_span is not None:
        start, end = secret_span
        line = line[:start] + redact(line[start:end]) + line[end:]
    snippet = line.strip()
    if len(snippet) > SNIPPET_LIMIT:
        snippet = snippet[: SNIPPET_LIMIT - 3] + "..."
    return snippet


@dataclass(frozen=True)
class Signal:
    """A raw rule hit, before suppression turns it into a ``Finding``."""

    rule_id: str
    category: Category
    severity: Severity
    confidence: Confidence
    path: str
    line: int | None
    snippet: str
    message: str
    remediation: str
    cwe_id: str | None = None
    subject: str = ""
    scope: str = ""
    span: tuple[int, int] | None = None

    def to_finding(self) -> Finding:
        return Finding(
            rule_id=self.rule_id,
            category=self.category,
            severity=self.severity,
            confidence=self.confidence,
            file_path=self.path,
            line_number=self.line,
            matched_snippet=self.snippet,
            message=self.message,
            remediation_hint=self.remediation,
            cwe_id=self.cwe_id,
        )


class Rule(Protocol):
    id: str
    category: Category

    def applies(self, unit: ScanUnit) -> bool:
        """Whether the rule should look at this unit at all."""

    def evaluate(self, unit: ScanUnit) -> Iterable[Signal]:
        """Yield zero or more signals for the unit."""


@dataclass(frozen=True)
class PatternRule:
    """Line-oriented regex rule.

    ``group`` selects the part of the match that becomes the signal's subject
    (the secret value, the host, the storage key). ``unless`` skips matching
    lines, ``unless_file`` skips whole files (for instance when an encryption
    wrapper is in use) and ``when_file`` restricts the rule to files that
    contain a precondition.
    """

    id: str
    category: Category
    title: str
    pattern: re.Pattern
    severity: Severity
    confidence: Confidence
    message: str
    remediation: str
    roles: frozenset = ALL_ROLES
    cwe_id: str | None = None
    group: int | str = 0
    unless: re.Pattern | None = None
    unless_file: re.Pattern | None = None
    when_file: re.Pattern | None = None
    redact: bool = False

    def applies(self, unit: ScanUnit) -> bool:
        if unit.role not in self.roles:
            return False
        if self.when_file is not None and not self.when_file.search(unit.text):
            return False
        if self.unless_file is not None and self.unless_file.search(unit.text):
            return False
        return True

    def evaluate(self, unit: ScanUnit):
        for lineno, line in enumerate(unit.lines, start=1):
            if self.unless is not None and self.unless.search(line):
                continue
            for match in self.pattern.finditer(line):
                signal = self.build_signal(unit, lineno, line, match)
                if signal is not None:
                    yield signal

    def build_signal(self, unit: ScanUnit, lineno: int, line: str, match: re.Match) -> Signal | None:
        if match.group(self.group):
            value, span = match.group(self.group), match.span(self.group)
        else:
            value, span = match.group(0), match.span()
        return Signal(
            rule_id=self.id,
            category=self.category,
            severity=self.severity,
            confidence=self.confidence_for(unit, line, value),
            path=unit.path,
            line=lineno,
            snippet=make_snippet(line, span if self.redact else None),
            message=self.message.replace("{subject}", value),
            remediation=self.remediation,
            cwe_id=self.cwe_id,
            subject=value,
            span=span,
        )

    def confidence_for(self, unit: ScanUnit, line: str, value: str) -> Confidence:
        return self.confidence


def run_rule(rule: Rule, unit: ScanUnit) -> list[Signal]:
    """Evaluate one rule against one unit, wrapping any failure in RuleEvaluationError."""
    try:
        if not rule.applies(unit):
            return []
        return list(rule.evaluate(unit))
    except Exception as exc:
        raise RuleEvaluationError(rule.id, unit.path, exc) from exc


def _overlaps(a: tuple[int, int], b: tuple[int, int]) -> bool:
    return a[0] < b[1] and b[0] < a[1]


class RuleSet:
    """Ordered rules for one category.

    On a given line, a signal whose span overlaps one already produced by an
    earlier rule is dropped, so the most specific rule listed first wins.
    """

    def __init__(self, category: Category, rules: Iterable):
        self.category = category
        self.rules = tuple(rules)

        seen: set[str] = set()
        for rule in self.rules:
            if rule.category is not category:
                raise ValueError(f"Rule {rule.id} belongs to {rule.category.value}, not {category.value}")
            if rule.id in seen:
                raise ValueError(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def ids(self) -> list[str]:
        return [rule.id for rule in self.rules]

    def evaluate(self, unit: ScanUnit) -> list[Signal]:
        signals: list[Signal] = []
        claimed: dict[int, list[tuple[int, int]]] = {}

        for rule in self.rules:
            try:
                produced = run_rule(rule, unit)
            except RuleEvaluationError as exc:
                logger.warning(str(exc))
                continue

            for signal in produced:
                if signal.span is not None and signal.line is not None:
                    spans = claimed.setdefault(signal.line, [])
                    if any(_overlaps(signal.span, other) for other in spans):
                        continue
                    spans.append(signal.span)
                signals.append(signal)

        return signals
