"""Abstract base scanner.

A scanner fans its share of the catalog out over a bounded thread pool. Each
worker evaluates one file and returns a private ``FileResult``; the scanner
merges them, runs project-level checks, applies the suppression policy and
hands the findings to the report builder.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone

from mobaudit import RULESET_VERSION
from mobaudit.catalog import FileCatalog
from mobaudit.config import Config
from mobaudit.errors import FileReadError, ManifestParseError, RuleEvaluationError
from mobaudit.models import Category, Confidence, ScanReport, Severity
from mobaudit.report import build_report
from mobaudit.rules import ALL_ROLES, RuleSet, ScanUnit, Signal
from mobaudit.suppression import SuppressionPolicy

logger = logging.getLogger(__name__)


def default_clock() -> datetime:
    """Current UTC time, or SOURCE_DATE_EPOCH when set for reproducible output."""
    epoch = os.environ.get("SOURCE_DATE_EPOCH", "")
    if epoch.isdigit():
        return datetime.fromtimestamp(int(epoch), tz=timezone.utc)
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass
class FileResult:
    path: str
    signals: list[Signal] = field(default_factory=list)
    # fact name -> (path, line) where it was first seen
    facts: dict[str, tuple[str, int | None]] = field(default_factory=dict)
    skipped: bool = False


def _location_key(location: tuple[str, int | None]) -> tuple[str, int]:
    return location[0], location[1] or 0


class BaseScanner(ABC):
    name: str = "base"
    category: Category
    rule_prefix: str = "GEN"
    roles: frozenset = ALL_ROLES

    def __init__(
        self,
        config: Config | None = None,
        policy: SuppressionPolicy | None = None,
        workers: int | None = None,
        deadline: float | None = None,
        clock=None,
    ):
        self.config = config or Config()
        self.policy = policy or SuppressionPolicy.from_config(self.config)
        self.workers = workers or self.config.workers or os.cpu_count() or 1
        self.deadline = deadline if deadline is not None else self.config.deadline_seconds
        self.clock = clock or default_clock
        self.rules = self.build_rules()

    @abstractmethod
    def build_rules(self) -> RuleSet:
        ...

    def analyze(self, unit: ScanUnit) -> list[Signal]:
        """Structured, file-level analysis. May raise ManifestParseError."""
        return []

    def collect_facts(self, unit: ScanUnit) -> dict[str, int | None]:
        """Project-level facts seen in this file, mapped to the line they were seen on."""
        return {}

    def finalize(self, signals: list[Signal], facts: dict) -> list[Signal]:
        """Project-level pass over the merged, not yet suppressed, signals."""
        return signals

    def catalog_for(self, target) -> FileCatalog:
        if isinstance(target, FileCatalog):
            return target
        return FileCatalog(
            target,
            exclude_patterns=self.config.exclude_patterns,
            max_file_size=self.config.max_file_size,
            respect_gitignore=self.config.respect_gitignore,
        )

    def scan(self, target) -> ScanReport:
        start = time.monotonic()
        catalog = self.catalog_for(target)
        scanned_at = self.clock()

        entries = list(catalog.entries(self.roles))
        results, timed_out = self._run(entries)

        signals: list[Signal] = []
        facts: dict[str, tuple[str, int | None]] = {}
        skipped: list[str] = []
        for result in results:
            signals.extend(result.signals)
            if result.skipped:
                skipped.append(result.path)
            for name, location in result.facts.items():
                if name not in facts or _location_key(location) < _location_key(facts[name]):
                    facts[name] = location

        for rel_dir in catalog.unreadable_dirs:
            skipped.append(rel_dir)
            signals.append(self.informational(rel_dir, "SKIP", "Directory could not be listed"))

        signals = self.finalize(signals, facts)
        kept = self.policy.filter(signals)

        report = build_report(
            category=self.category,
            findings=[s.to_finding() for s in kept],
            scanned_file_count=sum(1 for r in results if not r.skipped),
            skipped_files=skipped,
            incomplete=timed_out or bool(skipped),
            scanned_at=scanned_at,
            ruleset_version=RULESET_VERSION,
        )
        logger.info(
            f"{self.name}: {report.scanned_file_count} file(s), {len(report.findings)} finding(s) "
            f"in {time.monotonic() - start:.2f}s{' (incomplete)' if report.incomplete else ''}"
        )
        return report

    def _run(self, entries) -> tuple[list[FileResult], bool]:
        deadline_at = None if self.deadline is None else time.monotonic() + self.deadline

        if self.workers <= 1 or len(entries) <= 1:
            results = []
            for entry in entries:
                if deadline_at is not None and time.monotonic() >= deadline_at:
                    logger.warning(f"{self.name}: deadline reached after {len(results)} of {len(entries)} file(s)")
                    return results, True
                results.append(self.scan_file(entry))
            return results, False

        results = []
        timed_out = False
        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=f"mobaudit-{self.name}")
        try:
            futures = [pool.submit(self.scan_file, entry) for entry in entries]
            remaining = None if deadline_at is None else max(0.0, deadline_at - time.monotonic())
            try:
                for future in as_completed(futures, timeout=remaining):
                    results.append(future.result())
            except FuturesTimeoutError:
                timed_out = True
                logger.warning(f"{self.name}: deadline reached after {len(results)} of {len(entries)} file(s)")
        finally:
            # queued files are dropped; files already in flight finish before scan() returns
            pool.shutdown(wait=True, cancel_futures=True)
        return results, timed_out

    def scan_file(self, entry) -> FileResult:
        result = FileResult(path=entry.rel_path)
        try:
            text = entry.read_text()
        except FileReadError as exc:
            logger.warning(f"Skipping {exc}")
            result.skipped = True
            result.signals.append(
                self.informational(entry.rel_path, "SKIP", f"File could not be read: {exc.reason}")
            )
            return result

        unit = ScanUnit(path=entry.rel_path, role=entry.role, text=text)
        result.signals.extend(self.rules.evaluate(unit))
        try:
            analyzed = self._analyze_unit(unit)
        except ManifestParseError as exc:
            logger.warning(f"Could not parse {exc}")
            reason = exc.reason
        except RuleEvaluationError as exc:
            logger.warning(str(exc))
            reason = f"analysis failed with {type(exc.cause).__name__}"
        else:
            signals, facts = analyzed
            result.signals.extend(signals)
            for name, line in facts.items():
                result.facts[name] = (unit.path, line)
            return result

        result.skipped = True
        result.signals.append(self.informational(unit.path, "PARSE", f"File could not be parsed: {reason}"))
        return result

    def _analyze_unit(self, unit: ScanUnit) -> tuple[list[Signal], dict[str, int | None]]:
        try:
            return self.analyze(unit), self.collect_facts(unit)
        except ManifestParseError:
            raise
        except Exception as exc:
            raise RuleEvaluationError(f"{self.rule_prefix}-PARSE", unit.path, exc) from exc

    def informational(self, path: str, kind: str, message: str) -> Signal:
        return Signal(
            rule_id=f"{self.rule_prefix}-{kind}",
            category=self.category,
            severity=Severity.LOW,
            confidence=Confidence.HIGH,
            path=path,
            line=None,
            snippet="",
            message=message,
            remediation="Fix the file so it can be analyzed, or exclude it explicitly.",
        )
