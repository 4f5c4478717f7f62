"""Entry points that run one scanner or the full audit over a project tree.

These functions carry the exit-status contract used by the CLI and by
pre-commit style callers: 0 when the scan completed (findings or not), 1 when
``fail_on`` is set and a finding at or above it exists, 2 when the scan root,
the configuration or the report destination is unusable.
"""

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from mobaudit.catalog import FileCatalog
from mobaudit.config import Config
from mobaudit.errors import PathError
from mobaudit.formatters.sarif import render_sarif
from mobaudit.models import CombinedReport, Severity
from mobaudit.report import (
    exceeds_threshold,
    merge_reports,
    render_json,
    render_summary_json,
    write_report,
)
from mobaudit.scanners import SCANNERS, BaseScanner
from mobaudit.suppression import SuppressionPolicy

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2

SUMMARY_FILENAME = "summary.json"


def _severity(value) -> Severity | None:
    if value is None or isinstance(value, Severity):
        return value
    return Severity(str(value).upper())


def build_scanner(
    name: str,
    config: Config | None = None,
    policy: SuppressionPolicy | None = None,
    workers: int | None = None,
    deadline: float | None = None,
    clock=None,
) -> BaseScanner:
    if name not in SCANNERS:
        raise ValueError(f"Unknown scanner '{name}'. Choose from: {', '.join(SCANNERS)}")
    config = config or Config()
    return SCANNERS[name](config=config, policy=policy, workers=workers, deadline=deadline, clock=clock)


def catalog_for(root, config: Config) -> FileCatalog:
    return FileCatalog(
        root,
        exclude_patterns=config.exclude_patterns,
        max_file_size=config.max_file_size,
        respect_gitignore=config.respect_gitignore,
    )


def run_scanner(
    name: str,
    root,
    output: str | Path | None = None,
    config: Config | None = None,
    fail_on: Severity | str | None = None,
    fmt: str = "json",
    workers: int | None = None,
    deadline: float | None = None,
    clock=None,
) -> int:
    """Scan one category and write its report to ``output`` (stdout when None)."""
    config = config or Config()
    threshold = _severity(fail_on) if fail_on is not None else config.fail_on_severity

    try:
        scanner = build_scanner(name, config, workers=workers, deadline=deadline, clock=clock)
    except ValueError as exc:
        logger.error(f"Invalid configuration: {exc}")
        return EXIT_ERROR

    try:
        report = scanner.scan(catalog_for(root, config))
    except PathError as exc:
        logger.error(str(exc))
        return EXIT_ERROR

    text = render_sarif(report) if fmt == "sarif" else render_json(report)
    if output is None:
        sys.stdout.write(text)
    else:
        try:
            write_report(text, output)
        except OSError as exc:
            logger.error(f"Cannot write report to {output}: {exc}")
            return EXIT_ERROR
        logger.info(f"Report written to {output}")

    return EXIT_FINDINGS if exceeds_threshold(report.findings, threshold) else EXIT_OK


def run_audit(root, config: Config | None = None, workers=None, deadline=None, clock=None) -> CombinedReport:
    """Run every enabled scanner concurrently over one shared catalog.

    The catalog is read-only after construction and the suppression policy is
    stateless, so both are shared by all scanners. Raises PathError for an
    unusable root and ValueError when a scanner rejects the configuration.
    """
    config = config or Config()
    catalog = catalog_for(root, config)
    policy = SuppressionPolicy.from_config(config)
    scanners = [
        build_scanner(name, config, policy=policy, workers=workers, deadline=deadline, clock=clock)
        for name in config.enabled_scanners
    ]

    with ThreadPoolExecutor(max_workers=max(len(scanners), 1), thread_name_prefix="mobaudit") as pool:
        reports = list(pool.map(lambda scanner: scanner.scan(catalog), scanners))
    return merge_reports(reports)


def audit(
    root,
    output_dir: str | Path,
    config: Config | None = None,
    fail_on: Severity | str | None = None,
    workers: int | None = None,
    deadline: float | None = None,
    clock=None,
) -> int:
    """Run the full audit and write ``<category>.json`` files plus ``summary.json``."""
    config = config or Config()
    threshold = _severity(fail_on) if fail_on is not None else config.fail_on_severity

    try:
        combined = run_audit(root, config, workers=workers, deadline=deadline, clock=clock)
    except PathError as exc:
        logger.error(str(exc))
        return EXIT_ERROR
    except ValueError as exc:
        logger.error(f"Invalid configuration: {exc}")
        return EXIT_ERROR

    output_dir = Path(output_dir)
    try:
        for report in combined.reports:
            write_report(render_json(report), output_dir / f"{report.category.value.lower()}.json")
        write_report(render_summary_json(combined), output_dir / SUMMARY_FILENAME)
    except OSError as exc:
        logger.error(f"Cannot write reports to {output_dir}: {exc}")
        return EXIT_ERROR

    logger.info(f"{len(combined.findings)} finding(s) written to {output_dir}")
    return EXIT_FINDINGS if exceeds_threshold(combined.findings, threshold) else EXIT_OK
