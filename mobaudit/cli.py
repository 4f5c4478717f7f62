"""Click-based CLI interface for mobaudit."""

import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from mobaudit.audit import EXIT_ERROR, audit, run_scanner
from mobaudit.config import SCANNER_NAMES, load_config
from mobaudit.models import Severity

SEVERITY_CHOICES = [s.value for s in Severity]


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load(ctx, path):
    try:
        return load_config(ctx.obj["config_path"], project_root=path)
    except (FileNotFoundError, ValueError) as exc:
        raise click.UsageError(str(exc)) from exc


@click.group()
@click.version_option(package_name="mobaudit")
@click.option("--config", "config_path", type=click.Path(), default=None,
              help="Path to .mobaudit.yml config file.")
@click.option("--verbose", "-v", is_flag=True, help="Log file-level detail.")
@click.pass_context
def cli(ctx, config_path, verbose):
    """mobaudit - static security scanner for mobile app projects."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    _setup_logging(verbose)


@cli.command()
@click.argument("category", type=click.Choice(SCANNER_NAMES))
@click.argument("path", type=click.Path())
@click.option("--format", "fmt", type=click.Choice(["json", "sarif"]), default="json", show_default=True)
@click.option("--output", "-o", type=str, default=None, help="Write the report to a file instead of stdout.")
@click.option("--fail-on", type=click.Choice(SEVERITY_CHOICES), default=None,
              help="Exit with code 1 if a finding at or above this severity exists.")
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Files evaluated in parallel.")
@click.option("--deadline", type=click.FloatRange(min=0), default=None,
              help="Stop after this many seconds and report partial results.")
@click.pass_context
def scan(ctx, category, path, fmt, output, fail_on, workers, deadline):
    """Run one category scanner over a project directory."""
    config = _load(ctx, path)
    ctx.exit(run_scanner(category, path, output=output, config=config, fail_on=fail_on,
                         fmt=fmt, workers=workers, deadline=deadline))


@cli.command(name="audit")
@click.argument("path", type=click.Path())
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), default="mobaudit-reports",
              show_default=True, help="Directory for <category>.json and summary.json.")
@click.option("--fail-on", type=click.Choice(SEVERITY_CHOICES), default=None,
              help="Exit with code 1 if a finding at or above this severity exists.")
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Files evaluated in parallel per scanner.")
@click.option("--deadline", type=click.FloatRange(min=0), default=None,
              help="Per-scanner time limit in seconds.")
@click.pass_context
def audit_cmd(ctx, path, output_dir, fail_on, workers, deadline):
    """Run every enabled scanner and write one report per category plus a summary."""
    config = _load(ctx, path)
    code = audit(path, output_dir, config=config, fail_on=fail_on, workers=workers, deadline=deadline)
    if code != EXIT_ERROR:
        click.echo(f"Reports written to {output_dir}")
    ctx.exit(code)
