"""Configuration file support for mobaudit (.mobaudit.yml)."""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path

import yaml

from mobaudit.catalog import DEFAULT_MAX_FILE_SIZE
from mobaudit.models import Severity
from mobaudit.scoring import DEFAULT_ENTROPY_THRESHOLD
from mobaudit.suppression import HostAllowlist, entry_from_dict

DEFAULT_CONFIG_NAME = ".mobaudit.yml"

SCANNER_NAMES = ["secrets", "dependencies", "network", "storage"]


@dataclass
class Config:
    """mobaudit configuration loaded from .mobaudit.yml."""

    enabled_scanners: list[str] = field(default_factory=lambda: list(SCANNER_NAMES))
    fail_on: str | None = None
    exclude_patterns: list[str] = field(default_factory=list)
    respect_gitignore: bool = True
    custom_secret_patterns: list[dict] = field(default_factory=list)
    entropy_threshold: float = DEFAULT_ENTROPY_THRESHOLD
    placeholder_patterns: list[str] = field(default_factory=list)
    allowed_hosts: list[str] = field(default_factory=list)
    suppressions: list[dict] = field(default_factory=list)
    dependency_denylist: list[dict] = field(default_factory=list)
    release_metadata: str | None = None
    stale_after_days: int = 730
    osv_lookup: bool = False
    workers: int | None = None
    deadline_seconds: float | None = None
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    @property
    def fail_on_severity(self) -> Severity | None:
        return Severity(self.fail_on) if self.fail_on else None


def load_config(config_path: str | None = None, project_root: str | None = None) -> Config:
    """Load configuration from a YAML file.

    Priority: explicit --config path > .mobaudit.yml in project root > defaults.
    """
    path = None

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    elif project_root:
        candidate = Path(project_root) / DEFAULT_CONFIG_NAME
        if candidate.exists():
            path = candidate

    if path is None:
        return Config()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if raw is None:
        return Config()
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must be a YAML mapping, got {type(raw).__name__}")

    config = _parse_config(raw)
    if config.release_metadata and not Path(config.release_metadata).is_absolute():
        config.release_metadata = str(path.parent / config.release_metadata)
    load_release_metadata(config.release_metadata)
    return config


def _list_of_strings(raw: dict, key: str) -> list[str]:
    value = raw[key]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings")
    return value


def _list_of_mappings(raw: dict, key: str) -> list[dict]:
    value = raw[key]
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise ValueError(f"{key} must be a list of mappings")
    return value


def _parse_config(raw: dict) -> Config:
    """Parse and validate raw YAML dict into a Config object."""
    config = Config()

    if "enabled_scanners" in raw:
        scanners = _list_of_strings(raw, "enabled_scanners")
        unknown = [s for s in scanners if s not in SCANNER_NAMES]
        if unknown:
            raise ValueError(f"enabled_scanners contains unknown scanner(s): {', '.join(unknown)}")
        config.enabled_scanners = scanners

    if "fail_on" in raw and raw["fail_on"] is not None:
        sev = str(raw["fail_on"]).upper()
        valid = {s.value for s in Severity}
        if sev not in valid:
            raise ValueError(f"fail_on must be one of {sorted(valid)}, got '{raw['fail_on']}'")
        config.fail_on = sev

    if "exclude_patterns" in raw:
        config.exclude_patterns = _list_of_strings(raw, "exclude_patterns")

    if "respect_gitignore" in raw:
        if not isinstance(raw["respect_gitignore"], bool):
            raise ValueError("respect_gitignore must be a boolean")
        config.respect_gitignore = raw["respect_gitignore"]

    if "custom_secret_patterns" in raw:
        patterns = _list_of_mappings(raw, "custom_secret_patterns")
        for p in patterns:
            if "name" not in p or "pattern" not in p:
                raise ValueError("custom_secret_patterns entries need 'name' and 'pattern'")
            try:
                re.compile(p["pattern"])
            except re.error as exc:
                raise ValueError(f"Invalid custom secret pattern {p['name']!r}: {exc}") from exc
            if "severity" in p and str(p["severity"]).upper() not in {s.value for s in Severity}:
                raise ValueError(f"Invalid severity for custom secret pattern {p['name']!r}")
        config.custom_secret_patterns = patterns

    if "entropy_threshold" in raw:
        val = raw["entropy_threshold"]
        if isinstance(val, bool) or not isinstance(val, (int, float)):
            raise ValueError("entropy_threshold must be a number")
        config.entropy_threshold = float(val)

    if "placeholder_patterns" in raw:
        patterns = _list_of_strings(raw, "placeholder_patterns")
        for p in patterns:
            try:
                re.compile(p)
            except re.error as exc:
                raise ValueError(f"Invalid placeholder pattern {p!r}: {exc}") from exc
        config.placeholder_patterns = patterns

    if "allowed_hosts" in raw:
        hosts = _list_of_strings(raw, "allowed_hosts")
        HostAllowlist(hosts)
        config.allowed_hosts = hosts

    if "suppressions" in raw:
        entries = _list_of_mappings(raw, "suppressions")
        for entry in entries:
            entry_from_dict(entry)
        config.suppressions = entries

    if "dependency_denylist" in raw:
        entries = _list_of_mappings(raw, "dependency_denylist")
        for entry in entries:
            if "id" not in entry:
                raise ValueError("dependency_denylist entries need an 'id'")
        config.dependency_denylist = entries

    if "release_metadata" in raw:
        val = raw["release_metadata"]
        if val is not None and not isinstance(val, str):
            raise ValueError("release_metadata must be a path")
        config.release_metadata = val

    if "stale_after_days" in raw:
        val = raw["stale_after_days"]
        if isinstance(val, bool) or not isinstance(val, int) or val < 0:
            raise ValueError("stale_after_days must be a non-negative integer")
        config.stale_after_days = val

    if "osv_lookup" in raw:
        if not isinstance(raw["osv_lookup"], bool):
            raise ValueError("osv_lookup must be a boolean")
        config.osv_lookup = raw["osv_lookup"]

    if "workers" in raw and raw["workers"] is not None:
        val = raw["workers"]
        if isinstance(val, bool) or not isinstance(val, int) or val < 1:
            raise ValueError("workers must be a positive integer")
        config.workers = val

    if "deadline_seconds" in raw and raw["deadline_seconds"] is not None:
        val = raw["deadline_seconds"]
        if isinstance(val, bool) or not isinstance(val, (int, float)) or val <= 0:
            raise ValueError("deadline_seconds must be a positive number")
        config.deadline_seconds = float(val)

    if "max_file_size" in raw:
        val = raw["max_file_size"]
        if isinstance(val, bool) or not isinstance(val, int) or val < 1:
            raise ValueError("max_file_size must be a positive integer")
        config.max_file_size = val

    return config


def _release_date(value, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValueError(f"Invalid release date for {label}: {value!r}")


def load_release_metadata(path: str | None) -> dict[tuple[str, str], dict[str, date]]:
    """Load ``{ecosystem: {package: {version: release date}}}`` from YAML or JSON.

    Raises ValueError when the file is missing, unparsable, or holds anything
    other than ISO dates at the version level.
    """
    if not path:
        return {}
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ValueError(f"Cannot load release metadata from {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"Release metadata in {path} must be a mapping")

    metadata = {}
    for ecosystem, packages in raw.items():
        if packages is None:
            continue
        if not isinstance(packages, dict):
            raise ValueError(f"Release metadata for '{ecosystem}' in {path} must map packages to releases")
        for name, releases in packages.items():
            if releases is None:
                continue
            if not isinstance(releases, dict):
                raise ValueError(f"Release metadata for {ecosystem}/{name} in {path} must map versions to dates")
            metadata[(str(ecosystem), str(name))] = {
                str(version): _release_date(released, f"{ecosystem}/{name} {version}")
                for version, released in releases.items()
            }
    return metadata
