"""Dependency manifest risk scanner.

Reads package.json, pubspec.yaml, build.gradle(.kts) and Podfile as plain
declarations; no resolver or package manager is ever run. Each declared
dependency is checked for an open-ended version constraint, for a match in
the advisory denylist, and (when release metadata is supplied) for a stale
exact pin. OSV.dev can optionally be queried for exact pins as well.
"""

import json
import logging
import re
from dataclasses import dataclass

import requests
import yaml
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from mobaudit.catalog import FileRole
from mobaudit.config import load_release_metadata
from mobaudit.errors import ManifestParseError
from mobaudit.models import Category, Confidence, Severity
from mobaudit.rules import RuleSet, ScanUnit, Signal, make_snippet
from mobaudit.scanners.base import BaseScanner

logger = logging.getLogger(__name__)

OSV_API_URL = "https://api.osv.dev/v1/query"

PRODUCTION = "production"
DEVELOPMENT = "development"

OSV_ECOSYSTEMS = {
    "npm": "npm",
    "pub": "Pub",
    "gradle": "Maven",
}

SEVERITY_MAP = {
    "CRITICAL": Severity.CRITICAL,
    "HIGH": Severity.HIGH,
    "MODERATE": Severity.MEDIUM,
    "MEDIUM": Severity.MEDIUM,
    "LOW": Severity.LOW,
}

DEFAULT_DENYLIST: list[dict] = [
    {
        "id": "CVE-2021-0341",
        "ecosystem": "gradle",
        "name": "com.squareup.okhttp3:okhttp",
        "affected": "<4.9.2",
        "severity": "HIGH",
        "summary": "OkHttp hostname verifier accepts certificates for non-ASCII hostnames.",
        "fixed": "4.9.2",
    },
    {
        "id": "CVE-2022-25647",
        "ecosystem": "gradle",
        "name": "com.google.code.gson:gson",
        "affected": "<2.8.9",
        "severity": "HIGH",
        "summary": "Gson deserialization of untrusted data can lead to denial of service.",
        "fixed": "2.8.9",
    },
    {
        "id": "CVE-2020-28052",
        "ecosystem": "gradle",
        "name": "org.bouncycastle:bcprov-jdk15on",
        "affected": ">=1.65,<1.67",
        "severity": "CRITICAL",
        "summary": "Bouncy Castle OpenBSDBcrypt.checkPassword accepts incorrect passwords.",
        "fixed": "1.67",
    },
    {
        "id": "CVE-2020-28168",
        "ecosystem": "npm",
        "name": "axios",
        "affected": "<0.21.1",
        "severity": "MEDIUM",
        "summary": "Axios follows redirects to restricted hosts (server-side request forgery).",
        "fixed": "0.21.1",
    },
    {
        "id": "CVE-2021-23337",
        "ecosystem": "npm",
        "name": "lodash",
        "affected": "<4.17.21",
        "severity": "HIGH",
        "summary": "Lodash template function allows command injection.",
        "fixed": "4.17.21",
    },
    {
        "id": "CVE-2021-44906",
        "ecosystem": "npm",
        "name": "minimist",
        "affected": "<1.2.6",
        "severity": "CRITICAL",
        "summary": "Minimist prototype pollution.",
        "fixed": "1.2.6",
    },
    {
        "id": "CVE-2015-3996",
        "ecosystem": "cocoapods",
        "name": "AFNetworking",
        "affected": "<2.5.3",
        "severity": "HIGH",
        "summary": "AFNetworking does not validate the certificate domain name when pinning is off.",
        "fixed": "2.5.3",
    },
    {
        "id": "CVE-2020-35669",
        "ecosystem": "pub",
        "name": "http",
        "affected": "<0.13.3",
        "severity": "MEDIUM",
        "summary": "Dart http package allows CRLF injection in the HTTP method.",
        "fixed": "0.13.3",
    },
]

GRADLE_CONFIGURATIONS = (
    "implementation|api|compile|compileOnly|runtimeOnly|kapt|ksp|annotationProcessor|classpath|"
    r"\w+Implementation|\w+Api|\w+CompileOnly|\w+RuntimeOnly|testCompile|androidTestCompile"
)

GRADLE_DEPENDENCY = re.compile(
    rf"""^\s*({GRADLE_CONFIGURATIONS})\s*\(?\s*["']([^:"'\s]+):([^:"'\s]+)(?::([^"'\s@]+))?(?:@\w+)?["']"""
)

GRADLE_DEV_CONFIGURATION = re.compile(r"^(?:test|androidTest|debug)")

POD_DEPENDENCY = re.compile(r"""^\s*pod\s+['"]([^'"]+)['"]\s*(?:,\s*['"]([^'"]+)['"])?""")
POD_BLOCK_START = re.compile(r"""^\s*target\s+['"]([^'"]+)['"]\s+do\b|\bdo\b(?:\s*\|[^|]*\|)?\s*$""")
POD_BLOCK_END = re.compile(r"^\s*end\b")

VERSION_NUMBER = re.compile(r"\d+(?:\.\d+)*(?:[-+][0-9A-Za-z.\-]+)?")
EXACT_PIN = re.compile(r"^\s*=*\s*v?\d+(?:\.\d+)*(?:[-+][0-9A-Za-z.\-]+)?\s*$")

NON_REGISTRY_PREFIXES = ("git", "file:", "link:", "http:", "https:", "workspace:", "npm:", "github:", "portal:")

UNBOUNDED = "unbounded"
OPEN = "open"


@dataclass(frozen=True)
class Dependency:
    ecosystem: str
    name: str
    constraint: str | None
    scope: str
    path: str
    line: int | None


@dataclass(frozen=True)
class Advisory:
    id: str
    ecosystem: str
    name: str
    affected: SpecifierSet
    severity: Severity
    summary: str
    fixed: str | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> "Advisory":
        missing = [key for key in ("id", "ecosystem", "name", "affected") if key not in raw]
        if missing:
            raise ValueError(f"Advisory {raw.get('id', '?')} is missing {', '.join(missing)}")
        try:
            affected = SpecifierSet(str(raw["affected"]))
        except InvalidSpecifier as exc:
            raise ValueError(f"Advisory {raw.get('id')} has an invalid 'affected' range") from exc
        severity = str(raw.get("severity", "HIGH")).upper()
        if severity not in SEVERITY_MAP:
            raise ValueError(f"Advisory {raw.get('id')} has an invalid severity '{severity}'")
        return cls(
            id=str(raw["id"]),
            ecosystem=str(raw["ecosystem"]),
            name=str(raw["name"]),
            affected=affected,
            severity=SEVERITY_MAP[severity],
            summary=str(raw.get("summary", "Known vulnerable version.")),
            fixed=str(raw["fixed"]) if raw.get("fixed") else None,
        )


def build_denylist(overrides: list[dict] | None = None) -> list[Advisory]:
    """Built-in advisories, replaced or extended by id from configuration.

    An override with ``disabled: true`` removes the advisory of that id.
    """
    merged: dict[str, dict] = {entry["id"]: entry for entry in DEFAULT_DENYLIST}
    for entry in overrides or []:
        if entry.get("disabled"):
            merged.pop(str(entry["id"]), None)
        else:
            merged[str(entry["id"])] = {**merged.get(str(entry["id"]), {}), **entry}
    return [Advisory.from_dict(raw) for _, raw in sorted(merged.items())]


def _parse_version(text: str) -> Version | None:
    try:
        return Version(text)
    except InvalidVersion:
        return None


def classify_constraint(ecosystem: str, constraint: str | None) -> str | None:
    """Return UNBOUNDED, OPEN (lower bound only) or None for a bounded constraint."""
    if constraint is None:
        return UNBOUNDED
    value = constraint.strip()
    if value.lower() in ("", "*", "x", "any", "latest", "+", "latest.release", "latest.integration"):
        return UNBOUNDED

    if ecosystem == "npm" and "||" in value:
        kinds = [classify_constraint(ecosystem, part) for part in value.split("||")]
        if UNBOUNDED in kinds:
            return UNBOUNDED
        return OPEN if OPEN in kinds else None

    if ecosystem == "gradle":
        if value.endswith("+"):
            return OPEN
        if value.startswith(("[", "(")) and value.rstrip().endswith(",)"):
            return OPEN
        return None

    if value.startswith(">") and "<" not in value:
        return OPEN
    return None


def resolved_version(constraint: str | None) -> tuple[str | None, bool]:
    """Lowest version the constraint admits, and whether it is an exact pin."""
    if not constraint:
        return None, False
    match = VERSION_NUMBER.search(constraint)
    if not match:
        return None, False
    return match.group(0), bool(EXACT_PIN.match(constraint))


def _is_registry_constraint(constraint: str | None) -> bool:
    return constraint is None or not constraint.strip().lower().startswith(NON_REGISTRY_PREFIXES)


def parse_package_json(unit: ScanUnit) -> list[Dependency]:
    try:
        data = json.loads(unit.text)
    except json.JSONDecodeError as exc:
        raise ManifestParseError(unit.path, f"invalid JSON: {exc.msg} (line {exc.lineno})") from exc
    except RecursionError as exc:
        raise ManifestParseError(unit.path, "invalid JSON: nested too deeply") from exc
    if not isinstance(data, dict):
        raise ManifestParseError(unit.path, "top-level value must be an object")

    groups = [
        ("dependencies", PRODUCTION),
        ("peerDependencies", PRODUCTION),
        ("optionalDependencies", PRODUCTION),
        ("devDependencies", DEVELOPMENT),
    ]
    deps = []
    for group, scope in groups:
        entries = data.get(group) or {}
        if not isinstance(entries, dict):
            raise ManifestParseError(unit.path, f"'{group}' must be an object")
        for name, constraint in entries.items():
            constraint = str(constraint) if constraint is not None else None
            if not _is_registry_constraint(constraint):
                continue
            deps.append(Dependency("npm", name, constraint, scope, unit.path, unit.line_of(f'"{name}"')))
    return deps


def parse_pubspec(unit: ScanUnit) -> list[Dependency]:
    try:
        data = yaml.safe_load(unit.text)
    except yaml.YAMLError as exc:
        raise ManifestParseError(unit.path, f"invalid YAML: {exc}") from exc
    if data is None:
        return []
    if not isinstance(data, dict):
        raise ManifestParseError(unit.path, "top-level value must be a mapping")

    deps = []
    for group, scope in (("dependencies", PRODUCTION), ("dev_dependencies", DEVELOPMENT)):
        entries = data.get(group) or {}
        if not isinstance(entries, dict):
            raise ManifestParseError(unit.path, f"'{group}' must be a mapping")
        for name, spec in entries.items():
            if isinstance(spec, dict):
                if "sdk" in spec or "git" in spec or "path" in spec:
                    continue
                spec = spec.get("version")
            constraint = None if spec is None else str(spec)
            deps.append(Dependency("pub", str(name), constraint, scope, unit.path, unit.line_of(f"{name}:")))
    return deps


def parse_gradle(unit: ScanUnit) -> list[Dependency]:
    deps = []
    for lineno, line in enumerate(unit.lines, start=1):
        match = GRADLE_DEPENDENCY.match(line)
        if not match:
            continue
        configuration, group, artifact, version = match.groups()
        if version is None:
            # version supplied by a platform/BOM
            continue
        scope = DEVELOPMENT if GRADLE_DEV_CONFIGURATION.match(configuration) else PRODUCTION
        deps.append(Dependency("gradle", f"{group}:{artifact}", version, scope, unit.path, lineno))
    return deps


def parse_podfile(unit: ScanUnit) -> list[Dependency]:
    deps = []
    # one entry per open do-block: the target name, or None for other blocks
    blocks: list[str | None] = []
    for lineno, line in enumerate(unit.lines, start=1):
        stripped = line.split("#", 1)[0]
        if POD_BLOCK_END.match(stripped):
            if blocks:
                blocks.pop()
            continue
        block = POD_BLOCK_START.search(stripped)
        if block:
            blocks.append(block.group(1))
            continue

        match = POD_DEPENDENCY.match(stripped)
        if not match:
            continue
        if re.search(r":(?:git|path|podspec)\s*=>|(?:git|path|podspec):", stripped):
            continue
        name, constraint = match.groups()
        in_test_target = any(t and re.search(r"Tests?$", t) for t in blocks)
        debug_only = re.search(r"configurations?\s*(?:=>|:)\s*\[?\s*['\"]Debug['\"]\s*\]?", stripped)
        scope = DEVELOPMENT if in_test_target or debug_only else PRODUCTION
        deps.append(Dependency("cocoapods", name, constraint, scope, unit.path, lineno))
    return deps


MANIFEST_PARSERS = {
    "package.json": parse_package_json,
    "pubspec.yaml": parse_pubspec,
    "build.gradle": parse_gradle,
    "build.gradle.kts": parse_gradle,
    "Podfile": parse_podfile,
}


class DependencyScanner(BaseScanner):
    name = "dependencies"
    category = Category.DEPENDENCIES
    rule_prefix = "DEP"
    roles = frozenset({FileRole.DEPENDENCY_MANIFEST})

    def __init__(self, *args, session: requests.Session | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.denylist = build_denylist(self.config.dependency_denylist)
        self.release_metadata = load_release_metadata(self.config.release_metadata)
        self.session = session
        if self.config.osv_lookup and self.session is None:
            self.session = requests.Session()

    def build_rules(self) -> RuleSet:
        # Manifests are parsed structurally in analyze()
        return RuleSet(Category.DEPENDENCIES, [])

    def analyze(self, unit: ScanUnit) -> list[Signal]:
        parser = MANIFEST_PARSERS.get(unit.name)
        if parser is None:
            return []

        signals = []
        for dep in parser(unit):
            signals.extend(self._check_constraint(dep, unit))
            signals.extend(self._check_denylist(dep, unit))
            signals.extend(self._check_staleness(dep, unit))
            if self.config.osv_lookup:
                signals.extend(self._query_osv(dep, unit))
        return signals

    def _signal(self, dep: Dependency, unit: ScanUnit, rule_id: str, severity: Severity,
                confidence: Confidence, message: str, remediation: str,
                cwe_id: str | None = "CWE-1395") -> Signal:
        line = unit.lines[dep.line - 1] if dep.line else f"{dep.name} {dep.constraint or ''}"
        return Signal(
            rule_id=rule_id,
            category=Category.DEPENDENCIES,
            severity=severity,
            confidence=confidence,
            path=dep.path,
            line=dep.line,
            snippet=make_snippet(line),
            message=message,
            remediation=remediation,
            cwe_id=cwe_id,
            subject=f"{dep.name}@{dep.constraint or '*'}",
            scope=dep.scope,
        )

    def _check_constraint(self, dep: Dependency, unit: ScanUnit) -> list[Signal]:
        kind = classify_constraint(dep.ecosystem, dep.constraint)
        if kind is None:
            return []
        if kind == UNBOUNDED:
            severity = Severity.HIGH
            detail = "accepts any version, including future releases"
        else:
            severity = Severity.MEDIUM
            detail = f"'{dep.constraint}' has no upper bound and accepts any future release"
        return [
            self._signal(
                dep, unit, "DEP-001", severity, Confidence.HIGH,
                f"{dep.scope.capitalize()} dependency {dep.name} {detail}.",
                "Pin an exact version or a bounded range and commit the lockfile.",
                cwe_id="CWE-1104",
            )
        ]

    def _check_denylist(self, dep: Dependency, unit: ScanUnit) -> list[Signal]:
        version_text, exact = resolved_version(dep.constraint)
        if version_text is None:
            return []
        version = _parse_version(version_text)
        if version is None:
            logger.debug(f"Cannot compare version '{version_text}' of {dep.name}")
            return []

        signals = []
        for advisory in self.denylist:
            if advisory.ecosystem != dep.ecosystem or advisory.name.lower() != dep.name.lower():
                continue
            if not advisory.affected.contains(version, prereleases=True):
                continue
            fix_text = f" Fixed in {advisory.fixed}." if advisory.fixed else ""
            pinned = "pins" if exact else "allows"
            signals.append(
                self._signal(
                    dep, unit, "DEP-002", advisory.severity,
                    Confidence.HIGH if exact else Confidence.MEDIUM,
                    f"{advisory.id}: {dep.name} {pinned} vulnerable version {version_text}. {advisory.summary}",
                    f"Upgrade {dep.name} to a patched version.{fix_text}",
                )
            )
        return signals

    def _check_staleness(self, dep: Dependency, unit: ScanUnit) -> list[Signal]:
        releases = self.release_metadata.get((dep.ecosystem, dep.name))
        if not releases:
            return []
        version_text, exact = resolved_version(dep.constraint)
        if not exact or version_text not in releases:
            return []

        pinned = _parse_version(version_text)
        newer = [
            v for v in releases
            if pinned is not None and (parsed := _parse_version(v)) is not None and parsed > pinned
        ]
        if not newer:
            return []

        age_days = (self.clock().date() - releases[version_text]).days
        if age_days <= self.config.stale_after_days:
            return []
        latest = max(newer, key=Version)
        return [
            self._signal(
                dep, unit, "DEP-003", Severity.LOW, Confidence.HIGH,
                f"{dep.name} is pinned to {version_text}, released {age_days} days ago; {latest} is available.",
                f"Upgrade {dep.name} to {latest} and review its changelog.",
            )
        ]

    def _query_osv(self, dep: Dependency, unit: ScanUnit) -> list[Signal]:
        ecosystem = OSV_ECOSYSTEMS.get(dep.ecosystem)
        version_text, exact = resolved_version(dep.constraint)
        if ecosystem is None or not exact:
            return []

        payload = {
            "version": version_text,
            "package": {"name": dep.name, "ecosystem": ecosystem},
        }
        try:
            resp = self.session.post(OSV_API_URL, json=payload, timeout=15)
            resp.raise_for_status()
            vulns = resp.json().get("vulns") or []
        except (requests.RequestException, ValueError, AttributeError) as exc:
            logger.warning(f"OSV lookup failed for {dep.name}=={version_text}: {exc}")
            return []

        signals = []
        for vuln in vulns:
            if not isinstance(vuln, dict):
                continue
            vuln_id = vuln.get("id", "unknown")
            summary = vuln.get("summary", "No description available.")

            severity = Severity.MEDIUM
            db_severity = (vuln.get("database_specific") or {}).get("severity")
            if isinstance(db_severity, str) and db_severity.upper() in SEVERITY_MAP:
                severity = SEVERITY_MAP[db_severity.upper()]

            fix_versions = []
            for affected in vuln.get("affected", []):
                for r in affected.get("ranges", []):
                    for event in r.get("events", []):
                        if "fixed" in event:
                            fix_versions.append(event["fixed"])
            fix_text = f" Fix available in: {', '.join(fix_versions)}." if fix_versions else ""

            signals.append(
                self._signal(
                    dep, unit, "DEP-004", severity, Confidence.HIGH,
                    f"{vuln_id}: {dep.name}=={version_text}. {summary}",
                    f"Upgrade {dep.name} to a patched version.{fix_text}",
                )
            )
        return signals
