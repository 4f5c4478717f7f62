"""Hardcoded secret and credential detection scanner."""

import plistlib
import re
from dataclasses import dataclass

from mobaudit.catalog import FileRole
from mobaudit.models import Category, Confidence, Severity
from mobaudit.rules import (
    ALL_ROLES,
    CONFIG_ROLES,
    PatternRule,
    RuleSet,
    ScanUnit,
    Signal,
    make_snippet,
)
from mobaudit.scanners.base import BaseScanner
from mobaudit.scoring import DEFAULT_ENTROPY_THRESHOLD, score_confidence

REMEDIATION = (
    "Remove the secret from the project and rotate the credential. "
    "Fetch it at runtime from your backend or inject it at build time from a secrets manager."
)

PROPERTY_ROLES = frozenset({FileRole.PROPERTY_CONFIG})
GRADLE_ROLES = frozenset({FileRole.DEPENDENCY_MANIFEST, FileRole.BUILD_CONFIG})

SENSITIVE_NAME = re.compile(
    r"(?i)(?:api[_-]?key|apikey|secret|token|passw(?:or)?d|pwd|private[_-]?key|access[_-]?key|auth[_-]?key|client[_-]?secret)"
)

# "structural" patterns are recognised by their shape (vendor prefix, fixed
# length); the rest are recognised by the name they are assigned to and are
# graded by entropy instead.
SECRET_PATTERNS: list[dict] = [
    {
        "id": "SEC-001",
        "name": "AWS Access Key",
        "pattern": re.compile(r"(?<![A-Z0-9])((?:AKIA|ASIA)[0-9A-Z]{16})(?![A-Z0-9])"),
        "group": 1,
        "severity": Severity.CRITICAL,
        "structural": True,
    },
    {
        "id": "SEC-002",
        "name": "AWS Secret Key",
        "pattern": re.compile(
            r"""(?i)aws_?secret_?(?:access_?)?key['"]?\s*[=:]\s*['"]?([A-Za-z0-9/+=]{40})(?![A-Za-z0-9/+=])"""
        ),
        "group": 1,
        "severity": Severity.CRITICAL,
        "structural": True,
    },
    {
        "id": "SEC-003",
        "name": "Google API Key",
        "pattern": re.compile(r"AIza[0-9A-Za-z_\-]{35}"),
        "severity": Severity.HIGH,
        "structural": True,
    },
    {
        "id": "SEC-004",
        "name": "Firebase Cloud Messaging Server Key",
        "pattern": re.compile(r"AAAA[A-Za-z0-9_\-]{7}:[A-Za-z0-9_\-]{140}"),
        "severity": Severity.CRITICAL,
        "structural": True,
    },
    {
        "id": "SEC-005",
        "name": "Stripe Secret Key",
        "pattern": re.compile(r"(?:sk|rk)_(?:live|test)_[0-9a-zA-Z]{24,}"),
        "severity": Severity.CRITICAL,
        "structural": True,
    },
    {
        "id": "SEC-006",
        "name": "GitHub Token",
        "pattern": re.compile(r"(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9_]{36,255}"),
        "severity": Severity.CRITICAL,
        "structural": True,
    },
    {
        "id": "SEC-007",
        "name": "Slack Token",
        "pattern": re.compile(r"xox[baprs]-[0-9A-Za-z\-]{10,}"),
        "severity": Severity.HIGH,
        "structural": True,
    },
    {
        "id": "SEC-008",
        "name": "Private Key",
        "pattern": re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----"),
        "severity": Severity.CRITICAL,
        "structural": True,
        "verify_entropy": False,
        "redact": False,
        "cwe_id": "CWE-321",
    },
    {
        "id": "SEC-009",
        "name": "JSON Web Token",
        "pattern": re.compile(r"eyJ[A-Za-z0-9_-]{10,}\.eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}"),
        "severity": Severity.HIGH,
        "structural": True,
    },
    {
        "id": "SEC-010",
        "name": "Database Connection String",
        "pattern": re.compile(
            r"""(?i)(?:mongodb(?:\+srv)?|postgres(?:ql)?|mysql|redis|amqps?)://[^\s:'"@/]+:([^\s'"@/]+)@[^\s'"]+"""
        ),
        "group": 1,
        "severity": Severity.CRITICAL,
        "structural": True,
        "verify_entropy": False,
    },
    {
        "id": "SEC-011",
        "name": "Bearer Token",
        "pattern": re.compile(r"""(?i)['"]bearer\s+([A-Za-z0-9\-._~+/]{20,}=*)"""),
        "group": 1,
        "severity": Severity.HIGH,
        "structural": False,
    },
    {
        "id": "SEC-012",
        "name": "Basic Auth Credentials",
        "pattern": re.compile(r"""(?i)['"]basic\s+([A-Za-z0-9+/]{16,}={0,2})['"]"""),
        "group": 1,
        "severity": Severity.HIGH,
        "structural": False,
    },
    {
        "id": "SEC-013",
        "name": "Hardcoded Password",
        "pattern": re.compile(
            r"""(?i)(?:password|passwd|pwd)\w*['"]?\s*(?::\s*[\w<>?]+\s*)?[=:]\s*@?['"]([^'"\s]{6,})['"]"""
        ),
        "group": 1,
        "severity": Severity.HIGH,
        "structural": False,
    },
    {
        "id": "SEC-014",
        "name": "Generic API Key or Secret",
        "pattern": re.compile(
            r"""(?i)(?:api[_-]?key|apikey|secret|token|client[_-]?secret|access[_-]?key|auth[_-]?key)\w*['"]?\s*"""
            r"""(?::\s*[\w<>?]+\s*)?[=:]\s*@?['"]([A-Za-z0-9_\-+/=.]{16,})['"]"""
        ),
        "group": 1,
        "severity": Severity.HIGH,
        "structural": False,
    },
    {
        "id": "SEC-015",
        "name": "Secret in Property File",
        "pattern": re.compile(
            r"""(?i)^\s*(?:export\s+)?[\w.\-]*(?:key|secret|token|password|passwd)[\w.\-]*\s*[=:]\s*([^\s'"#]{12,})\s*$"""
        ),
        "group": 1,
        "severity": Severity.HIGH,
        "structural": False,
        "roles": PROPERTY_ROLES,
    },
    {
        "id": "SEC-016",
        "name": "Secret in String Resource",
        "pattern": re.compile(
            r"""(?i)<string\s+name="[^"]*(?:api_?key|secret|token|password)[^"]*"[^>]*>([^<\s]{12,})</string>"""
        ),
        "group": 1,
        "severity": Severity.HIGH,
        "structural": False,
        "roles": PROPERTY_ROLES,
    },
    {
        "id": "SEC-017",
        "name": "Secret in Gradle Build Field",
        "pattern": re.compile(
            r"""(?i)(?:buildConfigField|resValue)\s*\(?\s*["']\w+["']\s*,\s*["']\w*(?:key|secret|token|password)\w*["']\s*,\s*["']\\?"?([^"'\\\s]{12,})"""
        ),
        "group": 1,
        "severity": Severity.HIGH,
        "structural": False,
        "roles": GRADLE_ROLES,
    },
]


@dataclass(frozen=True)
class SecretRule(PatternRule):
    structural: bool = True
    verify_entropy: bool = True
    entropy_threshold: float = DEFAULT_ENTROPY_THRESHOLD

    def confidence_for(self, unit: ScanUnit, line: str, value: str) -> Confidence:
        return score_confidence(
            value,
            structural=self.structural,
            threshold=self.entropy_threshold,
            verify_entropy=self.verify_entropy,
        )


@dataclass(frozen=True)
class PlistSecretRule:
    """Structured check of plist files: sensitive key names with string values."""

    id: str = "SEC-018"
    category: Category = Category.SECRETS
    severity: Severity = Severity.HIGH
    entropy_threshold: float = DEFAULT_ENTROPY_THRESHOLD
    min_length: int = 12

    def applies(self, unit: ScanUnit) -> bool:
        return unit.path.endswith(".plist") and unit.role in CONFIG_ROLES

    def evaluate(self, unit: ScanUnit):
        data = plistlib.loads(unit.text.encode("utf-8"))
        for key, value in _flatten(data):
            if not isinstance(value, str) or len(value) < self.min_length or " " in value:
                continue
            if not SENSITIVE_NAME.search(key):
                continue
            lineno = unit.line_of(f"<string>{value}</string>") or unit.line_of(value)
            line = unit.lines[lineno - 1] if lineno else ""
            start = line.find(value)
            span = (start, start + len(value)) if start >= 0 else None
            yield Signal(
                rule_id=self.id,
                category=self.category,
                severity=self.severity,
                confidence=score_confidence(value, structural=False, threshold=self.entropy_threshold),
                path=unit.path,
                line=lineno,
                snippet=make_snippet(line, span) if span else f"<key>{key}</key>",
                message=f"Credential-like value stored under plist key '{key.rsplit('.', 1)[-1]}'.",
                remediation=REMEDIATION,
                cwe_id="CWE-798",
                subject=value,
                span=span,
            )


def _flatten(data, prefix: str = ""):
    if isinstance(data, dict):
        for key, value in data.items():
            yield from _flatten(value, f"{prefix}.{key}" if prefix else str(key))
    elif isinstance(data, list):
        for value in data:
            yield from _flatten(value, prefix)
    else:
        yield prefix, data


def _rule_from_pattern(spec: dict, threshold: float) -> SecretRule:
    name = spec["name"]
    pattern = spec["pattern"]
    if isinstance(pattern, str):
        pattern = re.compile(pattern)
    severity = spec.get("severity", Severity.HIGH)
    if isinstance(severity, str):
        severity = Severity(severity.upper())
    return SecretRule(
        id=spec["id"],
        category=Category.SECRETS,
        title=name,
        pattern=pattern,
        severity=severity,
        confidence=Confidence.HIGH,
        message=f"Potential {name.lower()} found.",
        remediation=REMEDIATION,
        roles=spec.get("roles", ALL_ROLES),
        cwe_id=spec.get("cwe_id", "CWE-798"),
        group=spec.get("group", 0),
        redact=spec.get("redact", True),
        structural=spec.get("structural", True),
        verify_entropy=spec.get("verify_entropy", True),
        entropy_threshold=threshold,
    )


def build_secret_rules(
    custom_patterns: list[dict] | None = None,
    entropy_threshold: float = DEFAULT_ENTROPY_THRESHOLD,
) -> RuleSet:
    rules = [_rule_from_pattern(spec, entropy_threshold) for spec in SECRET_PATTERNS]
    # Custom patterns come before the generic name-based rules so that a
    # custom token format is reported under its own name.
    custom = []
    for index, spec in enumerate(custom_patterns or [], start=1):
        spec = {"id": spec.get("id", f"SEC-C{index:02d}"), "group": 0, **spec}
        custom.append(_rule_from_pattern(spec, entropy_threshold))
    generic_start = next(i for i, r in enumerate(rules) if not r.structural)
    rules[generic_start:generic_start] = custom
    rules.append(PlistSecretRule(entropy_threshold=entropy_threshold))
    return RuleSet(Category.SECRETS, rules)


class SecretScanner(BaseScanner):
    name = "secrets"
    category = Category.SECRETS
    rule_prefix = "SEC"

    def build_rules(self) -> RuleSet:
        return build_secret_rules(
            self.config.custom_secret_patterns,
            self.config.entropy_threshold,
        )
