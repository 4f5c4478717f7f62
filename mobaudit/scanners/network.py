"""Network transport security scanner.

Line rules catch cleartext URLs and code that switches off certificate
validation. Android network security config files and iOS App Transport
Security dictionaries are parsed structurally. Missing certificate pinning is
a project-level property, decided once every file has been seen.
"""

import plistlib
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from xml.parsers.expat import ExpatError

from mobaudit.catalog import FileRole
from mobaudit.errors import ManifestParseError
from mobaudit.models import Category, Confidence, Severity
from mobaudit.rules import (
    CODE_ROLES,
    COMMENT_LINE,
    CONFIG_ROLES,
    PatternRule,
    RuleSet,
    ScanUnit,
    Signal,
    make_snippet,
)
from mobaudit.scanners.base import BaseScanner

NETWORK_ROLES = CODE_ROLES | CONFIG_ROLES
PLATFORM_ROLES = frozenset({FileRole.PLATFORM_CONFIG})

CLEARTEXT_URL = re.compile(r"""\bhttp://(\[[0-9A-Fa-f:.]+\]|[A-Za-z0-9](?:[A-Za-z0-9\-_.]*[A-Za-z0-9])?)""")

# A URL literal on one of these lines is (almost certainly) sent somewhere.
REQUEST_CALL = re.compile(
    r"(?:\bURL|Uri\.parse|Uri\.http|URLRequest|NSURL\w*|Request\.Builder\(\)\.url|\.url|baseUrl|"
    r"loadUrl|openConnection|fetch|axios(?:\.\w+)?|http\.(?:get|post|put|delete|head|patch)|"
    r"\bdio\.\w+|\.(?:get|post|put|delete|request|dataTask|load))\s*\("
)

PINNING = re.compile(
    r"<pin-set|NSPinnedDomains|CertificatePinner|TrustKit|ServerTrustManager|"
    r"PinnedCertificatesTrustEvaluator|PublicKeysTrustEvaluator|ServerTrustEvaluating|"
    r"AFSSLPinningMode(?:Certificate|PublicKey)|ssl_pinning|http_certificate_pinning|"
    r"react-native-ssl-pinning|withTrustedRoots:\s*false"
)

NETWORK_CLIENT = re.compile(
    r"\bOkHttpClient\b|com\.squareup\.okhttp3|\bRetrofit\b|\bURLSession\b|\bAlamofire\b|"
    r"\bAFNetworking\b|\bDio\(|[\"']dio[\"']|\bdio:|\baxios\b|\bHttpClient\(|\bVolley\b"
)

TLS_REMEDIATION = (
    "Keep the platform's default certificate and hostname validation. "
    "For self-signed development servers use a debug-only trust configuration."
)

ATS_REMEDIATION = (
    "Remove the App Transport Security exception and serve the content over HTTPS "
    "with TLS 1.2 or later."
)

NSC_REMEDIATION = (
    "Set cleartextTrafficPermitted=\"false\" and limit user-installed CAs to <debug-overrides>."
)

NETWORK_PATTERNS: list[dict] = [
    {
        "id": "NET-001",
        "title": "Cleartext HTTP URL",
        "pattern": CLEARTEXT_URL,
        "group": 1,
        "severity": Severity.HIGH,
        "confidence": Confidence.MEDIUM,
        "message": "Cleartext HTTP endpoint {subject}; traffic can be read and altered in transit.",
        "remediation": "Use https:// for every remote endpoint.",
        "cwe_id": "CWE-319",
        "roles": NETWORK_ROLES,
        "unless": COMMENT_LINE,
    },
    {
        "id": "NET-002",
        "title": "Cleartext Traffic Enabled",
        "pattern": re.compile(r"""android:usesCleartextTraffic\s*=\s*["']true["']"""),
        "severity": Severity.HIGH,
        "confidence": Confidence.HIGH,
        "message": "The application manifest permits cleartext traffic to every host.",
        "remediation": "Remove android:usesCleartextTraffic or set it to false.",
        "cwe_id": "CWE-319",
        "roles": PLATFORM_ROLES,
    },
    {
        "id": "NET-010",
        "title": "Trust-All Certificate or Hostname Verifier",
        "pattern": re.compile(
            r"ALLOW_ALL_HOSTNAME_VERIFIER|AllowAllHostnameVerifier|NoopHostnameVerifier|"
            r"hostnameVerifier\s*\{\s*_?\w*\s*,\s*_?\w*\s*->\s*true\s*\}|"
            r"checkServerTrusted\([^)]*\)\s*(?:throws\s+[\w.]+\s*)?\{\s*\}|"
            r"getAcceptedIssuers\(\)\s*(?::\s*Array<X509Certificate>\s*)?[{=]\s*(?:return\s+)?(?:null|arrayOf\(\))"
        ),
        "severity": Severity.CRITICAL,
        "confidence": Confidence.HIGH,
        "message": "Certificate or hostname validation is disabled.",
        "remediation": TLS_REMEDIATION,
        "cwe_id": "CWE-295",
        "roles": CODE_ROLES,
        "unless": COMMENT_LINE,
    },
    {
        "id": "NET-011",
        "title": "WebView Ignores TLS Errors",
        "pattern": re.compile(r"\b\w+\.proceed\(\s*\)"),
        "severity": Severity.HIGH,
        "confidence": Confidence.HIGH,
        "message": "The WebView SSL error handler proceeds despite certificate errors.",
        "remediation": "Call handler.cancel() in onReceivedSslError.",
        "cwe_id": "CWE-295",
        "roles": CODE_ROLES,
        "unless": COMMENT_LINE,
        "when_file": re.compile(r"onReceivedSslError"),
    },
    {
        "id": "NET-013",
        "title": "Certificate Validation Switched Off",
        "pattern": re.compile(
            r"badCertificateCallback\s*=\s*\([^)]*\)\s*=>\s*true|"
            r"allowInvalidCertificates\s*=\s*(?:YES|true)|"
            r"rejectUnauthorized\s*:\s*false|"
            r"NODE_TLS_REJECT_UNAUTHORIZED\s*=\s*['\"]?0|"
            r"disableEvaluation\(\)|DisabledTrustEvaluator|DisabledEvaluator\(\)"
        ),
        "severity": Severity.HIGH,
        "confidence": Confidence.HIGH,
        "message": "TLS certificate errors are ignored by the HTTP client.",
        "remediation": TLS_REMEDIATION,
        "cwe_id": "CWE-295",
        "roles": CODE_ROLES,
        "unless": COMMENT_LINE,
    },
]


@dataclass(frozen=True)
class CleartextUrlRule(PatternRule):
    call_site: re.Pattern = REQUEST_CALL

    def confidence_for(self, unit: ScanUnit, line: str, value: str) -> Confidence:
        if unit.role is FileRole.SOURCE and self.call_site.search(line):
            return Confidence.HIGH
        return self.confidence


def build_network_rules() -> RuleSet:
    rules = []
    for spec in NETWORK_PATTERNS:
        cls = CleartextUrlRule if spec["id"] == "NET-001" else PatternRule
        rules.append(cls(category=Category.NETWORK, **spec))
    return RuleSet(Category.NETWORK, rules)


def _is_true(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return value is True


class NetworkScanner(BaseScanner):
    name = "network"
    category = Category.NETWORK
    rule_prefix = "NET"
    roles = NETWORK_ROLES

    def build_rules(self) -> RuleSet:
        return build_network_rules()

    def analyze(self, unit: ScanUnit) -> list[Signal]:
        if unit.path.endswith(".xml") and "<network-security-config" in unit.text:
            return self._analyze_security_config(unit)
        if unit.path.endswith(".plist") and "NSAppTransportSecurity" in unit.text:
            return self._analyze_ats(unit)
        return []

    def collect_facts(self, unit: ScanUnit) -> dict[str, int | None]:
        facts = {}
        for name, pattern in (("pinning", PINNING), ("network_client", NETWORK_CLIENT)):
            for lineno, line in enumerate(unit.lines, start=1):
                if pattern.search(line):
                    facts[name] = lineno
                    break
        return facts

    def finalize(self, signals: list[Signal], facts: dict) -> list[Signal]:
        if "network_client" not in facts or "pinning" in facts:
            return signals
        path, line = facts["network_client"]
        return signals + [
            Signal(
                rule_id="NET-012",
                category=Category.NETWORK,
                severity=Severity.MEDIUM,
                confidence=Confidence.LOW,
                path=path,
                line=line,
                snippet="",
                message="The project uses an HTTP client library but no certificate pinning configuration was found.",
                remediation=(
                    "Pin the backend's public keys with <pin-set>, NSPinnedDomains, OkHttp CertificatePinner "
                    "or an equivalent for your HTTP client."
                ),
                cwe_id="CWE-295",
            )
        ]

    def _signal(self, unit: ScanUnit, rule_id: str, severity: Severity, needle: str,
                message: str, remediation: str, subject: str = "", cwe_id: str = "CWE-319") -> Signal:
        lineno = unit.line_of(needle)
        return Signal(
            rule_id=rule_id,
            category=Category.NETWORK,
            severity=severity,
            confidence=Confidence.HIGH,
            path=unit.path,
            line=lineno,
            snippet=make_snippet(unit.lines[lineno - 1]) if lineno else "",
            message=message,
            remediation=remediation,
            cwe_id=cwe_id,
            subject=subject,
        )

    def _analyze_security_config(self, unit: ScanUnit) -> list[Signal]:
        try:
            root = ET.fromstring(unit.text)
        except ET.ParseError as exc:
            raise ManifestParseError(unit.path, f"invalid XML: {exc}") from exc

        signals = []
        base = root.find("base-config")
        if base is not None:
            if _is_true(base.get("cleartextTrafficPermitted")):
                signals.append(
                    self._signal(
                        unit, "NET-003", Severity.HIGH, "<base-config",
                        "The network security config permits cleartext traffic by default.",
                        NSC_REMEDIATION,
                    )
                )
            signals.extend(self._user_trust_anchors(unit, base, "<base-config"))

        for domain_config in root.iter("domain-config"):
            domains = [d.text.strip() for d in domain_config.findall("domain") if d.text and d.text.strip()]
            if _is_true(domain_config.get("cleartextTrafficPermitted")):
                for domain in domains:
                    signals.append(
                        self._signal(
                            unit, "NET-004", Severity.MEDIUM, f">{domain}<",
                            f"Cleartext traffic is permitted for {domain}.",
                            NSC_REMEDIATION,
                            subject=domain,
                        )
                    )
            signals.extend(self._user_trust_anchors(unit, domain_config, "<domain-config"))
        return signals

    def _user_trust_anchors(self, unit: ScanUnit, element, needle: str) -> list[Signal]:
        for certificates in element.iter("certificates"):
            if certificates.get("src") == "user":
                return [
                    self._signal(
                        unit, "NET-005", Severity.MEDIUM, 'src="user"',
                        "User-installed CA certificates are trusted in release builds.",
                        NSC_REMEDIATION,
                        cwe_id="CWE-295",
                    )
                ]
        return []

    def _analyze_ats(self, unit: ScanUnit) -> list[Signal]:
        # a malformed <date> surfaces as AttributeError from plistlib
        try:
            data = plistlib.loads(unit.text.encode("utf-8"))
        except (plistlib.InvalidFileException, ExpatError, ValueError, AttributeError) as exc:
            raise ManifestParseError(unit.path, f"invalid property list: {exc}") from exc

        ats = data.get("NSAppTransportSecurity") if isinstance(data, dict) else None
        if not isinstance(ats, dict):
            return []

        signals = []
        if _is_true(ats.get("NSAllowsArbitraryLoads")):
            signals.append(
                self._signal(
                    unit, "NET-006", Severity.HIGH, "<key>NSAllowsArbitraryLoads</key>",
                    "App Transport Security is disabled for all connections.",
                    ATS_REMEDIATION,
                )
            )
        for key in ("NSAllowsArbitraryLoadsInWebContent", "NSAllowsArbitraryLoadsForMedia"):
            if _is_true(ats.get(key)):
                signals.append(
                    self._signal(
                        unit, "NET-007", Severity.MEDIUM, f"<key>{key}</key>",
                        f"App Transport Security is relaxed by {key}.",
                        ATS_REMEDIATION,
                    )
                )

        exceptions = ats.get("NSExceptionDomains") or {}
        if not isinstance(exceptions, dict):
            return signals
        for domain, settings in exceptions.items():
            if not isinstance(settings, dict):
                continue
            needle = f"<key>{domain}</key>"
            if _is_true(settings.get("NSExceptionAllowsInsecureHTTPLoads")) or _is_true(
                settings.get("NSTemporaryExceptionAllowsInsecureHTTPLoads")
            ):
                signals.append(
                    self._signal(
                        unit, "NET-008", Severity.MEDIUM, needle,
                        f"Insecure HTTP loads are allowed for {domain}.",
                        ATS_REMEDIATION,
                        subject=domain,
                    )
                )
            tls = settings.get("NSExceptionMinimumTLSVersion") or settings.get(
                "NSTemporaryExceptionMinimumTLSVersion"
            )
            if tls in ("TLSv1.0", "TLSv1.1"):
                signals.append(
                    self._signal(
                        unit, "NET-009", Severity.MEDIUM, needle,
                        f"{domain} accepts {tls}, which is deprecated.",
                        ATS_REMEDIATION,
                        subject=domain,
                        cwe_id="CWE-326",
                    )
                )
        return signals
