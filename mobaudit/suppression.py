"""Cross-category suppression of benign-looking signals.

One ``SuppressionPolicy`` is injected into every scanner. Entries either drop
a signal or cap its severity; they never create a signal or change anything
else about it.
"""

import fnmatch
import ipaddress
import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from mobaudit.models import Category, Severity
from mobaudit.rules import Signal

logger = logging.getLogger(__name__)


class Action(Enum):
    DROP = "drop"
    DOWNGRADE = "downgrade"


FIELDS = ("subject", "scope", "path")

DEFAULT_ALLOWED_HOSTS = [
    "localhost",
    "*.localhost",
    "*.local",
    "*.test",
    "0.0.0.0",
    "127.0.0.0/8",
    "::1/128",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "169.254.0.0/16",
    "fc00::/7",
]

DEFAULT_PLACEHOLDER_PATTERNS = [
    r"(?i)example|sample|dummy|placeholder|changeme|change[_-]me|replace[_-]?me|redacted|fake",
    r"(?i)^(?:your|my|insert|enter|put)[_-]",
    # all-caps descriptive names such as YOUR_API_KEY or API_KEY_HERE
    r"^[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)+$",
    r"^(.)\1+$",
    r"(?i)x{6,}|\*{4,}",
    r"^<[^>]*>$|^\$\{[^}]*\}$|^\{\{.*\}\}$|^%\(?\w|^\$\(|^@string/|^\$[A-Z_][A-Z0-9_]*$",
    r"(?i)^(?:pass(?:word)?|passwd|secret|token|admin|root|user(?:name)?|null|none|undefined|true|false)$",
]

TEST_VALUE_PATTERN = r"(?i)(?:^|[_\-])test(?:[_\-]|$)"

TEST_PATH_PATTERN = (
    r"(?i)(?:^|/)(?:test|tests|androidTest|testDebug|__tests__|__mocks__|spec|specs|"
    r"fixtures?|mocks?|samples?|examples?|docs?)/"
)

NON_PRODUCTION_SCOPES = r"^(?:development|test)$"

# Hosts that show up in http:// form as identifiers, not as endpoints.
NAMESPACE_HOSTS = (
    r"^(?:schemas\.android\.com|(?:www\.)?w3\.org|(?:www\.)?apple\.com|xmlpull\.org|"
    r"ns\.adobe\.com|schemas\.xmlsoap\.org|schemas\.microsoft\.com|purl\.org|"
    r"(?:www\.)?apache\.org|xml\.apache\.org|maven\.apache\.org|(?:www\.)?opensource\.org|"
    r"(?:www\.)?gnu\.org|creativecommons\.org|json-schema\.org|java\.sun\.com|xmlns\.jcp\.org)$"
)


class HostAllowlist:
    """Host matcher built from glob patterns and CIDR ranges."""

    def __init__(self, patterns: list[str]):
        self.patterns = tuple(patterns)
        self._networks = []
        self._globs = []
        for pattern in patterns:
            if "/" in pattern:
                try:
                    self._networks.append(ipaddress.ip_network(pattern, strict=False))
                except ValueError as exc:
                    raise ValueError(f"Invalid network in allowed_hosts: {pattern}") from exc
            else:
                self._globs.append(pattern.lower())

    def __call__(self, host: str) -> bool:
        host = host.strip("[]").rstrip(".").lower()
        try:
            addr = ipaddress.ip_address(host)
        except ValueError:
            addr = None
        if addr is not None and any(addr in net for net in self._networks):
            return True
        return any(fnmatch.fnmatchcase(host, glob) for glob in self._globs)


@dataclass(frozen=True)
class SuppressionEntry:
    rationale: str
    pattern: re.Pattern | None = None
    predicate: Callable[[str], bool] | None = None
    field: str = "subject"
    categories: frozenset = frozenset()
    rule_ids: frozenset = frozenset()
    action: Action = Action.DROP
    cap: Severity = Severity.LOW

    def __post_init__(self):
        if (self.pattern is None) == (self.predicate is None):
            raise ValueError("A suppression entry needs exactly one of pattern or predicate")
        if self.field not in FIELDS:
            raise ValueError(f"Suppression field must be one of {FIELDS}, got '{self.field}'")

    def in_scope(self, signal: Signal) -> bool:
        if self.categories and signal.category not in self.categories:
            return False
        if self.rule_ids and signal.rule_id not in self.rule_ids:
            return False
        return True

    def matches(self, signal: Signal) -> bool:
        if not self.in_scope(signal):
            return False
        value = getattr(signal, self.field)
        if not value:
            return False
        if self.pattern is not None:
            return bool(self.pattern.search(value))
        return bool(self.predicate(value))


def parse_category(name: str) -> Category:
    for category in Category:
        if name.lower() in (category.name.lower(), category.value.lower()):
            return category
    raise ValueError(f"Unknown category '{name}'")


def entry_from_dict(raw: dict) -> SuppressionEntry:
    """Build an operator-defined entry from its configuration mapping."""
    if not isinstance(raw, dict):
        raise ValueError("Each suppression must be a mapping")
    if "pattern" not in raw:
        raise ValueError("Each suppression needs a 'pattern'")
    try:
        pattern = re.compile(str(raw["pattern"]))
    except re.error as exc:
        raise ValueError(f"Invalid suppression pattern {raw['pattern']!r}: {exc}") from exc

    action = str(raw.get("action", "drop")).lower()
    if action not in {a.value for a in Action}:
        raise ValueError(f"Suppression action must be 'drop' or 'downgrade', got '{action}'")

    cap = str(raw.get("cap", "LOW")).upper()
    if cap not in {s.value for s in Severity}:
        raise ValueError(f"Suppression cap must be a severity, got '{cap}'")

    categories = raw.get("categories", [])
    rules = raw.get("rules", [])
    if not isinstance(categories, list) or not isinstance(rules, list):
        raise ValueError("Suppression 'categories' and 'rules' must be lists")

    return SuppressionEntry(
        rationale=str(raw.get("rationale", "operator suppression")),
        pattern=pattern,
        field=str(raw.get("field", "subject")),
        categories=frozenset(parse_category(c) for c in categories),
        rule_ids=frozenset(str(r) for r in rules),
        action=Action(action),
        cap=Severity(cap),
    )


def builtin_entries(
    allowed_hosts: list[str] | None = None,
    placeholder_patterns: list[str] | None = None,
) -> list[SuppressionEntry]:
    secrets = frozenset({Category.SECRETS})
    network = frozenset({Category.NETWORK})

    entries = [
        SuppressionEntry(
            rationale="placeholder or example credential",
            pattern=re.compile(p),
            categories=secrets,
        )
        for p in DEFAULT_PLACEHOLDER_PATTERNS + list(placeholder_patterns or [])
    ]
    entries += [
        SuppressionEntry(
            rationale="test credential",
            pattern=re.compile(TEST_VALUE_PATTERN),
            categories=secrets,
            action=Action.DOWNGRADE,
            cap=Severity.LOW,
        ),
        SuppressionEntry(
            rationale="credential in test or sample code",
            pattern=re.compile(TEST_PATH_PATTERN),
            field="path",
            categories=secrets,
            action=Action.DOWNGRADE,
            cap=Severity.LOW,
        ),
        SuppressionEntry(
            rationale="loopback or private development host",
            predicate=HostAllowlist(DEFAULT_ALLOWED_HOSTS + list(allowed_hosts or [])),
            categories=network,
        ),
        SuppressionEntry(
            rationale="XML namespace or license URL, not an endpoint",
            pattern=re.compile(NAMESPACE_HOSTS, re.IGNORECASE),
            categories=network,
            rule_ids=frozenset({"NET-001"}),
        ),
        SuppressionEntry(
            rationale="non-production dependency group",
            pattern=re.compile(NON_PRODUCTION_SCOPES),
            field="scope",
            categories=frozenset({Category.DEPENDENCIES}),
            action=Action.DOWNGRADE,
            cap=Severity.MEDIUM,
        ),
    ]
    return entries


class SuppressionPolicy:
    def __init__(self, entries=()):
        self.entries = tuple(entries)

    @classmethod
    def default(cls, allowed_hosts=None, placeholder_patterns=None) -> "SuppressionPolicy":
        return cls(builtin_entries(allowed_hosts, placeholder_patterns))

    @classmethod
    def from_config(cls, config) -> "SuppressionPolicy":
        entries = builtin_entries(config.allowed_hosts, config.placeholder_patterns)
        entries.extend(entry_from_dict(raw) for raw in config.suppressions)
        return cls(entries)

    def apply(self, signal: Signal) -> Signal | None:
        """Return the signal, a severity-capped copy of it, or None to drop it."""
        cap = None
        for entry in self.entries:
            if not entry.matches(signal):
                continue
            if entry.action is Action.DROP:
                logger.debug(f"Dropped {signal.rule_id} at {signal.path}:{signal.line} ({entry.rationale})")
                return None
            cap = entry.cap if cap is None else min(cap, entry.cap)

        if cap is not None and signal.severity > cap:
            return replace(signal, severity=cap)
        return signal

    def filter(self, signals) -> list[Signal]:
        kept = []
        for signal in signals:
            result = self.apply(signal)
            if result is not None:
                kept.append(result)
        return kept
