"""Insecure local storage scanner.

Values written to local stores are rarely known statically, so the key-value
rules judge a write by the name it is stored under. Such findings stay at
MEDIUM confidence unless the same file explicitly opens an unencrypted store.
"""

import plistlib
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
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

ANDROID_NS = "{http://schemas.android.com/apk/res/android}"

STORAGE_ROLES = CODE_ROLES | CONFIG_ROLES
PLATFORM_ROLES = frozenset({FileRole.PLATFORM_CONFIG})

SENSITIVE_TERMS = {
    "password", "passwd", "pwd", "passcode", "passphrase", "pin", "token", "secret",
    "credential", "credentials", "jwt", "cookie", "ssn", "cvv", "otp", "apikey",
    "privatekey", "mnemonic",
}

SENSITIVE_PAIRS = {
    ("api", "key"), ("private", "key"), ("access", "key"), ("secret", "key"),
    ("auth", "key"), ("credit", "card"), ("card", "number"), ("session", "id"),
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_WORD = re.compile(r"[A-Za-z][A-Za-z0-9]*")

PREFERENCE_WRITE = re.compile(
    r"""\.put(?:String|Int|Long|Boolean|Float|StringSet)\(\s*["']([^"']+)["']"""
    r"""|\.set(?:String|Int|Bool|Double|StringList)\(\s*['"]([^'"]+)['"]"""
    r"""|(?:AsyncStorage|localStorage|sessionStorage|MMKV\w*|storage)\.set(?:Item|String)?\(\s*['"`]([^'"`]+)['"`]"""
    r"""|\.set\([^)]*?,\s*forKey:\s*"([^"]+)"\)"""
    r"""|set(?:Object|Value|Bool|Integer):[^\]]*?forKey:\s*@"([^"]+)\""""
)

# Calls that obtain a store known to be unencrypted.
UNENCRYPTED_STORE = re.compile(
    r"getSharedPreferences\(|PreferenceManager\.getDefaultSharedPreferences|getPreferences\(\s*(?:Context\.)?MODE_PRIVATE"
    r"|UserDefaults\.standard|UserDefaults\(suiteName|\[NSUserDefaults standardUserDefaults\]"
    r"|SharedPreferences\.getInstance\(|\bAsyncStorage\.setItem|\blocalStorage\.setItem"
)

ENCRYPTED_STORE = re.compile(
    r"EncryptedSharedPreferences|EncryptedFile|FlutterSecureStorage|flutter_secure_storage|"
    r"EncryptedStorage|react-native-encrypted-storage|SecureStore|expo-secure-store|"
    r"react-native-keychain|KeychainWrapper|KeychainAccess|KeychainSwift|SecItemAdd|MMKV\([^)]*cryptKey"
)

DB_ENCRYPTION = re.compile(
    r"(?i)sqlcipher|net\.zetetic|SupportFactory\(|SupportOpenHelperFactory\(|FMEncryptedDatabase|"
    r"\.encryptionKey\b|encryptionKey\s*[:=(]|PRAGMA\s+key"
)

PREFERENCE_REMEDIATION = (
    "Store credentials in the Android Keystore / iOS Keychain, or use an encrypted store such as "
    "EncryptedSharedPreferences, flutter_secure_storage or react-native-keychain."
)

BACKUP_REMEDIATION = (
    "Set android:allowBackup=\"false\", or provide fullBackupContent / dataExtractionRules that "
    "exclude credentials and databases."
)


def key_terms(text: str) -> list[str]:
    """Split identifiers and string keys into lower-case words (camelCase and separators)."""
    words = []
    for word in _WORD.findall(text):
        words.extend(part.lower() for part in _CAMEL_BOUNDARY.split(word) if part)
    return words


def sensitive_term(text: str) -> str | None:
    """The first word (or word pair) of ``text`` in the sensitive vocabulary."""
    words = key_terms(text)
    for index, word in enumerate(words):
        if word in SENSITIVE_TERMS:
            return word
        if index + 1 < len(words) and (word, words[index + 1]) in SENSITIVE_PAIRS:
            return f"{word}_{words[index + 1]}"
    return None


@dataclass(frozen=True)
class PreferenceWriteRule(PatternRule):
    """Key-value store write whose key name looks sensitive."""

    corroboration: re.Pattern = UNENCRYPTED_STORE

    def build_signal(self, unit: ScanUnit, lineno: int, line: str, match: re.Match) -> Signal | None:
        index = next(i for i in range(1, len(match.groups()) + 1) if match.group(i) is not None)
        key = match.group(index)
        if sensitive_term(key) is None:
            return None
        return Signal(
            rule_id=self.id,
            category=self.category,
            severity=self.severity,
            confidence=self.confidence_for(unit, line, key),
            path=unit.path,
            line=lineno,
            snippet=make_snippet(line),
            message=self.message.replace("{subject}", key),
            remediation=self.remediation,
            cwe_id=self.cwe_id,
            subject=key,
            span=match.span(index),
        )

    def confidence_for(self, unit: ScanUnit, line: str, value: str) -> Confidence:
        if self.corroboration.search(unit.text):
            return Confidence.HIGH
        return self.confidence


@dataclass(frozen=True)
class SensitiveWriteRule(PatternRule):
    """Write call that only counts when the same line mentions a sensitive name."""

    def build_signal(self, unit: ScanUnit, lineno: int, line: str, match: re.Match) -> Signal | None:
        term = sensitive_term(line)
        if term is None:
            return None
        signal = super().build_signal(unit, lineno, line, match)
        return replace(signal, subject=term, message=self.message.replace("{subject}", term))


STORAGE_PATTERNS: list[dict] = [
    {
        "id": "STO-001",
        "title": "Sensitive Value in Unencrypted Preferences",
        "pattern": PREFERENCE_WRITE,
        "severity": Severity.HIGH,
        "confidence": Confidence.MEDIUM,
        "message": "Key '{subject}' looks sensitive and is written to an unencrypted key-value store.",
        "remediation": PREFERENCE_REMEDIATION,
        "cwe_id": "CWE-312",
        "roles": CODE_ROLES,
        "unless": COMMENT_LINE,
        "unless_file": ENCRYPTED_STORE,
        "kind": PreferenceWriteRule,
    },
    {
        "id": "STO-002",
        "title": "Sensitive Data Written to Plaintext File",
        "pattern": re.compile(
            r"\b(?:FileOutputStream|FileWriter|BufferedWriter|openFileOutput)\s*\("
            r"|\.(?:writeText|writeBytes|writeAsString|writeAsStringSync|writeAsBytes|writeAsBytesSync)\s*\("
            r"|\.write\(\s*to(?:File)?:|writeToFile:|\bwriteFile(?:Sync)?\s*\(|writeAsStringAsync\s*\("
        ),
        "severity": Severity.MEDIUM,
        "confidence": Confidence.MEDIUM,
        "message": "Data associated with '{subject}' is written to a plaintext file.",
        "remediation": "Encrypt the file (Jetpack Security EncryptedFile, iOS Data Protection) or keep the value in the Keystore / Keychain.",
        "cwe_id": "CWE-313",
        "roles": CODE_ROLES,
        "unless": COMMENT_LINE,
        "unless_file": re.compile(r"EncryptedFile|CipherOutputStream|\.completeFileProtection|NSFileProtectionComplete"),
        "kind": SensitiveWriteRule,
    },
    {
        "id": "STO-003",
        "title": "External Storage",
        "pattern": re.compile(
            r"getExternalStorageDirectory|getExternalStoragePublicDirectory|getExternalFilesDirs?\(|"
            r"getExternalCacheDir|WRITE_EXTERNAL_STORAGE|externalStorageDirectory"
        ),
        "severity": Severity.MEDIUM,
        "confidence": Confidence.HIGH,
        "message": "Data is stored on external storage, which other applications can read.",
        "remediation": "Keep application data in internal storage (Context.getFilesDir) or encrypt it first.",
        "cwe_id": "CWE-922",
        "roles": CODE_ROLES | PLATFORM_ROLES,
        "unless": COMMENT_LINE,
    },
    {
        "id": "STO-004",
        "title": "World-Accessible or Unprotected File",
        "pattern": re.compile(
            r"MODE_WORLD_READABLE|MODE_WORLD_WRITEABLE|set(?:Readable|Writable)\(\s*true\s*,\s*false\s*\)|"
            r"NSFileProtectionNone|\.noFileProtection|FileProtectionType\.none"
        ),
        "severity": Severity.HIGH,
        "confidence": Confidence.HIGH,
        "message": "A file is created world-accessible or without data protection.",
        "remediation": "Use MODE_PRIVATE and FileProtectionType.complete.",
        "cwe_id": "CWE-732",
        "roles": CODE_ROLES,
        "unless": COMMENT_LINE,
    },
    {
        "id": "STO-005",
        "title": "Unencrypted Local Database",
        "pattern": re.compile(
            r"\bSQLiteOpenHelper\b|openOrCreateDatabase\(|SQLiteDatabase\.openDatabase|Room\.databaseBuilder\(|"
            r"\bopenDatabase\(|\bFMDatabase\b|sqlite3_open(?:_v2)?\(|\bRealm\(\)|RealmConfiguration\("
        ),
        "severity": Severity.MEDIUM,
        "confidence": Confidence.MEDIUM,
        "message": "A local database is opened without an encryption layer.",
        "remediation": "Use SQLCipher (or Room with a SupportFactory), or a Realm encryption key.",
        "cwe_id": "CWE-311",
        "roles": CODE_ROLES,
        "unless": COMMENT_LINE,
        "unless_file": DB_ENCRYPTION,
    },
    {
        "id": "STO-008",
        "title": "Keychain Item Readable While Locked",
        "pattern": re.compile(r"\bkSecAttrAccessibleAlways(?:ThisDeviceOnly)?\b|\.accessibleAlways\b"),
        "severity": Severity.MEDIUM,
        "confidence": Confidence.HIGH,
        "message": "Keychain item is readable even while the device is locked.",
        "remediation": "Use kSecAttrAccessibleWhenUnlockedThisDeviceOnly or AfterFirstUnlockThisDeviceOnly.",
        "cwe_id": "CWE-311",
        "roles": CODE_ROLES,
        "unless": COMMENT_LINE,
    },
]


def build_storage_rules() -> RuleSet:
    rules = []
    for spec in STORAGE_PATTERNS:
        spec = dict(spec)
        cls = spec.pop("kind", PatternRule)
        rules.append(cls(category=Category.STORAGE, **spec))
    return RuleSet(Category.STORAGE, rules)


class StorageScanner(BaseScanner):
    name = "storage"
    category = Category.STORAGE
    rule_prefix = "STO"
    roles = STORAGE_ROLES

    def build_rules(self) -> RuleSet:
        return build_storage_rules()

    def analyze(self, unit: ScanUnit) -> list[Signal]:
        if unit.name == "AndroidManifest.xml":
            return self._analyze_manifest(unit)
        if unit.path.endswith(".plist") and (
            "UIFileSharingEnabled" in unit.text or "LSSupportsOpeningDocumentsInPlace" in unit.text
        ):
            return self._analyze_plist(unit)
        return []

    def collect_facts(self, unit: ScanUnit) -> dict[str, int | None]:
        for lineno, line in enumerate(unit.lines, start=1):
            if DB_ENCRYPTION.search(line):
                return {"db_encryption": lineno}
        return {}

    def finalize(self, signals: list[Signal], facts: dict) -> list[Signal]:
        if "db_encryption" in facts:
            return [s for s in signals if s.rule_id != "STO-005"]
        return signals

    def _signal(self, unit: ScanUnit, rule_id: str, severity: Severity, confidence: Confidence,
                needle: str, message: str, remediation: str, cwe_id: str = "CWE-530") -> Signal:
        lineno = unit.line_of(needle)
        return Signal(
            rule_id=rule_id,
            category=Category.STORAGE,
            severity=severity,
            confidence=confidence,
            path=unit.path,
            line=lineno,
            snippet=make_snippet(unit.lines[lineno - 1]) if lineno else "",
            message=message,
            remediation=remediation,
            cwe_id=cwe_id,
        )

    def _analyze_manifest(self, unit: ScanUnit) -> list[Signal]:
        try:
            root = ET.fromstring(unit.text)
        except ET.ParseError as exc:
            raise ManifestParseError(unit.path, f"invalid XML: {exc}") from exc

        application = root.find("application")
        if application is None:
            return []

        allow_backup = application.get(f"{ANDROID_NS}allowBackup")
        has_rules = any(
            application.get(f"{ANDROID_NS}{attr}") for attr in ("fullBackupContent", "dataExtractionRules")
        )

        if allow_backup is None:
            return [
                self._signal(
                    unit, "STO-006", Severity.LOW, Confidence.MEDIUM, "<application",
                    "android:allowBackup is not set; application data is included in backups by default.",
                    BACKUP_REMEDIATION,
                )
            ]
        if allow_backup.strip().lower() != "true":
            return []
        if has_rules:
            return [
                self._signal(
                    unit, "STO-006", Severity.LOW, Confidence.HIGH, "android:allowBackup",
                    "Application data backup is enabled with backup rules; check they exclude sensitive files.",
                    BACKUP_REMEDIATION,
                )
            ]
        return [
            self._signal(
                unit, "STO-006", Severity.MEDIUM, Confidence.HIGH, "android:allowBackup",
                "android:allowBackup=\"true\" includes all application data in device and cloud backups.",
                BACKUP_REMEDIATION,
            )
        ]

    def _analyze_plist(self, unit: ScanUnit) -> list[Signal]:
        # a malformed <date> surfaces as AttributeError from plistlib
        try:
            data = plistlib.loads(unit.text.encode("utf-8"))
        except (plistlib.InvalidFileException, ExpatError, ValueError, AttributeError) as exc:
            raise ManifestParseError(unit.path, f"invalid property list: {exc}") from exc
        if not isinstance(data, dict):
            return []

        signals = []
        if data.get("UIFileSharingEnabled") is True:
            signals.append(
                self._signal(
                    unit, "STO-007", Severity.MEDIUM, Confidence.HIGH, "<key>UIFileSharingEnabled</key>",
                    "UIFileSharingEnabled exposes the app's Documents directory through Finder and iTunes.",
                    "Disable file sharing or move sensitive files out of Documents.",
                )
            )
        if data.get("LSSupportsOpeningDocumentsInPlace") is True:
            signals.append(
                self._signal(
                    unit, "STO-007", Severity.LOW, Confidence.HIGH, "<key>LSSupportsOpeningDocumentsInPlace</key>",
                    "LSSupportsOpeningDocumentsInPlace lets the Files app open the app's Documents directory.",
                    "Disable in-place document opening unless the app is a document browser.",
                )
            )
        return signals
