"""Tests for the local storage scanner."""

import pytest

from mobaudit.models import Category, Confidence, Severity
from mobaudit.scanners.storage import StorageScanner, key_terms, sensitive_term

MANIFEST_TEMPLATE = """\
<?xml version="1.0" encoding="utf-8"?>
<manifest xmlns:android="http://schemas.android.com/apk/res/android" package="com.acme">
    <application android:label="Acme"{attrs}>
    </application>
</manifest>
"""


def _rule_ids(report) -> list[str]:
    return [f.rule_id for f in report.findings]


class TestKeyVocabulary:
    @pytest.mark.parametrize("key, term", [
        ("password", "password"),
        ("userPassword", "password"),
        ("auth_token", "token"),
        ("refreshToken", "token"),
        ("PIN_CODE", "pin"),
        ("api-key", "api_key"),
        ("theme", None),
        ("pinnedTabs", None),
        ("spinner", None),
    ])
    def test_sensitive_term(self, key, term):
        assert sensitive_term(key) == term

    def test_key_terms_split_camel_case(self):
        assert key_terms("userAPIToken") == ["user", "api", "token"]


class TestPreferenceWrites:
    def test_password_key_is_medium_confidence(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "app/src/main/java/com/acme/Session.kt": 'editor.putString("password", password).apply()\n',
        })
        report = StorageScanner().scan(root)
        assert len(report.findings) == 1
        finding = report.findings[0]
        assert finding.rule_id == "STO-001"
        assert finding.category is Category.STORAGE
        assert finding.confidence == Confidence.MEDIUM
        assert finding.severity == Severity.HIGH

    def test_explicit_unencrypted_store_raises_confidence(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "app/src/main/java/com/acme/Session.kt": """\
                val prefs = context.getSharedPreferences("auth", Context.MODE_PRIVATE)
                prefs.edit().putString("password", password).apply()
                """,
        })
        report = StorageScanner().scan(root)
        assert [(f.rule_id, f.confidence, f.line_number) for f in report.findings] == [
            ("STO-001", Confidence.HIGH, 2),
        ]

    def test_non_sensitive_key(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"Settings.kt": 'editor.putString("theme", "dark").apply()\n'})
        assert StorageScanner().scan(root).findings == ()

    def test_encrypted_wrapper_drops_finding(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "Session.kt": """\
                val prefs = EncryptedSharedPreferences.create(context, "auth", masterKey, keyScheme, valueScheme)
                prefs.edit().putString("password", password).apply()
                """,
        })
        assert StorageScanner().scan(root).findings == ()

    @pytest.mark.parametrize("path, content", [
        (
            "lib/session.dart",
            "final prefs = await SharedPreferences.getInstance();\nawait prefs.setString('authToken', token);\n",
        ),
        ("ios/Acme/Session.swift", 'UserDefaults.standard.set(pin, forKey: "userPin")\n'),
        ("src/session.js", "await AsyncStorage.setItem('refresh_token', token);\n"),
    ])
    def test_cross_platform_stores(self, path, content, tmp_dir_with_files):
        root = tmp_dir_with_files({path: content})
        report = StorageScanner().scan(root)
        assert _rule_ids(report) == ["STO-001"]
        assert report.findings[0].confidence == Confidence.HIGH

    def test_comment_line_ignored(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"Session.kt": '// editor.putString("password", password)\n'})
        assert StorageScanner().scan(root).findings == ()


class TestFilesAndDatabases:
    def test_plaintext_file_write(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"Cache.kt": 'File(context.filesDir, "token.txt").writeText(token)\n'})
        report = StorageScanner().scan(root)
        assert _rule_ids(report) == ["STO-002"]
        assert report.findings[0].severity == Severity.MEDIUM
        assert report.findings[0].confidence == Confidence.MEDIUM

    def test_plain_file_write_without_sensitive_name(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"Cache.kt": 'File(context.filesDir, "log.txt").writeText(lines)\n'})
        assert StorageScanner().scan(root).findings == ()

    def test_world_readable_mode(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"Export.kt": 'openFileOutput("data", Context.MODE_WORLD_READABLE)\n'})
        report = StorageScanner().scan(root)
        assert _rule_ids(report) == ["STO-004"]
        assert report.findings[0].severity == Severity.HIGH

    def test_external_storage(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"Export.kt": "val dir = Environment.getExternalStorageDirectory()\n"})
        assert _rule_ids(StorageScanner().scan(root)) == ["STO-003"]

    def test_unencrypted_database(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "app/src/main/java/com/acme/DbHelper.kt": 'class DbHelper(ctx: Context) : SQLiteOpenHelper(ctx, "app.db", null, 1)\n',
        })
        report = StorageScanner().scan(root)
        assert _rule_ids(report) == ["STO-005"]
        assert report.findings[0].confidence == Confidence.MEDIUM

    def test_sqlcipher_in_build_file_drops_database_finding(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "app/src/main/java/com/acme/DbHelper.kt": 'class DbHelper(ctx: Context) : SQLiteOpenHelper(ctx, "app.db", null, 1)\n',
            "app/build.gradle": 'dependencies {\n    implementation "net.zetetic:android-database-sqlcipher:4.5.4"\n}\n',
        })
        assert StorageScanner().scan(root).findings == ()

    def test_keychain_always_accessible(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "ios/Acme/Vault.swift": "query[kSecAttrAccessible as String] = kSecAttrAccessibleAlways\n",
        })
        assert _rule_ids(StorageScanner().scan(root)) == ["STO-008"]


class TestBackupConfiguration:
    @pytest.mark.parametrize("attrs, expected", [
        (' android:allowBackup="true"', [(Severity.MEDIUM, Confidence.HIGH)]),
        ("", [(Severity.LOW, Confidence.MEDIUM)]),
        (' android:allowBackup="true" android:dataExtractionRules="@xml/rules"', [(Severity.LOW, Confidence.HIGH)]),
        (' android:allowBackup="false"', []),
    ])
    def test_allow_backup(self, attrs, expected, tmp_dir_with_files):
        root = tmp_dir_with_files({"app/src/main/AndroidManifest.xml": MANIFEST_TEMPLATE.format(attrs=attrs)})
        report = StorageScanner().scan(root)
        assert [(f.severity, f.confidence) for f in report.findings] == expected
        assert all(f.rule_id == "STO-006" and f.line_number == 3 for f in report.findings)

    def test_library_manifest_without_application(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "lib/src/main/AndroidManifest.xml": '<manifest package="com.acme.lib" />\n',
        })
        assert StorageScanner().scan(root).findings == ()

    def test_ios_file_sharing(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "ios/Acme/Info.plist": """\
                <?xml version="1.0" encoding="UTF-8"?>
                <plist version="1.0">
                <dict>
                    <key>UIFileSharingEnabled</key>
                    <true/>
                    <key>LSSupportsOpeningDocumentsInPlace</key>
                    <true/>
                </dict>
                </plist>
                """,
        })
        report = StorageScanner().scan(root)
        assert [(f.rule_id, f.severity, f.line_number) for f in report.findings] == [
            ("STO-007", Severity.MEDIUM, 4),
            ("STO-007", Severity.LOW, 6),
        ]

    def test_malformed_plist_date_is_reported(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "ios/Acme/Info.plist": """\
                <?xml version="1.0" encoding="UTF-8"?>
                <plist version="1.0">
                <dict>
                    <key>UIFileSharingEnabled</key>
                    <true/>
                    <key>BuildDate</key>
                    <date>not-a-date</date>
                </dict>
                </plist>
                """,
            "app/src/main/java/com/acme/Session.kt": 'editor.putString("password", password).apply()\n',
        })
        report = StorageScanner(workers=2).scan(root)
        assert [f.rule_id for f in report.findings] == ["STO-001", "STO-PARSE"]
        assert report.skipped_files == ("ios/Acme/Info.plist",)
