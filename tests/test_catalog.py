"""Tests for project file discovery."""

from pathlib import Path

import pytest

from mobaudit.catalog import FileCatalog, FileRole, classify
from mobaudit.errors import FileReadError, PathError


class TestClassify:
    @pytest.mark.parametrize("name, role", [
        ("package.json", FileRole.DEPENDENCY_MANIFEST),
        ("pubspec.yaml", FileRole.DEPENDENCY_MANIFEST),
        ("app/build.gradle.kts", FileRole.DEPENDENCY_MANIFEST),
        ("ios/Podfile", FileRole.DEPENDENCY_MANIFEST),
        ("app/src/main/AndroidManifest.xml", FileRole.PLATFORM_CONFIG),
        ("ios/Acme/Info.plist", FileRole.PLATFORM_CONFIG),
        ("ios/Acme/Acme.entitlements", FileRole.PLATFORM_CONFIG),
        ("settings.gradle", FileRole.BUILD_CONFIG),
        ("ios/Acme.xcodeproj/project.pbxproj", FileRole.BUILD_CONFIG),
        ("app/src/main/java/com/acme/Main.kt", FileRole.SOURCE),
        ("lib/main.dart", FileRole.SOURCE),
        ("src/App.tsx", FileRole.SOURCE),
        ("gradle.properties", FileRole.PROPERTY_CONFIG),
        ("app/src/main/res/values/strings.xml", FileRole.PROPERTY_CONFIG),
        (".env.production", FileRole.PROPERTY_CONFIG),
        ("README.md", FileRole.OTHER),
    ])
    def test_roles(self, name, role):
        assert classify(Path(name)) is role


class TestFileCatalog:
    def test_missing_root(self, tmp_path):
        with pytest.raises(PathError):
            FileCatalog(tmp_path / "nope")

    def test_root_is_file(self, tmp_path):
        f = tmp_path / "file.txt"
        f.write_text("x")
        with pytest.raises(PathError):
            FileCatalog(f)

    def test_entries_sorted_with_posix_paths(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "z.kt": "",
            "app/src/main/java/A.kt": "",
            "Podfile": "",
        })
        catalog = FileCatalog(root)
        assert [e.rel_path for e in catalog] == ["Podfile", "app/src/main/java/A.kt", "z.kt"]
        assert len(catalog) == 3

    def test_skips_build_and_vendor_dirs(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "node_modules/lodash/index.js": "",
            "ios/Pods/Alamofire/Source.swift": "",
            "app/build/generated/R.java": "",
            ".dart_tool/package_config.json": "",
            "lib/main.dart": "",
        })
        assert [e.rel_path for e in FileCatalog(root)] == ["lib/main.dart"]

    def test_skips_binary_files(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"res/icon.png": "", "release.keystore": "", "Main.kt": ""})
        assert [e.rel_path for e in FileCatalog(root)] == ["Main.kt"]

    def test_exclude_patterns(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            "app/src/main/Main.kt": "",
            "samples/demo/Demo.kt": "",
            "generated/Api.kt": "",
        })
        catalog = FileCatalog(root, exclude_patterns=["samples/*", "generated"])
        assert [e.rel_path for e in catalog] == ["app/src/main/Main.kt"]

    def test_respects_gitignore(self, tmp_dir_with_files):
        root = tmp_dir_with_files({
            ".gitignore": "# local\nlocal.properties\n*.log\n",
            "local.properties": "sdk.dir=/opt/android\n",
            "debug.log": "",
            "Main.kt": "",
        })
        assert [e.rel_path for e in FileCatalog(root)] == [".gitignore", "Main.kt"]
        unfiltered = FileCatalog(root, respect_gitignore=False)
        assert "local.properties" in [e.rel_path for e in unfiltered]

    def test_entries_filtered_by_role(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"package.json": "{}", "App.tsx": ""})
        catalog = FileCatalog(root)
        manifests = list(catalog.entries({FileRole.DEPENDENCY_MANIFEST}))
        assert [e.rel_path for e in manifests] == ["package.json"]
        assert len(list(catalog.entries())) == 2

    def test_oversized_file_refused_at_read_time(self, tmp_dir_with_files):
        root = tmp_dir_with_files({"big.json": "x" * 100})
        entry = next(iter(FileCatalog(root, max_file_size=10)))
        with pytest.raises(FileReadError) as exc_info:
            entry.read_text()
        assert "limit" in exc_info.value.reason

    def test_broken_symlink_raises_file_read_error(self, tmp_path):
        (tmp_path / "ghost.kt").symlink_to(tmp_path / "missing.kt")
        entry = next(iter(FileCatalog(tmp_path)))
        with pytest.raises(FileReadError):
            entry.read_text()

    def test_read_text_decodes_utf8(self, tmp_path):
        (tmp_path / "Strings.kt").write_bytes('val greeting = "Grüße"\n'.encode("utf-8"))
        entry = next(iter(FileCatalog(tmp_path)))
        assert entry.read_text() == 'val greeting = "Grüße"\n'
