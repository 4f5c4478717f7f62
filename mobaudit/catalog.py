"""Project file discovery and classification."""

import fnmatch
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from mobaudit.errors import FileReadError, PathError

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 1024 * 1024

SKIP_DIRS = {
    ".git", ".svn", ".hg", "__pycache__", ".venv", "venv", ".tox", ".eggs",
    "node_modules", "bower_components", ".expo", ".next",
    "build", ".gradle", ".idea", ".cxx", ".externalNativeBuild", "captures",
    "Pods", "Carthage", "DerivedData", "xcuserdata", ".build", ".swiftpm",
    ".dart_tool", ".pub-cache", ".fvm",
}

BINARY_EXTENSIONS = {
    ".pyc", ".pyo", ".so", ".dll", ".dylib", ".exe", ".bin", ".o", ".a",
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar",
    ".apk", ".aab", ".aar", ".jar", ".dex", ".class", ".ipa", ".xcarchive",
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".webp", ".svgz", ".heic",
    ".pdf", ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".mp3", ".mp4", ".m4a", ".wav", ".ogg", ".mov", ".avi",
    ".car", ".nib", ".mobileprovision", ".keystore", ".jks", ".p12",
    ".db", ".sqlite", ".realm", ".lock.bin",
}


class FileRole(Enum):
    SOURCE = "source"
    DEPENDENCY_MANIFEST = "dependency_manifest"
    PLATFORM_CONFIG = "platform_config"
    PROPERTY_CONFIG = "property_config"
    BUILD_CONFIG = "build_config"
    OTHER = "other"


DEPENDENCY_MANIFESTS = {
    "package.json", "pubspec.yaml", "build.gradle", "build.gradle.kts", "Podfile",
}

PLATFORM_CONFIGS = {
    "AndroidManifest.xml", "network_security_config.xml", "Info.plist",
}

BUILD_CONFIGS = {
    "settings.gradle", "settings.gradle.kts", "gradle-wrapper.properties",
    "Package.swift", "Podfile.lock", "Cartfile", "Cartfile.resolved",
    "pubspec.lock", "package-lock.json", "yarn.lock", "Fastfile", "Appfile",
    "app.json", "eas.json", "metro.config.js", "babel.config.js",
}

SOURCE_EXTENSIONS = {
    ".java", ".kt", ".swift", ".m", ".mm", ".h", ".c", ".cc", ".cpp",
    ".dart", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cs", ".vue",
}

PROPERTY_EXTENSIONS = {
    ".plist", ".properties", ".xcconfig", ".env", ".json", ".yaml", ".yml",
    ".xml", ".cfg", ".ini", ".toml", ".conf", ".strings", ".entitlements",
}

BUILD_EXTENSIONS = {".gradle", ".kts", ".pbxproj", ".xcscheme", ".podspec"}


def classify(path: Path) -> FileRole:
    name = path.name
    suffix = path.suffix.lower()

    if name in DEPENDENCY_MANIFESTS:
        return FileRole.DEPENDENCY_MANIFEST
    if name in PLATFORM_CONFIGS or suffix == ".entitlements":
        return FileRole.PLATFORM_CONFIG
    if name in BUILD_CONFIGS or suffix in BUILD_EXTENSIONS:
        return FileRole.BUILD_CONFIG
    if suffix in SOURCE_EXTENSIONS:
        return FileRole.SOURCE
    if suffix in PROPERTY_EXTENSIONS or name == ".env" or name.startswith(".env."):
        return FileRole.PROPERTY_CONFIG
    return FileRole.OTHER


def _load_gitignore_patterns(root: Path) -> list[str]:
    gitignore = root / ".gitignore"
    if not gitignore.exists():
        return []
    patterns = []
    for line in gitignore.read_text(encoding="utf-8", errors="ignore").splitlines():
        line = line.strip()
        if line and not line.startswith("#") and not line.startswith("!"):
            patterns.append(line)
    return patterns


def _is_excluded(rel_path: str, patterns: list[str]) -> bool:
    parts = rel_path.split("/")
    for pattern in patterns:
        clean = pattern.strip("/")
        if not clean:
            continue
        if fnmatch.fnmatch(rel_path, clean) or fnmatch.fnmatch(rel_path, f"{clean}/*"):
            return True
        if "/" not in clean and any(fnmatch.fnmatch(part, clean) for part in parts):
            return True
    return False


@dataclass(frozen=True)
class CatalogEntry:
    """One project file. Content is only read when a scanner asks for it."""

    path: Path
    rel_path: str
    role: FileRole
    max_size: int = DEFAULT_MAX_FILE_SIZE

    def read_text(self) -> str:
        try:
            size = self.path.stat().st_size
            if size > self.max_size:
                raise FileReadError(
                    self.rel_path, f"file is {size} bytes, above the {self.max_size} byte limit"
                )
            return self.path.read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            raise FileReadError(self.rel_path, exc.strerror or str(exc)) from exc


class FileCatalog:
    """Read-only snapshot of the files under a project root.

    The walk happens once, at construction; afterwards the catalog is never
    mutated, so any number of scanners may iterate it concurrently.
    """

    def __init__(
        self,
        root: str | Path,
        exclude_patterns: list[str] | None = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        respect_gitignore: bool = True,
    ):
        self.root = Path(root)
        if not self.root.exists():
            raise PathError(f"Scan root does not exist: {root}")
        if not self.root.is_dir():
            raise PathError(f"Scan root is not a directory: {root}")
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise PathError(f"Scan root is not readable: {root}")

        self.max_file_size = max_file_size
        patterns = list(exclude_patterns or [])
        if respect_gitignore:
            patterns.extend(_load_gitignore_patterns(self.root))

        unreadable: list[str] = []
        self._entries = tuple(self._walk(patterns, unreadable))
        self.unreadable_dirs = tuple(sorted(unreadable))
        logger.debug(f"Catalogued {len(self._entries)} file(s) under {self.root}")

    def _walk(self, patterns: list[str], unreadable: list[str]):
        def on_error(exc: OSError) -> None:
            rel = Path(exc.filename).relative_to(self.root).as_posix()
            logger.warning(f"Cannot list directory {rel}: {exc.strerror}")
            unreadable.append(rel)

        found = []
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=on_error):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            for fname in filenames:
                filepath = Path(dirpath) / fname
                if filepath.suffix.lower() in BINARY_EXTENSIONS:
                    continue
                rel_path = filepath.relative_to(self.root).as_posix()
                if patterns and _is_excluded(rel_path, patterns):
                    continue
                found.append(
                    CatalogEntry(
                        path=filepath,
                        rel_path=rel_path,
                        role=classify(filepath),
                        max_size=self.max_file_size,
                    )
                )
        found.sort(key=lambda e: e.rel_path)
        return found

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self, roles=None):
        """Lazily yield entries, optionally restricted to the given roles."""
        for entry in self._entries:
            if roles is None or entry.role in roles:
                yield entry
