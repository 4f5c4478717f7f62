"""Scanner registry for mobaudit."""

from mobaudit.scanners.base import BaseScanner
from mobaudit.scanners.dependencies import DependencyScanner
from mobaudit.scanners.network import NetworkScanner
from mobaudit.scanners.secrets import SecretScanner
from mobaudit.scanners.storage import StorageScanner

SCANNERS: dict[str, type[BaseScanner]] = {
    "secrets": SecretScanner,
    "dependencies": DependencyScanner,
    "network": NetworkScanner,
    "storage": StorageScanner,
}

__all__ = [
    "BaseScanner",
    "SecretScanner",
    "DependencyScanner",
    "NetworkScanner",
    "StorageScanner",
    "SCANNERS",
]
