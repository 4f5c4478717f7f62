"""Exception hierarchy for scan failures.

Only ``PathError`` aborts a scan. The others are caught by the scanner that
raised them and turned into informational findings or log records.
"""


class ScanError(Exception):
    """Base class for scan failures."""


class PathError(ScanError):
    """The scan root is missing, not a directory, or unreadable."""


class FileReadError(ScanError):
    """A single file could not be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ManifestParseError(ScanError):
    """A dependency manifest or platform config file is malformed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class RuleEvaluationError(ScanError):
    """A rule raised while evaluating one file."""

    def __init__(self, rule_id: str, path: str, cause: Exception):
        super().__init__(f"rule {rule_id} failed on {path}: {cause!r}")
        self.rule_id = rule_id
        self.path = path
        self.cause = cause
