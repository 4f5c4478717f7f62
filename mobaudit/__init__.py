"""mobaudit - static security scanner for mobile application projects."""

__version__ = "0.1.0"

# Bumped whenever a rule table changes in a way that can alter findings.
RULESET_VERSION = "2026.10.0"
