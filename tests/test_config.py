"""Tests for configuration file support."""

from datetime import date

import pytest

from mobaudit.config import Config, load_config, load_release_metadata
from mobaudit.models import Severity
from mobaudit.scoring import DEFAULT_ENTROPY_THRESHOLD


class TestConfig:
    def test_default_config(self):
        config = Config()
        assert config.fail_on_severity is None
        assert config.enabled_scanners == ["secrets", "dependencies", "network", "storage"]
        assert config.entropy_threshold == DEFAULT_ENTROPY_THRESHOLD
        assert config.osv_lookup is False

    def test_load_from_file(self, tmp_path):
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text("""\
fail_on: high
enabled_scanners:
  - secrets
  - network
exclude_patterns:
  - "samples/*"
entropy_threshold: 4
allowed_hosts:
  - "*.corp.acme"
  - "100.64.0.0/10"
stale_after_days: 365
workers: 2
deadline_seconds: 30
""")
        config = load_config(config_path=str(cfg_file))
        assert config.fail_on == "HIGH"
        assert config.fail_on_severity == Severity.HIGH
        assert config.enabled_scanners == ["secrets", "network"]
        assert config.exclude_patterns == ["samples/*"]
        assert config.entropy_threshold == 4.0
        assert config.allowed_hosts == ["*.corp.acme", "100.64.0.0/10"]
        assert config.stale_after_days == 365
        assert config.workers == 2
        assert config.deadline_seconds == 30.0

    def test_load_from_project_root(self, tmp_path):
        (tmp_path / ".mobaudit.yml").write_text("fail_on: MEDIUM\n")
        config = load_config(project_root=str(tmp_path))
        assert config.fail_on_severity == Severity.MEDIUM

    def test_no_config_file_returns_defaults(self, tmp_path):
        assert load_config(project_root=str(tmp_path)) == Config()

    def test_empty_file_returns_defaults(self, tmp_path):
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text("")
        assert load_config(config_path=str(cfg_file)) == Config()

    def test_explicit_config_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(config_path=str(tmp_path / "missing.yml"))

    def test_invalid_yaml(self, tmp_path):
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text(": : invalid: [\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(config_path=str(cfg_file))

    def test_not_a_mapping(self, tmp_path):
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text("- secrets\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(config_path=str(cfg_file))

    def test_release_metadata_relative_to_config(self, tmp_path):
        (tmp_path / "ci").mkdir()
        (tmp_path / "ci" / "releases.yml").write_text("npm:\n  left-pad:\n    '1.0.0': 2016-01-01\n")
        cfg_file = tmp_path / "ci" / "mobaudit.yml"
        cfg_file.write_text("release_metadata: releases.yml\n")
        config = load_config(config_path=str(cfg_file))
        assert config.release_metadata == str(tmp_path / "ci" / "releases.yml")

    @pytest.mark.parametrize("content, message", [
        ("npm:\n  lodash:\n    '4.17.0': not-a-date\n", "Invalid release date for npm/lodash 4.17.0"),
        ("npm:\n  lodash:\n    '4.17.0': 42\n", "Invalid release date"),
        ("lodash:\n  '4.17.0': not-a-date\n", "must map versions to dates"),
        ("npm: [lodash]\n", "must map packages to releases"),
        ("- npm\n", "must be a mapping"),
    ])
    def test_invalid_release_metadata(self, tmp_path, content, message):
        (tmp_path / "releases.yml").write_text(content)
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text("release_metadata: releases.yml\n")
        with pytest.raises(ValueError, match=message):
            load_config(config_path=str(cfg_file))

    def test_missing_release_metadata(self, tmp_path):
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text("release_metadata: releases.yml\n")
        with pytest.raises(ValueError, match="Cannot load release metadata"):
            load_config(config_path=str(cfg_file))

    def test_load_release_metadata(self, tmp_path):
        path = tmp_path / "releases.json"
        path.write_text('{"pub": {"http": {"0.13.3": "2021-05-04", "1.1.0": null}}}')
        with pytest.raises(ValueError, match="pub/http 1.1.0"):
            load_release_metadata(str(path))
        path.write_text('{"pub": {"http": {"0.13.3": "2021-05-04"}, "dio": null}}')
        assert load_release_metadata(str(path)) == {("pub", "http"): {"0.13.3": date(2021, 5, 4)}}

    @pytest.mark.parametrize("content, message", [
        ("fail_on: EXTREME\n", "fail_on"),
        ("enabled_scanners: not-a-list\n", "enabled_scanners must be a list"),
        ("enabled_scanners: [secrets, crypto]\n", "unknown scanner"),
        ("entropy_threshold: high\n", "entropy_threshold"),
        ("respect_gitignore: sometimes\n", "respect_gitignore"),
        ("allowed_hosts: ['10.0.0.0/99']\n", "Invalid network"),
        ("suppressions: [{field: path}]\n", "pattern"),
        ("dependency_denylist: [{name: left-pad}]\n", "id"),
        ("stale_after_days: -1\n", "stale_after_days"),
        ("osv_lookup: yes please\n", "osv_lookup"),
        ("workers: 0\n", "workers"),
        ("deadline_seconds: 0\n", "deadline_seconds"),
        ("max_file_size: true\n", "max_file_size"),
    ])
    def test_invalid_values(self, tmp_path, content, message):
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text(content)
        with pytest.raises(ValueError, match=message):
            load_config(config_path=str(cfg_file))

    def test_config_with_custom_secret_patterns(self, tmp_path):
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text("""\
custom_secret_patterns:
  - name: "Internal Token"
    pattern: "INT_[A-Z0-9]{32}"
    severity: HIGH
""")
        config = load_config(config_path=str(cfg_file))
        assert len(config.custom_secret_patterns) == 1
        assert config.custom_secret_patterns[0]["name"] == "Internal Token"

    def test_custom_secret_pattern_needs_valid_regex(self, tmp_path):
        cfg_file = tmp_path / ".mobaudit.yml"
        cfg_file.write_text("custom_secret_patterns:\n  - name: broken\n    pattern: '([a-z'\n")
        with pytest.raises(ValueError, match="broken"):
            load_config(config_path=str(cfg_file))
