"""
Tests to validate config/risk_config.yaml parses correctly
and holds only the alert policy the API loads.
"""

import os

import pytest
import yaml

from conftest import CONFIG_DIR
from risk_policy import RiskThresholds, load_thresholds

RISK_CONFIG = os.path.join(CONFIG_DIR, "risk_config.yaml")


def _load_yaml(path: str) -> dict:
    with open(path) as f:
        return yaml.safe_load(f)


class TestRiskConfig:
    """Tests for config/risk_config.yaml."""

    @pytest.fixture
    def config(self):
        return _load_yaml(RISK_CONFIG)

    def test_parseable(self, config):
        assert config is not None
        assert isinstance(config, dict)

    def test_alert_thresholds_match_defaults(self, config):
        defaults = RiskThresholds()
        assert config["alerts"]["alert_threshold"] == defaults.alert
        assert config["alerts"]["critical_threshold"] == defaults.critical

    def test_critical_not_below_alert(self, config):
        alerts = config["alerts"]
        assert alerts["critical_threshold"] >= alerts["alert_threshold"]

    def test_only_alert_policy(self, config):
        assert set(config) == {"alerts"}
        assert set(config["alerts"]) == {"alert_threshold", "critical_threshold"}


class TestLoadThresholds:
    def test_reads_repo_config(self):
        assert load_thresholds(RISK_CONFIG) == RiskThresholds(alert=70, critical=80)

    def test_custom_values(self, tmp_path):
        path = tmp_path / "risk.yaml"
        path.write_text("alerts:\n  alert_threshold: 60\n  critical_threshold: 90\n")
        assert load_thresholds(str(path)) == RiskThresholds(alert=60, critical=90)

    def test_missing_section_keeps_defaults(self, tmp_path):
        path = tmp_path / "risk.yaml"
        path.write_text("other:\n  key: 1\n")
        assert load_thresholds(str(path)) == RiskThresholds()

    def test_empty_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "risk.yaml"
        path.write_text("")
        assert load_thresholds(str(path)) == RiskThresholds()
