"""
Unit Tests for configuration and logging setup

Run with: pytest tests/test_config.py -v
"""

from decimal import Decimal

import pytest
import structlog
import yaml

from courier_core.core.config import ConfigManager, EnvironmentSettings
from courier_core.core.logging import configure_logging, get_logger


def test_packaged_pricing(config):
    pricing = config.get_pricing_config()
    assert pricing.timezone == "America/Chicago"
    assert set(pricing.tiers) == {"ROUTINE", "STAT", "CRITICAL_STAT"}
    assert pricing.tiers["STAT"].target_per_mile == Decimal("3.00")
    assert pricing.after_hours.flat_fee == Decimal("30.00")
    assert "12-25" in pricing.holidays


def test_other_sections(config):
    assert config.get_compliance_config().license_warning_days == 30
    assert config.get_lifecycle_config().driver_quote_ttl_hours == 48
    assert config.get_settlement_config().partial_cancellation_percent == Decimal("50")
    assert config.get_api_key("OpenRouteService") == "test-ors-key"


def test_custom_config_dir(tmp_path):
    (tmp_path / "config.yaml").write_text(
        yaml.safe_dump(
            {
                "company": {"timezone": "America/New_York"},
                "pricing": {
                    "tiers": {
                        "ROUTINE": {"min_per_mile": "1", "target_per_mile": "2", "max_per_mile": "3"},
                    }
                },
                "lifecycle": {"driver_quote_ttl_hours": 24},
            }
        )
    )
    manager = ConfigManager(config_dir=tmp_path, env_settings=EnvironmentSettings(_env_file=None))
    assert manager.get_pricing_config().timezone == "America/New_York"
    assert manager.get_lifecycle_config().driver_quote_ttl_hours == 24
    assert manager.get_compliance_config().hazard_training_max_age_days == 365


def test_missing_pricing_section(tmp_path):
    (tmp_path / "config.yaml").write_text("company: {}\n")
    manager = ConfigManager(config_dir=tmp_path, env_settings=EnvironmentSettings(_env_file=None))
    with pytest.raises(KeyError):
        manager.get_pricing_config()


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://courier@db/courier")
    monkeypatch.setenv("LOG_JSON", "false")
    settings = EnvironmentSettings(_env_file=None)
    assert settings.database_url == "postgresql://courier@db/courier"
    assert settings.log_json is False


@pytest.fixture
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_configure_logging_filters_below_level(reset_structlog, capsys):
    configure_logging("WARNING", json_output=True)
    logger = get_logger("rate_engine")
    logger.info("quiet_event")
    logger.warning("loud_event", load_id="load-1")

    out = capsys.readouterr().out
    assert "quiet_event" not in out
    assert '"event": "loud_event"' in out
    assert '"service_name": "rate_engine"' in out
