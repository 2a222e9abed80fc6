"""
Configuration management for the courier operations core.

Handles loading and accessing:
- Business configuration (config.yaml): rate tiers, surcharges, compliance windows
- Environment variables (.env): database, distance provider, logging
"""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateTier(BaseModel):
    """Per-mile rate band for a canonical service tier."""

    min_per_mile: Decimal
    target_per_mile: Decimal
    max_per_mile: Decimal


class QuoteBounds(BaseModel):
    """Plausibility bounds for a driver-submitted quote."""

    min_amount: Decimal
    max_amount: Decimal
    min_per_mile: Optional[Decimal] = None
    max_per_mile: Optional[Decimal] = None


class AfterHoursConfig(BaseModel):
    """After-hours surcharge settings."""

    per_mile: Decimal = Decimal("0.50")
    flat_fee: Decimal = Decimal("30.00")
    flat_fee_threshold_miles: Decimal = Decimal("50")


class BusinessHours(BaseModel):
    """Business hours window, evaluated in the company time zone."""

    start_hour: int = 8
    end_hour: int = 18
    weekdays: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])


class ProfitAssumptions(BaseModel):
    """Operating cost assumptions used for advisory profit estimates."""

    average_speed_mph: Decimal = Decimal("45")
    cost_per_mile: Decimal = Decimal("0.65")
    cost_per_hour: Decimal = Decimal("22.00")
    minimum_rate_per_mile: Decimal = Decimal("1.60")


class PricingConfig(BaseModel):
    """Everything the rate engine needs to price a load."""

    timezone: str = "America/Chicago"
    tiers: dict[str, RateTier]
    aliases: dict[str, str] = Field(default_factory=dict)
    after_hours: AfterHoursConfig = Field(default_factory=AfterHoursConfig)
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    holidays: list[str] = Field(default_factory=list)
    quote_bounds: dict[str, QuoteBounds] = Field(default_factory=dict)
    profit: ProfitAssumptions = Field(default_factory=ProfitAssumptions)


class ComplianceConfig(BaseModel):
    """Warning windows for credential checks."""

    license_warning_days: int = 30
    registration_warning_days: int = 30
    hazard_training_max_age_days: int = 365


class LifecycleConfig(BaseModel):
    """Load lifecycle timing rules."""

    driver_quote_ttl_hours: int = 48

    # Driver double-booking checks
    schedule_buffer_minutes: int = 30
    schedule_blocking_overlap_minutes: int = 60
    schedule_medium_overlap_minutes: int = 15


class SettlementConfig(BaseModel):
    """Cancellation billing percentages."""

    partial_cancellation_percent: Decimal = Decimal("50")


class EnvironmentSettings(BaseSettings):
    """Environment variables configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field("sqlite:///./courier.db", alias="DATABASE_URL")

    # Distance provider (OpenRouteService)
    openrouteservice_api_key: Optional[str] = Field(None, alias="OPENROUTESERVICE_API_KEY")
    distance_timeout_seconds: float = Field(10.0, alias="DISTANCE_TIMEOUT_SECONDS")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(True, alias="LOG_JSON")

    # Business config override
    config_dir: Optional[Path] = Field(None, alias="COURIER_CONFIG_DIR")


class ConfigManager:
    """
    Central configuration manager for the courier core.

    Loads and provides access to:
    - Business configuration from config/config.yaml (shipped with the package)
    - Environment variables from .env
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        env_settings: Optional[EnvironmentSettings] = None,
    ) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_dir: Optional path to config directory. Defaults to COURIER_CONFIG_DIR,
                then to the config/ directory inside the package.
            env_settings: Optional pre-built environment settings (mainly for tests)
        """
        self._env_settings = env_settings

        if config_dir is None:
            config_dir = self.env.config_dir
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"

        self.config_dir = Path(config_dir)
        self._business_config: Optional[dict[str, Any]] = None

    @property
    def business_config(self) -> dict[str, Any]:
        """Load and return business configuration from config.yaml."""
        if self._business_config is None:
            config_path = self.config_dir / "config.yaml"
            with open(config_path, "r") as f:
                self._business_config = yaml.safe_load(f) or {}
        return self._business_config

    @property
    def env(self) -> EnvironmentSettings:
        """Load and return environment settings."""
        if self._env_settings is None:
            self._env_settings = EnvironmentSettings()
        return self._env_settings

    def get_company_info(self) -> dict[str, Any]:
        """Get company information from business config."""
        return self.business_config.get("company", {})

    def get_pricing_config(self) -> PricingConfig:
        """
        Get pricing configuration.

        Returns:
            PricingConfig with tiers, aliases, surcharge and holiday settings

        Raises:
            KeyError: If the pricing section is missing
        """
        if "pricing" not in self.business_config:
            raise KeyError("No pricing configuration found in config.yaml")

        pricing = dict(self.business_config["pricing"])
        pricing.setdefault("timezone", self.get_company_info().get("timezone", "America/Chicago"))
        return PricingConfig(**pricing)

    def get_compliance_config(self) -> ComplianceConfig:
        """Get compliance warning windows from business config."""
        return ComplianceConfig(**self.business_config.get("compliance", {}))

    def get_lifecycle_config(self) -> LifecycleConfig:
        """Get load lifecycle timing rules from business config."""
        return LifecycleConfig(**self.business_config.get("lifecycle", {}))

    def get_settlement_config(self) -> SettlementConfig:
        """Get settlement percentages from business config."""
        return SettlementConfig(**self.business_config.get("settlement", {}))

    def get_api_key(self, provider: str) -> Optional[str]:
        """
        Get API key for a specific provider.

        Args:
            provider: Provider name ("openrouteservice")

        Returns:
            API key or None if not set
        """
        provider_map = {
            "openrouteservice": self.env.openrouteservice_api_key,
        }
        return provider_map.get(provider.lower())


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """
    Get the global configuration manager instance.

    Returns:
        ConfigManager singleton instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
