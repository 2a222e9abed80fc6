#!/usr/bin/env python3
"""
Initialize the courier core.

This script sets up the project by:
- Checking for required environment variables
- Validating the business configuration
- Creating the database schema
- Running a pricing smoke check
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from courier_core.core.config import ConfigManager
from courier_core.core.logging import configure_logging
from courier_core.data.store import SqlAlchemyStore
from courier_core.services.rate_engine import RateEngine


def check_python_version() -> bool:
    """Verify Python version is 3.11 or higher."""
    if sys.version_info < (3, 11):
        print(f"❌ Python 3.11+ required. Current version: {sys.version}")
        return False
    print(f"✅ Python version: {sys.version_info.major}.{sys.version_info.minor}")
    return True


def load_and_validate_env() -> bool:
    """Load environment variables and check the ones we rely on."""
    if Path(".env").exists():
        load_dotenv()
        print("✅ .env file loaded")
    else:
        print("⚠️  No .env file; using process environment and defaults")

    if not os.getenv("DATABASE_URL"):
        print("⚠️  DATABASE_URL not set; using local SQLite database")

    key = os.getenv("OPENROUTESERVICE_API_KEY")
    if not key or key.startswith("your_"):
        print("⚠️  OPENROUTESERVICE_API_KEY not set; route distances must be supplied by callers")

    return True


def check_config(config: ConfigManager) -> bool:
    """Validate the business configuration parses into typed settings."""
    try:
        pricing = config.get_pricing_config()
        config.get_compliance_config()
        config.get_lifecycle_config()
        config.get_settlement_config()
    except (KeyError, ValueError) as e:
        print(f"❌ Invalid configuration: {e}")
        return False

    print(f"✅ Configuration valid ({len(pricing.tiers)} rate tiers, timezone {pricing.timezone})")
    return True


def create_schema(config: ConfigManager) -> bool:
    """Create database tables."""
    store = SqlAlchemyStore(config_manager=config)
    store.create_schema()
    print(f"✅ Database schema ready: {store}")
    return True


def check_pricing(config: ConfigManager) -> bool:
    """Price a sample route to confirm the rate engine loads."""
    quote = RateEngine(config_manager=config).quote(25, "STAT")
    print(f"✅ Sample STAT quote for 25 miles: ${quote.total_rate}")
    return True


def main():
    """Run all initialization checks."""
    print("=" * 60)
    print("Courier Core - Initialization")
    print("=" * 60)

    if not load_and_validate_env():
        return 1

    config = ConfigManager()
    configure_logging(config.env.log_level, json_output=config.env.log_json)

    checks = [
        ("Python version", check_python_version),
        ("Configuration", lambda: check_config(config)),
        ("Database schema", lambda: create_schema(config)),
        ("Pricing", lambda: check_pricing(config)),
    ]

    passed = 0
    failed = 0

    for name, check_func in checks:
        print(f"\nChecking {name}...")
        if check_func():
            passed += 1
        else:
            failed += 1
            break

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    print("=" * 60)

    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
