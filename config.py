"""
Configuration for StorybookWeb.

The remote storybook API is required for anything beyond the cached session.
Values come from the environment (optionally via a .env file).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
# This must happen before the Config class is defined
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


def _split_codes(raw: str) -> tuple:
    """Parse a comma separated list of country codes."""
    return tuple(code.strip().upper() for code in raw.split(",") if code.strip())


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    SESSION_COOKIE_NAME = "storybook_web_session"
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # ==========================================================================
    # Remote API
    # ==========================================================================
    STORYBOOK_API_BASE_URL = os.environ.get(
        "STORYBOOK_API_BASE_URL", "http://localhost:5000"
    )
    API_TIMEOUT_SECONDS = float(os.environ.get("API_TIMEOUT_SECONDS", "15"))

    # ==========================================================================
    # Stored credential cache
    # ==========================================================================
    # "file" keeps the cached user across restarts, "memory" is per process.
    CREDENTIAL_STORE_BACKEND = os.environ.get("CREDENTIAL_STORE_BACKEND", "file")
    CREDENTIAL_STORE_PATH = os.environ.get(
        "CREDENTIAL_STORE_PATH", str(BASE_DIR / "instance" / "credentials.json")
    )

    # ==========================================================================
    # Credits
    # ==========================================================================
    CREDIT_HISTORY_PAGE_SIZE = int(os.environ.get("CREDIT_HISTORY_PAGE_SIZE", "20"))
    CREDIT_PRICE_USD = float(os.environ.get("CREDIT_PRICE_USD", "0.01"))
    MAX_CUSTOM_CREDIT_PURCHASE = int(
        os.environ.get("MAX_CUSTOM_CREDIT_PURCHASE", "100000")
    )

    # ==========================================================================
    # Print orders
    # ==========================================================================
    # Display conversion applied after cost apportionment.
    # Destinations listed in GBP_DISPLAY_COUNTRIES see prices in GBP,
    # everything else in USD.
    GBP_TO_USD_RATE = float(os.environ.get("GBP_TO_USD_RATE", "1.27"))
    GBP_DISPLAY_COUNTRIES = _split_codes(
        os.environ.get("GBP_DISPLAY_COUNTRIES", "GB,GG,JE,IM")
    )
    MAX_PRINT_QUANTITY = int(os.environ.get("MAX_PRINT_QUANTITY", "100"))


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    CREDENTIAL_STORE_BACKEND = "memory"
    STORYBOOK_API_BASE_URL = "http://storybook.test"
