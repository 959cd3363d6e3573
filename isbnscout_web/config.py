"""Configuration management for the ISBN Scout API."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_TRUE = ("true", "1", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    # Storage and logs
    DATABASE_PATH: Path = Path(os.getenv("ISBNSCOUT_DB_PATH", str(Path.home() / ".isbnscout" / "isbnscout.db")))
    LOG_DIR: Path = Path(os.getenv("ISBNSCOUT_LOG_DIR", str(Path.home() / ".isbnscout")))

    # Google Books
    GOOGLE_BOOKS_API_KEY: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")

    # eBay Browse API
    EBAY_APP_ID: Optional[str] = os.getenv("EBAY_APP_ID")
    EBAY_CERT_ID: Optional[str] = os.getenv("EBAY_CERT_ID")
    EBAY_MARKETPLACE: str = os.getenv("EBAY_MARKETPLACE", "EBAY_GB")
    EBAY_SANDBOX: bool = os.getenv("EBAY_SANDBOX", "false").lower() in _TRUE

    # Amazon Product Advertising API
    AMAZON_ACCESS_KEY: Optional[str] = os.getenv("AMAZON_ACCESS_KEY")
    AMAZON_SECRET_KEY: Optional[str] = os.getenv("AMAZON_SECRET_KEY")
    AMAZON_PARTNER_TAG: Optional[str] = os.getenv("AMAZON_PARTNER_TAG")
    AMAZON_COUNTRY: str = os.getenv("AMAZON_COUNTRY", "UK")

    # Billing and email
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    RESEND_API_KEY: Optional[str] = os.getenv("RESEND_API_KEY")
    EMAIL_FROM: Optional[str] = os.getenv("EMAIL_FROM")
    APP_URL: str = os.getenv("APP_URL", "http://localhost:8000")

    # Offline sync remote
    SYNC_REMOTE_URL: Optional[str] = os.getenv("SYNC_REMOTE_URL")
    SYNC_REMOTE_TOKEN: Optional[str] = os.getenv("SYNC_REMOTE_TOKEN")

    # Accounts
    TRIAL_DAYS: int = int(os.getenv("TRIAL_DAYS", "14"))

    # Web Server
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() in _TRUE


settings = Settings()
