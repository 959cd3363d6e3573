"""ISBNScout application services: scanning, subscriptions, offline sync and billing."""

__version__ = "0.1.0"
