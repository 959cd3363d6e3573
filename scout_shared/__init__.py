"""Shared domain library for ISBNScout: models, storage, pricing clients and calculators."""
