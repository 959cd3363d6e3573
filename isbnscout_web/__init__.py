"""FastAPI application serving the ISBN Scout JSON API."""
