"""FastAPI application entry point for the ISBN Scout API."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from isbnscout.errors import ScoutError

from .api.dependencies import cleanup_service
from .api.routes import (
    alerts,
    auth,
    books,
    calculators,
    inventory,
    listings,
    offline,
    repricing,
    scans,
    subscriptions,
    sync,
    user,
)
from .config import settings
from .logging_middleware import HTTPLoggingMiddleware, log_custom_event

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_custom_event("startup", database=str(settings.DATABASE_PATH))

    yield

    cleanup_service()


app = FastAPI(
    title="ISBN Scout",
    description="Scan books, compare eBay and Amazon prices, and track resale stock",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(HTTPLoggingMiddleware)


@app.exception_handler(ScoutError)
async def scout_error_handler(request: Request, exc: ScoutError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(user.router, prefix="/api", tags=["user"])
app.include_router(books.router, prefix="/api/books", tags=["books"])
app.include_router(scans.router, prefix="/api/scans", tags=["scans"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["inventory"])
app.include_router(listings.router, prefix="/api/listings", tags=["listings"])
app.include_router(alerts.router, prefix="/api/alerts", tags=["alerts"])
app.include_router(repricing.router, prefix="/api/repricing", tags=["repricing"])
app.include_router(offline.router, prefix="/api/offline", tags=["offline"])
app.include_router(sync.router, prefix="/api/sync", tags=["sync"])
app.include_router(subscriptions.router, prefix="/api/subscriptions", tags=["subscriptions"])
app.include_router(calculators.router, prefix="/api", tags=["calculators"])


@app.get("/health")
@app.get("/api/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("isbnscout_web.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
