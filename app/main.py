"""Main FastAPI application."""

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .api.transfers import router as transfers_router
from .health import get_health_status

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Transfer Reconciliation", version="1.1.0")
app.include_router(transfers_router)


@app.get("/")
async def root():
    return {"message": "Transfer reconciliation running"}


@app.get("/health")
async def health():
    """Liveness probe - always returns OK if app is running."""
    return {"status": "ok"}


@app.get("/health/ready")
async def health_ready():
    """Readiness probe - checks all dependencies."""
    status = await get_health_status()
    code = 200 if status["status"] == "healthy" else 503
    return JSONResponse(content=status, status_code=code)


@app.get("/health/full")
async def health_full():
    """Full health check with details."""
    return await get_health_status()
