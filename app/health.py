"""Health check endpoints."""

import asyncio
from typing import Any

import httpx
from sqlalchemy import text

from .config import settings
from .database import engine
from .services.cache import CacheClient

CHECK_TIMEOUT = 5.0


async def check_postgresql() -> dict[str, Any]:
    """Check the detection database through the application engine."""

    async def ping() -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    try:
        await asyncio.wait_for(ping(), timeout=CHECK_TIMEOUT)
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


async def check_redis() -> dict[str, Any]:
    """Check the run lock store. Skipped when run locks are disabled."""
    if not settings.run_lock_enabled:
        return {"status": "healthy", "note": "run locks disabled"}
    try:
        async with CacheClient() as cache:
            await asyncio.wait_for(cache.client.ping(), timeout=CHECK_TIMEOUT)
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


async def check_rate_service() -> dict[str, Any]:
    """Check the exchange rate service answers at all."""
    try:
        async with httpx.AsyncClient(base_url=settings.exchange_rate_api_url) as client:
            response = await client.get("/", timeout=CHECK_TIMEOUT)
        if response.status_code < 500:
            return {"status": "healthy"}
        return {"status": "unhealthy", "code": response.status_code}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


async def get_health_status() -> dict[str, Any]:
    """Get overall health status."""
    checks = {
        "postgresql": check_postgresql(),
        "redis": check_redis(),
        "exchange_rates": check_rate_service(),
    }
    results = await asyncio.gather(*checks.values(), return_exceptions=True)

    services = {}
    for name, outcome in zip(checks, results):
        if isinstance(outcome, Exception):
            outcome = {"status": "unhealthy", "error": str(outcome)}
        services[name] = outcome

    all_healthy = all(s.get("status") == "healthy" for s in services.values())
    return {"status": "healthy" if all_healthy else "degraded", "services": services}
