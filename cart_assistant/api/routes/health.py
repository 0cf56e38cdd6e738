"""Health check routes."""
from fastapi import APIRouter, Request

from cart_assistant.utils.store import RedisStore

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(request: Request):
    """Report which backing services are in use."""
    container = getattr(request.app.state, "container", None)
    if container is None or container.orchestrator is None:
        return {"status": "unhealthy", "store": None}

    store = "redis" if isinstance(container.store, RedisStore) else "memory"
    status = "healthy"
    if container.settings.cache_enabled and store == "memory":
        status = "degraded"
    return {
        "status": status,
        "store": store,
        "model": container.settings.llm_model,
        "tools": sorted(container.registry.tools.keys()),
    }
