from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError

from ..engine import BucketAnalytics
from ..logging_config import logger
from ..models.schemas import SystemHealth
from .deps import get_analytics

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=SystemHealth)
async def health(analytics: BucketAnalytics = Depends(get_analytics)) -> SystemHealth:
    store_status = "connected"
    try:
        if not await analytics.store.ping():
            store_status = "degraded"
    except RedisError as exc:
        logger.warning("health.store_unreachable", store=analytics.store.name, error=str(exc))
        store_status = "unavailable"
    components = {
        "store": store_status,
        "backend": analytics.store.name,
        "cache_entries": str(len(analytics.cache)),
    }
    status = "ok" if store_status == "connected" else "degraded"
    return SystemHealth(status=status, components=components)
