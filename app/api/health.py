"""Health, readiness and metrics endpoints.

  /health (liveness): the process can answer.  Always 200; the body says
    whether backing services look degraded.
  /ready (readiness): can this instance take webhook traffic right now?
    503 when the database is configured but unreachable, so the load
    balancer routes deliveries elsewhere and the sender retries.
    Redis is reported but never makes the instance unready: it only
    carries welcome emails.
  /metrics: Prometheus text exposition.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from app.db import engine as db_engine
from app.db import redis as db_redis

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_database() -> str:
    if db_engine.engine is None:
        return "not_configured"
    try:
        await db_engine.ping()
    except (SQLAlchemyError, OSError):
        logger.warning("Database ping failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_redis() -> str:
    if db_redis.redis_pool is None:
        return "not_configured"
    try:
        await db_redis.ping()
    except (RedisError, OSError):
        logger.warning("Redis ping failed", exc_info=True)
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    checks = {"database": await _check_database(), "redis": await _check_redis()}
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready(response: Response) -> dict:
    database = await _check_database()
    if database == "degraded":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "database": database}
    return {"status": "ready", "database": database}


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
