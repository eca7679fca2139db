"""
System Service for health reporting.

Checks the database and Redis concurrently and adds host metrics and the
real-time hub's connection counts.
"""
from typing import Dict, Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime
import asyncio
import logging
import time

import psutil
from redis.asyncio import Redis

from disaster_training.config import settings

logger = logging.getLogger(__name__)


class SystemService:
    """Service for system health monitoring."""

    CHECK_TIMEOUT = 2.0

    CPU_WARNING_THRESHOLD = 80
    MEMORY_WARNING_THRESHOLD = 85

    @staticmethod
    async def check_database(db: AsyncSession) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            await db.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "latency_ms": None, "message": str(e)}

    @staticmethod
    async def check_redis() -> Dict[str, Any]:
        start = time.perf_counter()
        redis = Redis.from_url(
            settings.REDIS_URL,
            socket_connect_timeout=SystemService.CHECK_TIMEOUT,
            socket_timeout=SystemService.CHECK_TIMEOUT,
            decode_responses=True
        )
        try:
            await redis.ping()
            return {
                "status": "healthy",
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            }
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            return {"status": "unhealthy", "latency_ms": None, "message": str(e)}
        finally:
            await redis.aclose()

    @staticmethod
    def get_system_metrics() -> Dict[str, Any]:
        cpu = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory().percent
        return {
            "cpu": {
                "percent": cpu,
                "status": "warning" if cpu > SystemService.CPU_WARNING_THRESHOLD else "ok",
            },
            "memory": {
                "percent": memory,
                "status": "warning" if memory > SystemService.MEMORY_WARNING_THRESHOLD else "ok",
            },
        }

    @staticmethod
    async def get_health(db: AsyncSession, realtime: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Overall status:
        - healthy: database and Redis both reachable
        - degraded: database up, Redis (rate limiting, workers) down
        - unhealthy: database down
        """
        db_check, redis_check = await asyncio.gather(
            SystemService.check_database(db),
            SystemService.check_redis(),
        )

        if db_check["status"] != "healthy":
            status = "unhealthy"
        elif redis_check["status"] != "healthy":
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "environment": settings.APP_ENV,
            "version": settings.APP_VERSION,
            "timestamp": datetime.utcnow().isoformat(),
            "components": {"database": db_check, "redis": redis_check},
            "system": SystemService.get_system_metrics(),
            "realtime": realtime or {},
        }
