# apps/recengine/health.py
from __future__ import annotations

import logging
from typing import Any, Dict

from cache import healthcheck as cache_healthcheck
from config import settings
from db import healthcheck as db_healthcheck
from ranking_client import get_client

log = logging.getLogger("health")


def check_database() -> Dict[str, Any]:
    """Check if database connection is working."""
    try:
        db_healthcheck()
        return {"ok": True}
    except Exception as e:
        log.warning("Database health check failed: %s", e)
        return {"ok": False, "error": str(e)}


def check_cache() -> Dict[str, Any]:
    """Check if Redis is reachable. Without it the genre cache and run locks degrade."""
    try:
        if not cache_healthcheck():
            raise RuntimeError("Redis ping returned falsy response")
        return {"ok": True}
    except Exception as e:
        log.warning("Cache health check failed: %s", e)
        return {"ok": False, "error": str(e)}


def check_ranking(skip: bool = False) -> Dict[str, Any]:
    """Ranking service is optional: requests fall back to vector search without it."""
    url = (settings.ranking_service_url or "").strip()
    if not url:
        return {"ok": True, "skipped": True, "reason": "ranking service URL not configured"}
    if skip:
        return {"ok": True, "skipped": True, "reason": "optional check skipped"}
    reachable = get_client().healthcheck()
    if not reachable:
        log.warning("Ranking service health check failed: %s", url)
    return {"ok": True, "reachable": reachable, "optional": True}


def collect_health_status(include_optional: bool = True) -> Dict[str, Any]:
    """
    Run all health checks and return overall status.

    Required services: database
    Degradable: cache (Redis)
    Optional: ranking service
    """
    database = check_database()
    cache = check_cache()
    ranking = check_ranking(skip=not include_optional)

    return {
        "ok": bool(database.get("ok", False)),
        "checks": {
            "database": database,
            "cache": cache,
            "ranking": ranking,
        },
    }


def readiness_check() -> Dict[str, Any]:
    database = check_database()
    if not database.get("ok", False):
        return {"status": "not_ready", "database": database}
    return {"status": "ready"}
