# apps/recengine/scheduler.py
import json
import time
import uuid
import threading
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import redis
from fastapi import FastAPI, Response

import catalog
import metadata
import preferences
import profiler
import vector_init
from cache import redis_client
from config import settings
from db import SessionLocal
from health import collect_health_status, readiness_check
from schemas import RefreshSummary

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("scheduler")

app = FastAPI(title="Recengine Refresh Worker")

_stop_event = threading.Event()
_thread: Optional[threading.Thread] = None

DAILY_JOB = "daily"
WEEKLY_JOB = "weekly"

USER_KIND = "user"
POST_KIND = "post"

# Upper bound on a single sleep so shutdown and clock changes are noticed.
_MAX_SLEEP_SECONDS = 60


def _lock_key(job: str) -> str:
    return f"lock:refresh:{job}"


def acquire_lock(job: str, worker_id: str, ttl_ms: int) -> bool:
    """SET NX PX guard against overlapping runs.

    Returns False only when another worker holds the lock. An unreachable
    Redis lets the run go ahead since every refresh step is an upsert.
    """
    try:
        ok = redis_client.set(_lock_key(job), worker_id, nx=True, px=ttl_ms)
        return bool(ok)
    except redis.RedisError as exc:
        log.warning("refresh_lock_unavailable job=%s: %s", job, exc)
        return True


def release_lock(job: str, worker_id: str) -> None:
    try:
        val = redis_client.get(_lock_key(job))
        if val == worker_id:
            redis_client.delete(_lock_key(job))
    except redis.RedisError as exc:
        log.warning("refresh_lock_release_failed job=%s: %s", job, exc)


@dataclass
class RefreshResult:
    kind: str
    entity_id: int
    ok: bool
    error: Optional[str] = None


def refresh_user(user_id: int, now: Optional[datetime] = None) -> RefreshResult:
    """Vector, behavior profile, language preferences and metadata for one user."""
    db = SessionLocal()
    try:
        vector_init.refresh_user_vector(db, user_id)
        profiler.generate_profile(db, user_id, now=now)
        preferences.update_language_preferences(db, user_id, now=now)
        metadata.generate_user_metadata(db, user_id)
        return RefreshResult(USER_KIND, user_id, True)
    except Exception as exc:
        db.rollback()
        log.exception("refresh_user_failed user_id=%s", user_id)
        return RefreshResult(USER_KIND, user_id, False, str(exc))
    finally:
        db.close()


def refresh_post(post_id: int) -> RefreshResult:
    db = SessionLocal()
    try:
        vector_init.refresh_post_vector(db, post_id)
        metadata.generate_post_metadata(db, post_id)
        return RefreshResult(POST_KIND, post_id, True)
    except Exception as exc:
        db.rollback()
        log.exception("refresh_post_failed post_id=%s", post_id)
        return RefreshResult(POST_KIND, post_id, False, str(exc))
    finally:
        db.close()


def _summarize(job: str, results: List[RefreshResult]) -> RefreshSummary:
    failures = [
        {"kind": r.kind, "entityId": r.entity_id, "error": r.error}
        for r in results
        if not r.ok
    ]
    return RefreshSummary(
        job=job,
        total=len(results),
        succeeded=len(results) - len(failures),
        failed=len(failures),
        failures=failures,
    )


def run_daily_refresh(
    now: Optional[datetime] = None, max_workers: Optional[int] = None
) -> RefreshSummary:
    """Refresh everything touched in the activity window.

    Users with a post or trailer interaction since the cutoff and posts created
    or updated since the cutoff each become one task on the pool. A failed task
    is recorded in the summary; it never stops the others.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = catalog.activity_cutoff(now)
    t0 = time.time()

    db = SessionLocal()
    try:
        user_ids = catalog.recently_active_user_ids(db, cutoff)
        post_ids = catalog.recently_changed_post_ids(db, cutoff)
    finally:
        db.close()

    log.info(
        json.dumps(
            {"step": "daily_refresh_start", "users": len(user_ids), "posts": len(post_ids)}
        )
    )

    workers = max(1, max_workers or settings.refresh_max_workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(refresh_user, uid, now) for uid in user_ids]
        futures += [pool.submit(refresh_post, pid) for pid in post_ids]
        results = [f.result() for f in futures]

    summary = _summarize(DAILY_JOB, results)
    dt = int((time.time() - t0) * 1000)
    log.info(
        json.dumps(
            {
                "step": "daily_refresh",
                "duration_ms": dt,
                "total": summary.total,
                "failed": summary.failed,
            }
        )
    )
    return summary


def run_weekly_refresh(now: Optional[datetime] = None) -> dict:
    """Language preferences for every user, then prune old behavior profiles.

    The two steps are independent; a failing step is logged and reported
    under ``failed_steps`` with a ``None`` result, and the other still runs.
    """
    now = now or datetime.now(timezone.utc)
    t0 = time.time()
    languages = None
    pruned = None
    failed_steps: List[str] = []
    db = SessionLocal()
    try:
        try:
            languages = preferences.update_all_language_preferences(db)
        except Exception:
            db.rollback()
            failed_steps.append("languages")
            log.exception("weekly_languages_failed")
        try:
            pruned = profiler.prune_profiles(db, now=now)
        except Exception:
            db.rollback()
            failed_steps.append("prune_profiles")
            log.exception("weekly_prune_failed")
    finally:
        db.close()
    dt = int((time.time() - t0) * 1000)
    log.info(
        json.dumps(
            {
                "step": "weekly_refresh",
                "duration_ms": dt,
                "languages": languages,
                "pruned": pruned,
                "failed_steps": failed_steps,
            }
        )
    )
    return {"languages": languages, "pruned_profiles": pruned, "failed_steps": failed_steps}



def next_daily_run(now: datetime, hour: Optional[int] = None) -> datetime:
    hour = settings.daily_refresh_hour if hour is None else hour
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def next_weekly_run(
    now: datetime, weekday: Optional[int] = None, hour: Optional[int] = None
) -> datetime:
    weekday = settings.weekly_refresh_weekday if weekday is None else weekday
    hour = settings.weekly_refresh_hour if hour is None else hour
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    candidate += timedelta(days=(weekday - now.weekday()) % 7)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def run_guarded(job: str, fn: Callable[[], object]) -> bool:
    """Run ``fn`` under the job lock. Returns False when another run holds it."""
    worker_id = str(uuid.uuid4())
    if not acquire_lock(job, worker_id, settings.refresh_lock_ttl_ms):
        log.info(json.dumps({"step": "skip_locked", "job": job}))
        return False
    try:
        fn()
    finally:
        release_lock(job, worker_id)
    return True


def _scheduler_loop():
    log.info("Refresh scheduler started")
    now = datetime.now().astimezone()
    next_daily = next_daily_run(now)
    next_weekly = next_weekly_run(now)
    log.info(
        json.dumps(
            {
                "step": "schedule",
                "next_daily": next_daily.isoformat(),
                "next_weekly": next_weekly.isoformat(),
            }
        )
    )

    while not _stop_event.is_set():
        now = datetime.now().astimezone()
        if now >= next_daily:
            try:
                run_guarded(DAILY_JOB, run_daily_refresh)
            except Exception:
                log.exception("daily_refresh_failed")
            next_daily = next_daily_run(datetime.now().astimezone())
            continue
        if now >= next_weekly:
            try:
                run_guarded(WEEKLY_JOB, run_weekly_refresh)
            except Exception:
                log.exception("weekly_refresh_failed")
            next_weekly = next_weekly_run(datetime.now().astimezone())
            continue
        wait = min(next_daily, next_weekly) - now
        _stop_event.wait(timeout=min(_MAX_SLEEP_SECONDS, max(1.0, wait.total_seconds())))

    log.info("Refresh scheduler stopped")


def _bootstrap() -> None:
    if not settings.bootstrap_on_startup:
        return
    try:
        created = vector_init.bootstrap()
        log.info(json.dumps({"step": "bootstrap", **created}))
    except Exception as exc:
        log.warning("Startup bootstrap failed: %s", exc)


@app.on_event("startup")
def on_startup():
    global _thread
    _bootstrap()
    if not settings.scheduler_enabled:
        log.info("Refresh scheduler disabled")
        return
    _stop_event.clear()
    _thread = threading.Thread(target=_scheduler_loop, name="refresh-scheduler", daemon=True)
    _thread.start()


@app.on_event("shutdown")
def on_shutdown():
    _stop_event.set()


@app.get("/healthz")
def healthz(response: Response, include_optional: bool = True):
    status = collect_health_status(include_optional=include_optional)
    if not status["ok"]:
        response.status_code = 503
    return status


@app.get("/ready")
def ready(response: Response):
    """
    Kubernetes readiness/liveness check.
    Returns 200 if healthy, 503 if not.
    """
    status = readiness_check()
    if status["status"] != "ready":
        response.status_code = 503
    return status


@app.post("/jobs/{job}")
def trigger(job: str, response: Response):
    """Run a refresh job now, in the request thread."""
    if job == DAILY_JOB:
        fn = run_daily_refresh
    elif job == WEEKLY_JOB:
        fn = run_weekly_refresh
    else:
        response.status_code = 404
        return {"ok": False, "error": f"unknown job: {job}"}
    if not run_guarded(job, fn):
        response.status_code = 409
        return {"ok": False, "error": "job already running"}
    return {"ok": True, "job": job}
