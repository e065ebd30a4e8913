# apps/recengine/profiler.py
"""Descriptive behavior profiles with read-repair on staleness."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import catalog
from config import settings
from errors import NotFoundError, PersistenceFailure
from models import UserBehaviorProfile
from records import PostInteraction, TrailerInteraction

log = logging.getLogger("profiler")

METRIC_DEFAULTS: Dict[str, float] = {
    "post_like_ratio": 0.5,
    "post_save_ratio": 0.5,
    "post_comment_ratio": 0.2,
    "avg_post_engagement_duration": 60.0,
    "trailer_like_ratio": 0.5,
    "trailer_save_ratio": 0.5,
    "trailer_comment_ratio": 0.2,
    "avg_trailer_replay_count": 1.0,
    "trailer_mute_ratio": 0.2,
    "avg_trailer_engagement_duration": 30.0,
    "post_preference_ratio": 0.5,
    "trailer_preference_ratio": 0.5,
}
METRIC_NAMES = frozenset(METRIC_DEFAULTS)

DEFAULT_DOMINANT_TYPE = "content_focused"


@dataclass
class BehaviorProfile:
    user_id: int
    metrics: Dict[str, float] = field(default_factory=dict)
    dominant_type: str = DEFAULT_DOMINANT_TYPE
    updated_at: Optional[datetime] = None


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_metrics(
    post_interactions: Sequence[PostInteraction],
    trailer_interactions: Sequence[TrailerInteraction],
) -> Dict[str, float]:
    metrics = dict(METRIC_DEFAULTS)

    if post_interactions:
        n = len(post_interactions)
        metrics["post_like_ratio"] = sum(1 for i in post_interactions if i.like_state) / n
        metrics["post_save_ratio"] = sum(1 for i in post_interactions if i.save_state) / n
        metrics["post_comment_ratio"] = (
            sum(1 for i in post_interactions if i.comment_button_pressed) / n
        )
        metrics["avg_post_engagement_duration"] = (
            sum(i.duration_seconds for i in post_interactions) / n
        )

    if trailer_interactions:
        n = len(trailer_interactions)
        metrics["trailer_like_ratio"] = sum(1 for i in trailer_interactions if i.like_state) / n
        metrics["trailer_save_ratio"] = sum(1 for i in trailer_interactions if i.save_state) / n
        metrics["trailer_comment_ratio"] = (
            sum(1 for i in trailer_interactions if i.comment_button_pressed) / n
        )
        metrics["avg_trailer_replay_count"] = sum(i.replay_count for i in trailer_interactions) / n
        metrics["trailer_mute_ratio"] = sum(1 for i in trailer_interactions if i.is_muted) / n
        metrics["avg_trailer_engagement_duration"] = (
            sum(i.duration_seconds for i in trailer_interactions) / n
        )

    total = len(post_interactions) + len(trailer_interactions)
    if total:
        metrics["post_preference_ratio"] = len(post_interactions) / total
        metrics["trailer_preference_ratio"] = len(trailer_interactions) / total

    return metrics


def dominant_type(metrics: Dict[str, float]) -> str:
    if not metrics:
        return DEFAULT_DOMINANT_TYPE
    scores = [
        ("content_saver", metrics.get("post_save_ratio", 0.0) + metrics.get("trailer_save_ratio", 0.0)),
        ("content_liker", metrics.get("post_like_ratio", 0.0) + metrics.get("trailer_like_ratio", 0.0)),
        ("commenter", metrics.get("post_comment_ratio", 0.0) + metrics.get("trailer_comment_ratio", 0.0)),
        ("trailer_focused", metrics.get("trailer_preference_ratio", 0.0) * 2),
        ("content_focused", metrics.get("post_preference_ratio", 0.0) * 2),
    ]
    best_name, best_score = scores[0]
    for name, score in scores[1:]:
        if score > best_score:
            best_name, best_score = name, score
    if best_score <= 0:
        return DEFAULT_DOMINANT_TYPE
    return best_name


def _store(db: Session, profile: BehaviorProfile) -> None:
    try:
        row = db.get(UserBehaviorProfile, profile.user_id)
        if row:
            row.profile = dict(profile.metrics)
            row.dominant_type = profile.dominant_type
            row.updated_at = profile.updated_at
        else:
            db.add(
                UserBehaviorProfile(
                    user_id=profile.user_id,
                    profile=dict(profile.metrics),
                    dominant_type=profile.dominant_type,
                    updated_at=profile.updated_at,
                )
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure(f"could not store profile for user {profile.user_id}") from exc


def generate_profile(db: Session, user_id: int, now: Optional[datetime] = None) -> BehaviorProfile:
    """Recompute from recent interactions and upsert. Errors propagate."""
    if not catalog.user_exists(db, user_id):
        raise NotFoundError("user", user_id)
    now = _utc(now or datetime.now(timezone.utc))
    posts = catalog.recent_post_interactions(db, user_id)
    trailers = catalog.recent_trailer_interactions(db, user_id)
    metrics = compute_metrics(posts, trailers)
    profile = BehaviorProfile(
        user_id=user_id,
        metrics=metrics,
        dominant_type=dominant_type(metrics),
        updated_at=now,
    )
    _store(db, profile)
    log.info("profile_generated user_id=%s dominant_type=%s", user_id, profile.dominant_type)
    return profile


def _read_profile(db: Session, user_id: int) -> Optional[BehaviorProfile]:
    row = db.get(UserBehaviorProfile, user_id)
    if row is None:
        return None
    metrics = {k: float(v) for k, v in (row.profile or {}).items() if k in METRIC_NAMES}
    return BehaviorProfile(
        user_id=row.user_id,
        metrics=metrics,
        dominant_type=row.dominant_type,
        updated_at=_utc(row.updated_at),
    )


def is_stale(profile: BehaviorProfile, now: datetime) -> bool:
    if profile.updated_at is None:
        return True
    return _utc(now) - profile.updated_at >= timedelta(hours=settings.profile_stale_hours)


def get_profile(db: Session, user_id: int, now: Optional[datetime] = None) -> BehaviorProfile:
    now = _utc(now or datetime.now(timezone.utc))
    try:
        cached = _read_profile(db, user_id)
    except (SQLAlchemyError, TypeError, ValueError, AttributeError) as exc:
        log.warning("profile_read_failed user_id=%s", user_id, exc_info=exc)
        db.rollback()
        cached = None

    if cached is not None and not is_stale(cached, now):
        return cached
    if cached is not None:
        log.info("profile_stale user_id=%s", user_id)
    return generate_profile(db, user_id, now=now)


def prune_profiles(db: Session, older_than_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
    days = older_than_days if older_than_days is not None else settings.profile_retention_days
    cutoff = _utc(now or datetime.now(timezone.utc)) - timedelta(days=days)
    try:
        deleted = (
            db.query(UserBehaviorProfile)
            .filter(UserBehaviorProfile.updated_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("could not prune behavior profiles") from exc
    log.info("profiles_pruned count=%s older_than_days=%s", deleted, days)
    return int(deleted or 0)
