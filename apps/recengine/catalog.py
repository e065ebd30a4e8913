# apps/recengine/catalog.py
"""Tabular readers over the catalog tables."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import case, func, or_, select, union
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import cache
from config import settings
from errors import NotFoundError
from models import (
    CastMember,
    CrewMember,
    Genre,
    Post,
    PostGenre,
    SubscriptionProvider,
    User,
    UserAvoidGenre,
    UserGenre,
    UserPostInteraction,
    UserSubscription,
    UserTrailerInteraction,
)
from records import (
    CastCredit,
    CrewCredit,
    GenreInteractionStat,
    GenrePreference,
    PostEngagement,
    PostInteraction,
    PostRecord,
    TrailerEngagement,
    TrailerInteraction,
    UserRecord,
    cast_from_row,
    crew_from_row,
    duration_seconds,
    format_timestamp,
    post_from_row,
    post_interaction_from_row,
    trailer_interaction_from_row,
    user_from_row,
)

log = logging.getLogger("catalog")

GENRE_CACHE_NAMESPACE = "genres:count"


def user_exists(db: Session, user_id: int) -> bool:
    return db.get(User, user_id) is not None


def load_user(db: Session, user_id: int) -> UserRecord:
    row = db.get(User, user_id)
    if row is None:
        raise NotFoundError("user", user_id)
    return user_from_row(row)


def load_post(db: Session, post_id: int) -> PostRecord:
    row = db.get(Post, post_id)
    if row is None:
        raise NotFoundError("post", post_id)
    return post_from_row(row)


def hydrate_posts(db: Session, post_ids: Sequence[int]) -> List[PostRecord]:
    """Full post records in exactly the order of ``post_ids``. Unknown ids are dropped."""
    ids = list(post_ids)
    if not ids:
        return []
    rows = db.query(Post).filter(Post.post_id.in_(set(ids))).all()
    by_id = {r.post_id: r for r in rows}
    return [post_from_row(by_id[pid]) for pid in ids if pid in by_id]


def all_user_ids(db: Session) -> List[int]:
    return [uid for (uid,) in db.query(User.user_id).order_by(User.user_id).all()]


def all_post_ids(db: Session) -> List[int]:
    return [pid for (pid,) in db.query(Post.post_id).order_by(Post.post_id).all()]


def trailer_post_ids(db: Session, exclude: Iterable[int] = ()) -> List[int]:
    q = db.query(Post.post_id).filter(Post.video_key.isnot(None), Post.video_key != "")
    excluded = list(exclude)
    if excluded:
        q = q.filter(Post.post_id.notin_(excluded))
    return [pid for (pid,) in q.order_by(Post.post_id).all()]


# ---------------------------------------------------------------------------
# Genres
# ---------------------------------------------------------------------------


def _count_genres(db: Session) -> int:
    try:
        return int(db.query(func.count(Genre.genre_id)).scalar() or 0) or settings.default_genre_count
    except SQLAlchemyError as exc:
        log.warning("genre_count_failed", exc_info=exc)
        db.rollback()
        return settings.default_genre_count


def total_genres(db: Session) -> int:
    return cache.read_through_int(GENRE_CACHE_NAMESPACE, lambda: _count_genres(db))


def invalidate_genre_cache() -> None:
    cache.invalidate(GENRE_CACHE_NAMESPACE)


def user_genre_preferences(db: Session, user_id: int) -> List[GenrePreference]:
    rows = (
        db.query(UserGenre.genre_id, Genre.genre_name, UserGenre.priority)
        .select_from(UserGenre)
        .join(Genre, Genre.genre_id == UserGenre.genre_id)
        .filter(UserGenre.user_id == user_id)
        .order_by(UserGenre.priority.desc(), UserGenre.genre_id)
        .all()
    )
    return [GenrePreference(genre_id=g, genre_name=n, priority=int(p or 0)) for g, n, p in rows]


def user_avoided_genres(db: Session, user_id: int) -> List[str]:
    rows = (
        db.query(Genre.genre_name)
        .join(UserAvoidGenre, UserAvoidGenre.genre_id == Genre.genre_id)
        .filter(UserAvoidGenre.user_id == user_id)
        .all()
    )
    return [name for (name,) in rows]


def genre_interaction_stats(db: Session, user_id: int) -> List[GenreInteractionStat]:
    """Per-genre interaction and like counts over all of a user's post interactions."""
    liked = func.sum(case((UserPostInteraction.like_state.is_(True), 1), else_=0))
    rows = (
        db.query(PostGenre.genre_id, func.count(), liked)
        .select_from(PostGenre)
        .join(UserPostInteraction, UserPostInteraction.post_id == PostGenre.post_id)
        .filter(UserPostInteraction.user_id == user_id)
        .group_by(PostGenre.genre_id)
        .order_by(func.count().desc(), PostGenre.genre_id)
        .all()
    )
    return [
        GenreInteractionStat(genre_id=g, interaction_count=int(c or 0), liked_count=int(l or 0))
        for g, c, l in rows
    ]


def genre_engagement_counts(db: Session, user_id: int) -> Dict[str, Dict[str, int]]:
    """genre name -> {interactions, likes, saves} for the user's post interactions."""
    rows = (
        db.query(
            Genre.genre_name,
            func.count(),
            func.sum(case((UserPostInteraction.like_state.is_(True), 1), else_=0)),
            func.sum(case((UserPostInteraction.save_state.is_(True), 1), else_=0)),
        )
        .select_from(Genre)
        .join(PostGenre, PostGenre.genre_id == Genre.genre_id)
        .join(UserPostInteraction, UserPostInteraction.post_id == PostGenre.post_id)
        .filter(UserPostInteraction.user_id == user_id)
        .group_by(Genre.genre_name)
        .all()
    )
    return {
        name: {"interactions": int(c or 0), "likes": int(l or 0), "saves": int(s or 0)}
        for name, c, l, s in rows
    }


def popular_genres(db: Session, limit: int = 5) -> List[tuple]:
    rows = (
        db.query(Genre.genre_name, func.count())
        .join(PostGenre, PostGenre.genre_id == Genre.genre_id)
        .group_by(Genre.genre_name)
        .order_by(func.count().desc(), Genre.genre_name)
        .limit(limit)
        .all()
    )
    return [(name, int(count)) for name, count in rows]


def post_genres(db: Session, post_id: int) -> List[tuple]:
    rows = (
        db.query(Genre.genre_id, Genre.genre_name)
        .join(PostGenre, PostGenre.genre_id == Genre.genre_id)
        .filter(PostGenre.post_id == post_id)
        .order_by(Genre.genre_id)
        .all()
    )
    return [(gid, name) for gid, name in rows]


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------


def post_cast(db: Session, tmdb_id: int, limit: Optional[int] = None) -> List[CastCredit]:
    """Billed cast for a title, in billing order."""
    q = (
        db.query(CastMember)
        .filter(CastMember.tmdb_id == tmdb_id)
        .order_by(CastMember.order_index.is_(None), CastMember.order_index, CastMember.id)
    )
    if limit:
        q = q.limit(limit)
    return [cast_from_row(r) for r in q.all()]


def post_crew(db: Session, tmdb_id: int) -> List[CrewCredit]:
    rows = db.query(CrewMember).filter(CrewMember.tmdb_id == tmdb_id).order_by(CrewMember.id).all()
    return [crew_from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Interactions
# ---------------------------------------------------------------------------


def recent_post_interactions(
    db: Session, user_id: int, limit: Optional[int] = None
) -> List[PostInteraction]:
    limit = limit or settings.interaction_history_limit
    rows = (
        db.query(UserPostInteraction)
        .filter(UserPostInteraction.user_id == user_id)
        .order_by(UserPostInteraction.start_timestamp.desc(), UserPostInteraction.interaction_id.desc())
        .limit(limit)
        .all()
    )
    return [post_interaction_from_row(r) for r in rows]


def recent_trailer_interactions(
    db: Session, user_id: int, limit: Optional[int] = None
) -> List[TrailerInteraction]:
    limit = limit or settings.interaction_history_limit
    rows = (
        db.query(UserTrailerInteraction)
        .filter(UserTrailerInteraction.user_id == user_id)
        .order_by(
            UserTrailerInteraction.start_timestamp.desc(),
            UserTrailerInteraction.interaction_id.desc(),
        )
        .limit(limit)
        .all()
    )
    return [trailer_interaction_from_row(r) for r in rows]


def _flag_count(column, when=True):
    return func.sum(case((column.is_(when), 1), else_=0))


def _total_duration(db: Session, model, post_id: int) -> float:
    # timestamps are strings; only the two columns are streamed
    rows = (
        db.query(model.start_timestamp, model.end_timestamp)
        .filter(model.post_id == post_id)
        .yield_per(500)
    )
    return sum(duration_seconds(start, end) for start, end in rows)


def post_engagement(db: Session, post_id: int) -> PostEngagement:
    m = UserPostInteraction
    views, likes, saves = (
        db.query(func.count(), _flag_count(m.like_state), _flag_count(m.save_state))
        .select_from(m)
        .filter(m.post_id == post_id)
        .one()
    )
    if not views:
        return PostEngagement()
    return PostEngagement(
        avg_duration=_total_duration(db, m, post_id) / views,
        total_views=int(views),
        like_ratio=int(likes or 0) / views,
        save_ratio=int(saves or 0) / views,
    )


def trailer_engagement(db: Session, post_id: int) -> TrailerEngagement:
    m = UserTrailerInteraction
    views, likes, saves, unmuted, replays = (
        db.query(
            func.count(),
            _flag_count(m.like_state),
            _flag_count(m.save_state),
            _flag_count(m.is_muted, when=False),
            func.avg(func.coalesce(m.replay_count, 0)),
        )
        .select_from(m)
        .filter(m.post_id == post_id)
        .one()
    )
    if not views:
        return TrailerEngagement()
    return TrailerEngagement(
        avg_duration=_total_duration(db, m, post_id) / views,
        total_views=int(views),
        like_ratio=int(likes or 0) / views,
        save_ratio=int(saves or 0) / views,
        avg_replays=float(replays or 0),
        unmuted_ratio=int(unmuted or 0) / views,
    )


def interacted_post_ids(
    db: Session, user_id: int, post_ids: Sequence[int], trailers: bool = False
) -> set:
    if not post_ids:
        return set()
    model = UserTrailerInteraction if trailers else UserPostInteraction
    rows = (
        db.query(model.post_id)
        .filter(model.user_id == user_id, model.post_id.in_(list(post_ids)))
        .distinct()
        .all()
    )
    return {pid for (pid,) in rows}


def liked_or_saved_languages(db: Session, user_id: int) -> List[str]:
    """Distinct languages of liked posts followed by distinct languages of saved posts."""
    out: List[str] = []
    for flag in (UserPostInteraction.like_state, UserPostInteraction.save_state):
        rows = (
            db.query(Post.original_language)
            .join(UserPostInteraction, UserPostInteraction.post_id == Post.post_id)
            .filter(
                UserPostInteraction.user_id == user_id,
                flag.is_(True),
                Post.original_language.isnot(None),
                Post.original_language != "",
            )
            .distinct()
            .order_by(Post.original_language)
            .all()
        )
        out.extend(lang for (lang,) in rows)
    return out


def recently_active_user_ids(db: Session, since: datetime) -> List[int]:
    cutoff = format_timestamp(since)
    stmt = union(
        select(UserPostInteraction.user_id).where(UserPostInteraction.start_timestamp > cutoff),
        select(UserTrailerInteraction.user_id).where(UserTrailerInteraction.start_timestamp > cutoff),
    )
    return sorted({uid for (uid,) in db.execute(stmt).all()})


def recently_changed_post_ids(db: Session, since: datetime) -> List[int]:
    rows = (
        db.query(Post.post_id)
        .filter(or_(Post.created_at > since, Post.updated_at > since))
        .order_by(Post.post_id)
        .all()
    )
    return [pid for (pid,) in rows]


def activity_cutoff(now: datetime) -> datetime:
    return now - timedelta(hours=settings.refresh_activity_window_hours)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


def user_subscription_names(db: Session, user_id: int) -> List[str]:
    rows = (
        db.query(SubscriptionProvider.provider_name)
        .join(UserSubscription, UserSubscription.provider_id == SubscriptionProvider.provider_id)
        .filter(UserSubscription.user_id == user_id)
        .order_by(UserSubscription.priority.desc(), SubscriptionProvider.provider_name)
        .all()
    )
    return [name for (name,) in rows]


def user_subscriptions(db: Session, user_id: int) -> List[dict]:
    rows = (
        db.query(
            UserSubscription.provider_id,
            UserSubscription.priority,
            SubscriptionProvider.provider_name,
        )
        .select_from(UserSubscription)
        .join(SubscriptionProvider, SubscriptionProvider.provider_id == UserSubscription.provider_id)
        .filter(UserSubscription.user_id == user_id)
        .order_by(UserSubscription.priority.desc())
        .all()
    )
    return [
        {"providerId": pid, "priority": int(prio or 0), "providerName": name}
        for pid, prio, name in rows
    ]


def post_genre_engagement(db: Session, post_id: int) -> Dict[int, Dict[str, int]]:
    """genre id -> {interactions, likes} on this post by users who prefer that genre."""
    rows = (
        db.query(
            UserGenre.genre_id,
            func.count(),
            func.sum(case((UserPostInteraction.like_state.is_(True), 1), else_=0)),
        )
        .select_from(UserPostInteraction)
        .join(UserGenre, UserGenre.user_id == UserPostInteraction.user_id)
        .join(PostGenre, (PostGenre.genre_id == UserGenre.genre_id) & (PostGenre.post_id == post_id))
        .filter(UserPostInteraction.post_id == post_id)
        .group_by(UserGenre.genre_id)
        .all()
    )
    return {gid: {"interactions": int(c or 0), "likes": int(l or 0)} for gid, c, l in rows}
