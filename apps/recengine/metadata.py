# apps/recengine/metadata.py
"""Per-entity vector metadata: structured weights, comment and a nested payload.

Payload writes replace the stored document unless ``merge=True``, in which
case ``merge_payload`` folds the update into what is stored. Click recording
and metadata generation always merge so sibling keys survive.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import catalog
from errors import NotFoundError, PersistenceFailure
from models import (
    InfoTimestamp,
    MoreInformation,
    Post,
    PostVectorMetadata,
    User,
    UserVectorMetadata,
)
from records import format_timestamp
from schemas import InfoButtonClicksPost, InfoButtonClicksUser

log = logging.getLogger("metadata")

CLICKS_KEY = "infoButtonClicks"
CLICKS_ALIAS_KEY = "mediaClicks"
CLICKABLE_TYPES = ("movie", "tv")
CLICK_USER_ID_LIMIT = 100
TOP_CAST_LIMIT = 10
KEY_CREW_ROLES = ("director", "writer", "producer", "creator", "executive producer", "animator")

_UNSET = object()


@dataclass
class MetadataResult:
    comment: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserVectorWeights:
    user_id: int
    interest_weights: Dict[str, float] = field(default_factory=dict)
    language_weights: Dict[str, Any] = field(default_factory=dict)
    region: Optional[str] = None
    demographic_segment: Optional[str] = None


@dataclass
class PostVectorWeights:
    post_id: int
    tmdb_id: Optional[int] = None
    type: Optional[str] = None
    genre_weights: Dict[str, float] = field(default_factory=dict)
    demographic_weights: Dict[str, Any] = field(default_factory=dict)
    region_weights: Dict[str, float] = field(default_factory=dict)


def merge_payload(base: Optional[Dict[str, Any]], update: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Recursive merge. Nested dicts merge; any other value in ``update`` wins."""
    out = copy.deepcopy(base) if isinstance(base, dict) else {}
    for key, value in (update or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = merge_payload(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _readable_payload(raw) -> Dict[str, Any]:
    return dict(raw) if isinstance(raw, dict) else {}


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Store / read
# ---------------------------------------------------------------------------


def _store(db: Session, model, key: str, entity_id: int, comment, payload, merge: bool, extra=None) -> None:
    try:
        row = db.get(model, entity_id)
        if row is None:
            row = model(**{key: entity_id})
            db.add(row)
            stored = {}
        else:
            stored = _readable_payload(row.more_information)

        if comment is not None:
            row.comment = comment
        if payload is not None:
            row.more_information = merge_payload(stored, payload) if merge else copy.deepcopy(payload)
        for attr, value in (extra or {}).items():
            setattr(row, attr, value)
        row.updated_at = _now()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log.error("metadata_store_failed table=%s id=%s", model.__tablename__, entity_id, exc_info=exc)
        raise PersistenceFailure(f"could not store metadata for {key}={entity_id}") from exc


def store_user_metadata(
    db: Session,
    user_id: int,
    comment: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    merge: bool = False,
) -> None:
    _store(db, UserVectorMetadata, "user_id", user_id, comment, payload, merge)


def store_post_metadata(
    db: Session,
    post_id: int,
    comment: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    merge: bool = False,
) -> None:
    extra = {}
    if db.get(PostVectorMetadata, post_id) is None:
        post = db.get(Post, post_id)
        if post is not None:
            extra = {"tmdb_id": post.tmdb_id, "type": post.type}
    _store(db, PostVectorMetadata, "post_id", post_id, comment, payload, merge, extra=extra)


def _get(db: Session, model, entity_id: int) -> Optional[MetadataResult]:
    row = db.get(model, entity_id)
    if row is None:
        return None
    return MetadataResult(comment=row.comment, payload=_readable_payload(row.more_information))


def get_user_metadata(db: Session, user_id: int) -> Optional[MetadataResult]:
    return _get(db, UserVectorMetadata, user_id)


def get_post_metadata(db: Session, post_id: int) -> Optional[MetadataResult]:
    return _get(db, PostVectorMetadata, post_id)


def get_user_vector_weights(db: Session, user_id: int) -> Optional[UserVectorWeights]:
    row = db.get(UserVectorMetadata, user_id)
    if row is None:
        return None
    return UserVectorWeights(
        user_id=row.user_id,
        interest_weights=_readable_payload(row.interest_weights),
        language_weights=_readable_payload(row.language_weights),
        region=row.region,
        demographic_segment=row.demographic_segment,
    )


def get_post_vector_weights(db: Session, post_id: int) -> Optional[PostVectorWeights]:
    row = db.get(PostVectorMetadata, post_id)
    if row is None:
        return None
    return PostVectorWeights(
        post_id=row.post_id,
        tmdb_id=row.tmdb_id,
        type=row.type,
        genre_weights=_readable_payload(row.genre_weights),
        demographic_weights=_readable_payload(row.demographic_weights),
        region_weights=_readable_payload(row.region_weights),
    )


def update_user_vector_weights(
    db: Session,
    user_id: int,
    interest_weights=_UNSET,
    language_weights=_UNSET,
    region=_UNSET,
    demographic_segment=_UNSET,
) -> None:
    extra = {
        attr: value
        for attr, value in (
            ("interest_weights", interest_weights),
            ("language_weights", language_weights),
            ("region", region),
            ("demographic_segment", demographic_segment),
        )
        if value is not _UNSET
    }
    _store(db, UserVectorMetadata, "user_id", user_id, None, None, False, extra=extra)


def update_post_vector_weights(
    db: Session,
    post_id: int,
    tmdb_id=_UNSET,
    type=_UNSET,
    genre_weights=_UNSET,
    demographic_weights=_UNSET,
    region_weights=_UNSET,
) -> None:
    extra = {
        attr: value
        for attr, value in (
            ("tmdb_id", tmdb_id),
            ("type", type),
            ("genre_weights", genre_weights),
            ("demographic_weights", demographic_weights),
            ("region_weights", region_weights),
        )
        if value is not _UNSET
    }
    _store(db, PostVectorMetadata, "post_id", post_id, None, None, False, extra=extra)


# ---------------------------------------------------------------------------
# Info-button clicks
# ---------------------------------------------------------------------------


def user_click_summary(db: Session, user_id: int) -> InfoButtonClicksUser:
    total, last = (
        db.query(func.count(func.distinct(MoreInformation.id)), func.max(InfoTimestamp.end_timestamp))
        .select_from(MoreInformation)
        .outerjoin(InfoTimestamp, InfoTimestamp.info_id == MoreInformation.id)
        .filter(MoreInformation.user_id == user_id, MoreInformation.type.in_(CLICKABLE_TYPES))
        .one()
    )
    per_post = (
        db.query(MoreInformation.tmdb_id, func.count(MoreInformation.id))
        .filter(MoreInformation.user_id == user_id, MoreInformation.type.in_(CLICKABLE_TYPES))
        .group_by(MoreInformation.tmdb_id)
        .all()
    )
    return InfoButtonClicksUser(
        total=int(total or 0),
        lastClicked=str(last or ""),
        postClicks={str(tmdb_id): int(count) for tmdb_id, count in per_post},
    )


def post_click_summary(db: Session, tmdb_id: int) -> InfoButtonClicksPost:
    total, unique_users, last = (
        db.query(
            func.count(func.distinct(MoreInformation.id)),
            func.count(func.distinct(MoreInformation.user_id)),
            func.max(InfoTimestamp.end_timestamp),
        )
        .select_from(MoreInformation)
        .outerjoin(InfoTimestamp, InfoTimestamp.info_id == MoreInformation.id)
        .filter(MoreInformation.tmdb_id == tmdb_id, MoreInformation.type.in_(CLICKABLE_TYPES))
        .one()
    )
    user_ids = (
        db.query(MoreInformation.user_id)
        .filter(MoreInformation.tmdb_id == tmdb_id, MoreInformation.type.in_(CLICKABLE_TYPES))
        .distinct()
        .order_by(MoreInformation.user_id)
        .limit(CLICK_USER_ID_LIMIT)
        .all()
    )
    return InfoButtonClicksPost(
        count=int(total or 0),
        uniqueUserCount=int(unique_users or 0),
        lastClicked=str(last or ""),
        userIds=[uid for (uid,) in user_ids],
    )


def _click_payload(summary) -> Dict[str, Any]:
    data = summary.model_dump()
    return {CLICKS_KEY: data, CLICKS_ALIAS_KEY: copy.deepcopy(data)}


def record_info_button_click(
    db: Session,
    user_id: int,
    post_id: int,
    started_at: Optional[datetime] = None,
    ended_at: Optional[datetime] = None,
) -> int:
    """Append a click event, then fold the refreshed aggregates into both payloads.

    The event insert propagates failures. Aggregate folding is best effort.
    Returns the new event id.
    """
    post = db.get(Post, post_id)
    if post is None:
        raise NotFoundError("post", post_id)
    if db.get(User, user_id) is None:
        raise NotFoundError("user", user_id)

    started_at = started_at or _now()
    ended_at = ended_at or started_at
    try:
        event = MoreInformation(tmdb_id=post.tmdb_id, type=post.type, user_id=user_id)
        db.add(event)
        db.flush()
        db.add(
            InfoTimestamp(
                info_id=event.id,
                session_index=0,
                start_timestamp=format_timestamp(started_at),
                end_timestamp=format_timestamp(ended_at),
            )
        )
        db.commit()
        event_id = event.id
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure(f"could not record click user={user_id} post={post_id}") from exc

    try:
        store_user_metadata(
            db, user_id, payload=_click_payload(user_click_summary(db, user_id)), merge=True
        )
        store_post_metadata(
            db, post_id, payload=_click_payload(post_click_summary(db, post.tmdb_id)), merge=True
        )
    except (SQLAlchemyError, PersistenceFailure) as exc:
        db.rollback()
        log.warning("click_aggregate_failed user_id=%s post_id=%s", user_id, post_id, exc_info=exc)

    log.info("info_button_click user_id=%s post_id=%s event_id=%s", user_id, post_id, event_id)
    return event_id


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def viewer_demographics(db: Session, tmdb_id: int) -> Dict[str, int]:
    """region -> click count among users who opened this title's info panel."""
    rows = (
        db.query(User.region, func.count(func.distinct(MoreInformation.id)))
        .select_from(MoreInformation)
        .join(User, User.user_id == MoreInformation.user_id)
        .filter(MoreInformation.tmdb_id == tmdb_id, MoreInformation.type.in_(CLICKABLE_TYPES))
        .group_by(User.region)
        .all()
    )
    return {region: int(count) for region, count in rows if region}


def post_genre_weights(db: Session, post_id: int) -> Dict[str, float]:
    genres = catalog.post_genres(db, post_id)
    if not genres:
        return {"default": 1.0}
    engagement = catalog.post_genre_engagement(db, post_id)
    weights: Dict[str, float] = {}
    for genre_id, name in genres:
        stats = engagement.get(genre_id)
        if stats and stats["interactions"] > 0:
            weights[name] = 0.8 + (stats["likes"] / stats["interactions"]) * 0.4
        else:
            weights[name] = 1.0
    return weights


def cast_payload(db: Session, tmdb_id: int) -> List[Dict[str, Any]]:
    return [
        {
            "id": c.person_id,
            "name": c.name,
            "character": c.character,
            "popularity": c.popularity,
            "profilePath": c.profile_path,
        }
        for c in catalog.post_cast(db, tmdb_id, limit=TOP_CAST_LIMIT)
    ]


def crew_payload(db: Session, tmdb_id: int) -> Dict[str, List[Dict[str, Any]]]:
    """Key crew grouped by lower-cased job. Roles with nobody are left out."""
    by_role: Dict[str, List[Dict[str, Any]]] = {}
    for member in catalog.post_crew(db, tmdb_id):
        role = member.job.strip().lower()
        if role not in KEY_CREW_ROLES:
            continue
        by_role.setdefault(role, []).append(
            {
                "id": member.person_id,
                "name": member.name,
                "department": member.department,
                "profilePath": member.profile_path,
            }
        )
    return {role: by_role[role] for role in KEY_CREW_ROLES if role in by_role}


def interest_weights(db: Session, user_id: int) -> Dict[str, float]:
    """Genre name -> interest weight from explicit, implicit and avoided genres.

    Explicit priorities map to 0.5-1.0, interaction volume to 0.2-0.9, and a
    genre present in both blends 60/40. Avoided genres drop to 0.1. With no
    signal at all the five most common catalog genres get 0.4-0.7.
    """
    weights: Dict[str, float] = {}

    explicit = catalog.user_genre_preferences(db, user_id)
    if explicit:
        max_priority = max(p.priority for p in explicit) or 10
        for pref in explicit:
            weights[pref.genre_name] = 0.5 + (pref.priority / max_priority) * 0.5

    implicit = catalog.genre_engagement_counts(db, user_id)
    if implicit:
        raw = {
            name: stats["interactions"] + stats["likes"] * 2 + stats["saves"] * 3
            for name, stats in implicit.items()
        }
        max_raw = max(raw.values()) or 1
        for name, value in raw.items():
            normalized = 0.2 + (value / max_raw) * 0.7
            if name in weights:
                weights[name] = weights[name] * 0.6 + normalized * 0.4
            else:
                weights[name] = normalized

    for name in catalog.user_avoided_genres(db, user_id):
        weights[name] = 0.1

    if not weights:
        popular = catalog.popular_genres(db, limit=5)
        if popular:
            max_count = max(count for _name, count in popular) or 1
            for name, count in popular:
                weights[name] = 0.4 + (count / max_count) * 0.3
        else:
            weights["default"] = 1.0
    return weights


def generate_user_metadata(db: Session, user_id: int, comment: Optional[str] = None) -> Dict[str, Any]:
    user = catalog.load_user(db, user_id)
    subscriptions = catalog.user_subscriptions(db, user_id)

    categorical: Dict[str, Any] = {"language": user.language, "region": user.region}
    if subscriptions:
        categorical["subscriptionProviders"] = subscriptions

    interest = interest_weights(db, user_id)
    payload: Dict[str, Any] = {
        "vectorCreatedAt": _now().isoformat(),
        "categoricalFeatures": categorical,
        "preferences": {
            "movieRuntime": {"min": user.min_movie or 0, "max": user.max_movie or 180},
            "tvRuntime": {"min": user.min_tv or 0, "max": user.max_tv or 60},
            "dateRange": {"oldest": user.oldest_date, "recent": user.recent_date},
        },
        "interestWeights": interest,
    }
    payload.update(_click_payload(user_click_summary(db, user_id)))

    update_user_vector_weights(
        db, user_id, interest_weights=interest, region=user.region or None
    )
    store_user_metadata(db, user_id, comment=comment, payload=payload, merge=True)
    log.info("user_metadata_generated user_id=%s genres=%s", user_id, len(interest))
    return payload


def generate_post_metadata(db: Session, post_id: int, comment: Optional[str] = None) -> Dict[str, Any]:
    post = catalog.load_post(db, post_id)

    genres = post_genre_weights(db, post_id)
    demographics = viewer_demographics(db, post.tmdb_id)
    total = sum(demographics.values())
    regions = {region: count / total for region, count in demographics.items()} if total else {}

    payload: Dict[str, Any] = {
        "vectorCreatedAt": _now().isoformat(),
        "categoricalFeatures": {
            "language": post.original_language or "en",
            "subscriptionProvider": post.subscription,
        },
        "title": post.title,
        "type": post.type,
        "releaseDate": post.release_date,
        "voteAverage": post.vote_average,
        "genreWeights": genres,
    }
    if demographics:
        payload["viewerDemographics"] = demographics
        payload["regionWeights"] = regions
    cast = cast_payload(db, post.tmdb_id)
    if cast:
        payload["cast"] = cast
    crew = crew_payload(db, post.tmdb_id)
    if crew:
        payload["crew"] = crew
    payload.update(_click_payload(post_click_summary(db, post.tmdb_id)))

    update_post_vector_weights(
        db,
        post_id,
        tmdb_id=post.tmdb_id,
        type=post.type,
        genre_weights=genres,
        demographic_weights=demographics or None,
        region_weights=regions or None,
    )
    store_post_metadata(db, post_id, comment=comment, payload=payload, merge=True)
    log.info(
        "post_metadata_generated post_id=%s genres=%s regions=%s cast=%s",
        post_id,
        len(genres),
        len(regions),
        len(cast),
    )
    return payload
