# apps/recengine/vector_init.py
"""Vector generation for single entities and the startup backfill."""
from __future__ import annotations

import logging
from typing import Dict, Optional

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import catalog
import encoder
import vector_store
from db import SessionLocal
from errors import EngineError
from models import ENGINE_TABLES, metadata as table_metadata

log = logging.getLogger("vector_init")


def ensure_schema(db: Session) -> None:
    """Extension, engine-owned tables and their indexes. Safe to repeat."""
    vector_store.ensure_extension(db)
    table_metadata.create_all(bind=db.get_bind(), tables=ENGINE_TABLES, checkfirst=True)
    log.info("vector_schema_ready")


def build_user_vector(db: Session, user_id: int) -> np.ndarray:
    user = catalog.load_user(db, user_id)
    posts = catalog.recent_post_interactions(db, user_id)
    return encoder.encode_user(
        user,
        catalog.user_genre_preferences(db, user_id),
        posts,
        catalog.recent_trailer_interactions(db, user_id),
        total_genres=catalog.total_genres(db),
        genre_stats=catalog.genre_interaction_stats(db, user_id) if posts else (),
    )


def build_post_vector(db: Session, post_id: int, content_type: str = "posts") -> np.ndarray:
    post = catalog.load_post(db, post_id)
    return encoder.encode_post(
        post,
        total_genres=catalog.total_genres(db),
        post_engagement=catalog.post_engagement(db, post_id),
        trailer_engagement=catalog.trailer_engagement(db, post_id),
        content_type=content_type,
    )


def refresh_user_vector(db: Session, user_id: int) -> np.ndarray:
    vector = build_user_vector(db, user_id)
    vector_store.put_vector(db, vector_store.USER_SPACE, user_id, vector)
    return vector


def refresh_post_vector(db: Session, post_id: int) -> np.ndarray:
    vector = build_post_vector(db, post_id)
    vector_store.put_vector(db, vector_store.POST_SPACE, post_id, vector)
    return vector


def backfill(db: Session) -> Dict[str, int]:
    """Generate vectors for every user and post that has none yet."""
    created = {"users": 0, "posts": 0, "failed": 0}

    for user_id in catalog.all_user_ids(db):
        if vector_store.has_vector(db, vector_store.USER_SPACE, user_id):
            continue
        try:
            refresh_user_vector(db, user_id)
            created["users"] += 1
        except (EngineError, SQLAlchemyError) as exc:
            db.rollback()
            created["failed"] += 1
            log.warning("backfill_user_failed user_id=%s", user_id, exc_info=exc)

    for post_id in catalog.all_post_ids(db):
        if vector_store.has_vector(db, vector_store.POST_SPACE, post_id):
            continue
        try:
            refresh_post_vector(db, post_id)
            created["posts"] += 1
        except (EngineError, SQLAlchemyError) as exc:
            db.rollback()
            created["failed"] += 1
            log.warning("backfill_post_failed post_id=%s", post_id, exc_info=exc)

    log.info(
        "backfill_complete users=%s posts=%s failed=%s",
        created["users"], created["posts"], created["failed"],
    )
    return created


def bootstrap(db: Optional[Session] = None) -> Dict[str, int]:
    """Startup initialization: schema, then a backfill when either vector table is empty."""
    own = db is None
    db = db or SessionLocal()
    try:
        ensure_schema(db)
        users_empty = vector_store.count_vectors(db, vector_store.USER_SPACE) == 0
        posts_empty = vector_store.count_vectors(db, vector_store.POST_SPACE) == 0
        if users_empty or posts_empty:
            log.info("vector_tables_empty users=%s posts=%s", users_empty, posts_empty)
            return backfill(db)
        return {"users": 0, "posts": 0, "failed": 0}
    finally:
        if own:
            db.close()
