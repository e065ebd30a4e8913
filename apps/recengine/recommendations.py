# apps/recengine/recommendations.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy.orm import Session

import catalog
import similarity
import vector_store
from errors import NotFoundError, UpstreamUnavailable
from ranking_client import RankingClient, get_client
from records import PostRecord

log = logging.getLogger("recommendations")

SOURCE_MODEL = "model"
SOURCE_VECTOR = "vector"
SOURCE_TRAILER = "trailer"


@dataclass
class RecommendationPage:
    """``total`` is the ranked list length the page was cut from; see
    ``similarity.RankedPage`` for how the vector fallback caps it.
    """

    items: List[PostRecord] = field(default_factory=list)
    total: int = 0
    page: int = 0
    page_size: int = 20
    source: str = SOURCE_MODEL


def ensure_user_exists(db: Session, user_id: int) -> None:
    if not catalog.user_exists(db, user_id):
        raise NotFoundError("user", user_id)


def _ask_model(
    client: RankingClient, user_id: int, content_type: Optional[str], page: int, page_size: int
) -> List[int]:
    try:
        return client.recommend(user_id, content_type=content_type, page=page, page_size=page_size)
    except UpstreamUnavailable as exc:
        log.warning("ranking_unavailable user_id=%s: %s", user_id, exc)
        return []


def get_recommendations(
    db: Session,
    user_id: int,
    content_type: Optional[str] = None,
    page: int = 0,
    page_size: int = 20,
    client: Optional[RankingClient] = None,
) -> RecommendationPage:
    """Ranking model first, then local similarity.

    A non-empty model answer is hydrated as-is, in model order. Otherwise the
    page comes entirely from ``similarity``: exhaustive trailer scoring for
    ``content_type="trailers"``, nearest post vectors for everything else.
    """
    if page < 0 or page_size < 0:
        raise ValueError("page and page_size must be non-negative")
    ensure_user_exists(db, user_id)

    ranked = _ask_model(client or get_client(), user_id, content_type, page, page_size)
    if ranked:
        items = catalog.hydrate_posts(db, ranked)
        log.info("recommendations user_id=%s source=model count=%s", user_id, len(items))
        return RecommendationPage(
            items=items, total=len(ranked), page=page, page_size=page_size, source=SOURCE_MODEL
        )

    if content_type == similarity.TRAILERS:
        result = similarity.trailer_fallback(db, user_id, page=page, page_size=page_size)
        source = SOURCE_TRAILER
    else:
        result = similarity.vector_fallback(
            db, user_id, content_type=content_type, page=page, page_size=page_size
        )
        source = SOURCE_VECTOR

    items = catalog.hydrate_posts(db, result.post_ids)
    log.info("recommendations user_id=%s source=%s count=%s", user_id, source, len(items))
    return RecommendationPage(
        items=items, total=result.total, page=page, page_size=page_size, source=source
    )


def get_candidate_vectors(
    db: Session, user_id: int, limit: int = 100, offset: int = 0
) -> Dict[int, np.ndarray]:
    """Nearest post vectors for a user, keyed by post id. Debug helper."""
    ensure_user_exists(db, user_id)
    if limit <= 0:
        return {}
    user_vector = vector_store.get_vector(db, vector_store.USER_SPACE, user_id)
    ids = vector_store.nearest_neighbors(
        db, vector_store.POST_SPACE, user_vector, offset + limit
    )[offset:]
    vectors = vector_store.get_vectors(db, vector_store.POST_SPACE, ids)
    return {pid: vectors[pid] for pid in ids if pid in vectors}
