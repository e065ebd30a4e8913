# apps/recengine/similarity.py
"""Local ranking used when the ranking model has nothing for a user.

Two paths:

* ``vector_fallback`` asks the vector store for the nearest post vectors
  (pgvector ``<=>``, HNSW-indexed) with type, exclusion and subscription
  filters.
* ``trailer_fallback`` scores every post that has a trailer against the user
  vector in process. The trailer corpus is small, so exhaustive scoring is
  cheap and avoids the approximate index entirely.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_
from sqlalchemy.orm import Session

import catalog
import vector_store
from errors import NotFoundError
from models import Post

log = logging.getLogger("similarity")

TRAILERS = "trailers"
POSTS = "posts"


@dataclass
class RankedPage:
    """One page of ranked post ids.

    ``total`` counts the ranked candidates that were fetched. Trailer scoring
    ranks the whole pool, so it is the pool size there. Nearest-neighbour
    search only fetches ``(page + 1) * page_size`` ids, so for vectors it is
    capped at that and only tells whether another page may exist.
    """

    post_ids: List[int] = field(default_factory=list)
    total: int = 0


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    if vec_a is None or vec_b is None or len(vec_a) == 0 or len(vec_b) == 0:
        return 0.0
    if len(vec_a) != len(vec_b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for a, b in zip(vec_a, vec_b):
        a = float(a)
        b = float(b)
        dot += a * b
        norm_a += a * a
        norm_b += b * b
    if norm_a <= 0 or norm_b <= 0:
        return 0.0
    return dot / math.sqrt(norm_a * norm_b)


def _check_paging(page: int, page_size: int) -> None:
    if page < 0 or page_size < 0:
        raise ValueError("page and page_size must be non-negative")


def _slice(ids: List[int], page: int, page_size: int) -> List[int]:
    start = page * page_size
    return ids[start:start + page_size]


def _type_filter(content_type: Optional[str]):
    # "posts" and None mean every post; any other value is a media type (movie|tv)
    if content_type in (None, "", POSTS, TRAILERS):
        return None
    return Post.type == content_type


def vector_fallback(
    db: Session,
    user_id: int,
    content_type: Optional[str] = None,
    page: int = 0,
    page_size: int = 20,
    exclude: Iterable[int] = (),
) -> RankedPage:
    _check_paging(page, page_size)
    if not catalog.user_exists(db, user_id):
        raise NotFoundError("user", user_id)

    user_vector = vector_store.get_vector(db, vector_store.USER_SPACE, user_id)

    predicates = []
    type_filter = _type_filter(content_type)
    if type_filter is not None:
        predicates.append(type_filter)
    if content_type != TRAILERS:
        subscriptions = catalog.user_subscription_names(db, user_id)
        if subscriptions:
            predicates.append(Post.subscription.in_(subscriptions))

    where = and_(*predicates) if predicates else None

    k = (page + 1) * page_size
    neighbors = vector_store.nearest_neighbors(
        db, vector_store.POST_SPACE, user_vector, k, exclude=exclude, where=where
    )
    log.info(
        "vector_fallback user_id=%s content_type=%s candidates=%s",
        user_id, content_type, len(neighbors),
    )
    return RankedPage(post_ids=_slice(neighbors, page, page_size), total=len(neighbors))


def score_trailers(
    db: Session, user_id: int, exclude: Iterable[int] = ()
) -> List[Tuple[int, float]]:
    """(post_id, cosine) for every trailer post with a stored vector, best first."""
    user_vector = vector_store.get_vector(db, vector_store.USER_SPACE, user_id)
    candidates = catalog.trailer_post_ids(db, exclude=exclude)
    if not candidates:
        return []
    vectors = vector_store.get_vectors(db, vector_store.POST_SPACE, candidates)
    scored = [
        (pid, cosine_similarity(user_vector, vectors[pid]))
        for pid in candidates
        if pid in vectors
    ]
    scored.sort(key=lambda item: (-item[1], item[0]))
    return scored


def trailer_fallback(
    db: Session,
    user_id: int,
    page: int = 0,
    page_size: int = 20,
    exclude: Iterable[int] = (),
) -> RankedPage:
    _check_paging(page, page_size)
    if not catalog.user_exists(db, user_id):
        raise NotFoundError("user", user_id)

    ranked = [pid for pid, _score in score_trailers(db, user_id, exclude=exclude)]
    log.info("trailer_fallback user_id=%s candidates=%s", user_id, len(ranked))
    return RankedPage(post_ids=_slice(ranked, page, page_size), total=len(ranked))


def filter_interacted(
    db: Session,
    user_id: int,
    post_ids: Sequence[int],
    scores: Sequence[float],
    limit: int = 20,
    content_type: Optional[str] = None,
) -> List[Tuple[int, float]]:
    """Drop posts the user already interacted with, best score first."""
    if len(post_ids) != len(scores):
        raise ValueError("post_ids and scores must have the same length")
    seen = catalog.interacted_post_ids(
        db, user_id, post_ids, trailers=content_type == TRAILERS
    )
    kept = [(pid, float(score)) for pid, score in zip(post_ids, scores) if pid not in seen]
    kept.sort(key=lambda item: item[1], reverse=True)
    return kept[:limit]
