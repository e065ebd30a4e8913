# apps/recengine/vector_store.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Sequence

import numpy as np
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFoundError, PersistenceFailure
from models import Post, PostVector, UserVector
import encoder

log = logging.getLogger("vector_store")

USER_SPACE = "user"
POST_SPACE = "post"

_SPACES = {
    USER_SPACE: (UserVector, UserVector.user_id),
    POST_SPACE: (PostVector, PostVector.post_id),
}


def _space(space: str):
    try:
        return _SPACES[space]
    except KeyError:
        raise ValueError(f"unknown vector space: {space}")


def _dimension(model) -> int:
    return model.__table__.c.vector.type.dim


def _as_array(value) -> np.ndarray:
    return np.asarray(value, dtype=np.float32)


def put_vector(db: Session, space: str, entity_id: int, vector: Sequence[float]) -> None:
    """Upsert the vector for ``entity_id`` in ``space``."""
    model, key = _space(space)
    values = _as_array(vector)
    dim = _dimension(model)
    if values.shape[0] != dim:
        raise ValueError(f"{space} vector must have {dim} values, got {values.shape[0]}")

    try:
        existing = db.get(model, entity_id)
        now = datetime.now(timezone.utc)
        if existing:
            existing.vector = values.tolist()
            existing.dimension = dim
            existing.updated_at = now
        else:
            row = model(vector=values.tolist(), dimension=dim, updated_at=now)
            setattr(row, key.key, entity_id)
            db.add(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log.error("vector_put_failed space=%s id=%s", space, entity_id, exc_info=exc)
        raise PersistenceFailure(f"could not store {space} vector {entity_id}") from exc
    log.info("vector_stored space=%s id=%s", space, entity_id)


def get_vector(db: Session, space: str, entity_id: int) -> np.ndarray:
    """Stored vector. A missing user vector is the zero vector; a missing post raises."""
    model, _key = _space(space)
    row = db.get(model, entity_id)
    if row is None:
        if space == USER_SPACE:
            return encoder.zero_vector(_dimension(model))
        raise NotFoundError(f"{space} vector", entity_id)
    return _as_array(row.vector)


def get_vectors(db: Session, space: str, entity_ids: Iterable[int]) -> Dict[int, np.ndarray]:
    model, key = _space(space)
    ids = list(dict.fromkeys(entity_ids))
    if not ids:
        return {}
    rows = db.query(key, model.vector).filter(key.in_(ids)).all()
    return {eid: _as_array(vec) for eid, vec in rows}


def has_vector(db: Session, space: str, entity_id: int) -> bool:
    model, _key = _space(space)
    return db.get(model, entity_id) is not None


def count_vectors(db: Session, space: str) -> int:
    _model, key = _space(space)
    return int(db.query(func.count(key)).scalar() or 0)


def nearest_neighbors_query(
    space: str,
    query: Sequence[float],
    k: int,
    exclude: Iterable[int] = (),
    where=None,
):
    """SELECT ids ordered by cosine distance to ``query``.

    ``where`` is an optional SQL predicate; for the post space it may refer to
    ``models.Post`` columns, which are joined in.
    """
    model, key = _space(space)
    stmt = select(key)
    if space == POST_SPACE:
        stmt = stmt.join(Post, Post.post_id == key)
    excluded = list(exclude)
    if excluded:
        stmt = stmt.where(key.notin_(excluded))
    if where is not None:
        stmt = stmt.where(where)
    return stmt.order_by(model.vector.cosine_distance(_as_array(query)), key).limit(k)


def nearest_neighbors(
    db: Session,
    space: str,
    query: Sequence[float],
    k: int,
    exclude: Iterable[int] = (),
    where=None,
) -> List[int]:
    if k <= 0:
        return []
    stmt = nearest_neighbors_query(space, query, k, exclude=exclude, where=where)
    return [eid for (eid,) in db.execute(stmt).all()]


def ensure_extension(db: Session) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    db.commit()
