# apps/recengine/tests/test_similarity.py
import numpy as np
import pytest

import catalog
import similarity
import vector_store
from errors import NotFoundError
from models import SubscriptionProvider, UserSubscription


def _vec(*head):
    vec = np.zeros(64, dtype=np.float32)
    vec[: len(head)] = head
    return vec


def test_cosine_similarity_basics():
    assert similarity.cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert similarity.cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert similarity.cosine_similarity([1, 0], [1, 0, 0]) == 0.0
    assert similarity.cosine_similarity([0, 0], [1, 0]) == 0.0
    assert similarity.cosine_similarity([], []) == 0.0


@pytest.fixture
def trailer_corpus(db, make_user, make_post):
    user_id = make_user()
    vector_store.put_vector(db, vector_store.USER_SPACE, user_id, _vec(1.0, 0.0))
    close = make_post(video_key="abc")
    middle = make_post(video_key="def")
    far = make_post(video_key="ghi")
    no_trailer = make_post(video_key=None)
    vector_store.put_vector(db, vector_store.POST_SPACE, close, _vec(1.0, 0.1))
    vector_store.put_vector(db, vector_store.POST_SPACE, middle, _vec(1.0, 1.0))
    vector_store.put_vector(db, vector_store.POST_SPACE, far, _vec(0.0, 1.0))
    vector_store.put_vector(db, vector_store.POST_SPACE, no_trailer, _vec(1.0, 0.0))
    return user_id, [close, middle, far]


def test_trailer_fallback_orders_by_similarity(db, trailer_corpus):
    user_id, expected = trailer_corpus
    result = similarity.trailer_fallback(db, user_id, page=0, page_size=10)
    assert result.post_ids == expected
    assert result.total == 3


def test_trailer_fallback_pages(db, trailer_corpus):
    user_id, expected = trailer_corpus
    first = similarity.trailer_fallback(db, user_id, page=0, page_size=2)
    second = similarity.trailer_fallback(db, user_id, page=1, page_size=2)
    beyond = similarity.trailer_fallback(db, user_id, page=5, page_size=2)
    assert first.post_ids == expected[:2]
    assert second.post_ids == expected[2:]
    assert beyond.post_ids == []
    assert beyond.total == 3


def test_trailer_fallback_respects_exclusions(db, trailer_corpus):
    user_id, expected = trailer_corpus
    result = similarity.trailer_fallback(db, user_id, exclude=[expected[0]])
    assert result.post_ids == expected[1:]


def test_score_trailers_never_returns_excluded_closest(db, trailer_corpus):
    user_id, (close, middle, far) = trailer_corpus

    scored = similarity.score_trailers(db, user_id, exclude={close, middle})

    assert [pid for pid, _score in scored] == [far]
    page = similarity.trailer_fallback(db, user_id, exclude=[close, middle])
    assert page.post_ids == [far]
    assert page.total == 1


def test_trailer_fallback_with_empty_pool(db, make_user):
    user_id = make_user()
    result = similarity.trailer_fallback(db, user_id)
    assert result.post_ids == []
    assert result.total == 0


def test_unknown_user_raises(db):
    with pytest.raises(NotFoundError):
        similarity.trailer_fallback(db, 999)
    with pytest.raises(NotFoundError):
        similarity.vector_fallback(db, 999)


def test_negative_paging_rejected(db, make_user):
    user_id = make_user()
    with pytest.raises(ValueError):
        similarity.vector_fallback(db, user_id, page=-1)


def test_vector_fallback_requests_enough_neighbors(db, make_user, monkeypatch):
    user_id = make_user()
    calls = {}

    def fake_neighbors(session, space, query, k, exclude=(), where=None):
        calls.update(space=space, k=k, exclude=list(exclude), where=where)
        return [11, 12, 13, 14, 15]

    monkeypatch.setattr(vector_store, "nearest_neighbors", fake_neighbors)
    result = similarity.vector_fallback(db, user_id, page=1, page_size=3, exclude=[9])

    assert calls["space"] == vector_store.POST_SPACE
    assert calls["k"] == 6
    assert calls["exclude"] == [9]
    assert calls["where"] is None
    assert result.post_ids == [14, 15]
    assert result.total == 5


def test_vector_fallback_filters_type_and_subscriptions(db, make_user, monkeypatch):
    user_id = make_user()
    provider = SubscriptionProvider(provider_name="Hulu")
    db.add(provider)
    db.flush()
    db.add(UserSubscription(user_id=user_id, provider_id=provider.provider_id, priority=1))
    db.commit()
    seen = {}

    def fake_neighbors(session, space, query, k, exclude=(), where=None):
        seen["where"] = where
        return []

    monkeypatch.setattr(vector_store, "nearest_neighbors", fake_neighbors)
    result = similarity.vector_fallback(db, user_id, content_type="tv")

    clause = str(seen["where"])
    assert "posts.type" in clause
    assert "posts.subscription" in clause
    assert result.post_ids == []
    assert result.total == 0


def test_hydrate_keeps_requested_order(db, make_post):
    ids = [make_post(), make_post(), make_post()]
    wanted = [ids[2], ids[0], 999, ids[1]]
    records = catalog.hydrate_posts(db, wanted)
    assert [r.post_id for r in records] == [ids[2], ids[0], ids[1]]


def test_filter_interacted_drops_seen_posts(db, make_user, make_post, add_interaction):
    user_id = make_user()
    a, b, c = make_post(), make_post(), make_post()
    add_interaction(user_id, b)
    kept = similarity.filter_interacted(db, user_id, [a, b, c], [0.2, 0.9, 0.5], limit=5)
    assert kept == [(c, 0.5), (a, 0.2)]


def test_filter_interacted_rejects_mismatched_lengths(db, make_user):
    with pytest.raises(ValueError):
        similarity.filter_interacted(db, make_user(), [1, 2], [0.5])
