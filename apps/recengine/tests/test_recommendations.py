# apps/recengine/tests/test_recommendations.py
import numpy as np
import pytest

import recommendations
import similarity
import vector_store
from errors import NotFoundError, UpstreamUnavailable


class FakeClient:
    def __init__(self, answer=None, error=None):
        self.answer = answer or []
        self.error = error
        self.calls = []

    def recommend(self, user_id, content_type=None, page=0, page_size=20):
        self.calls.append((user_id, content_type, page, page_size))
        if self.error:
            raise self.error
        return list(self.answer)


def test_model_answer_is_used_in_model_order(db, make_user, make_post, monkeypatch):
    user_id = make_user()
    ids = [make_post(), make_post(), make_post()]
    monkeypatch.setattr(
        similarity, "vector_fallback", lambda *a, **kw: pytest.fail("fallback should not run")
    )
    client = FakeClient(answer=[ids[2], ids[0], ids[1]])

    page = recommendations.get_recommendations(db, user_id, page=0, page_size=3, client=client)

    assert [p.post_id for p in page.items] == [ids[2], ids[0], ids[1]]
    assert page.source == recommendations.SOURCE_MODEL
    assert page.total == 3
    assert client.calls == [(user_id, None, 0, 3)]


def test_empty_model_answer_falls_back_to_vectors(db, make_user, make_post, monkeypatch):
    user_id = make_user()
    a, b = make_post(), make_post()
    monkeypatch.setattr(vector_store, "nearest_neighbors", lambda *args, **kw: [b, a])

    page = recommendations.get_recommendations(db, user_id, client=FakeClient())

    assert page.source == recommendations.SOURCE_VECTOR
    assert [p.post_id for p in page.items] == [b, a]
    assert page.total == 2


def test_vector_fallback_total_is_capped_at_fetched_neighbors(db, make_user, make_post, monkeypatch):
    user_id = make_user()
    pool = [make_post() for _ in range(10)]
    monkeypatch.setattr(
        vector_store, "nearest_neighbors", lambda session, space, query, k, **kw: pool[:k]
    )

    page = recommendations.get_recommendations(
        db, user_id, page=1, page_size=2, client=FakeClient()
    )

    assert [p.post_id for p in page.items] == pool[2:4]
    # only (page + 1) * page_size neighbours are fetched, not the whole pool
    assert page.total == 4


def test_unavailable_model_falls_back(db, make_user, make_post, monkeypatch):
    user_id = make_user()
    post_id = make_post()
    monkeypatch.setattr(vector_store, "nearest_neighbors", lambda *args, **kw: [post_id])
    client = FakeClient(error=UpstreamUnavailable("timeout"))

    page = recommendations.get_recommendations(db, user_id, content_type="movie", client=client)

    assert page.source == recommendations.SOURCE_VECTOR
    assert [p.post_id for p in page.items] == [post_id]


def test_trailer_requests_use_trailer_scoring(db, make_user, make_post):
    user_id = make_user()
    vec = np.zeros(64, dtype=np.float32)
    vec[0] = 1.0
    vector_store.put_vector(db, vector_store.USER_SPACE, user_id, vec)
    trailer = make_post(video_key="yt123")
    vector_store.put_vector(db, vector_store.POST_SPACE, trailer, vec)

    page = recommendations.get_recommendations(
        db, user_id, content_type=similarity.TRAILERS, client=FakeClient()
    )

    assert page.source == recommendations.SOURCE_TRAILER
    assert [p.post_id for p in page.items] == [trailer]
    assert page.items[0].has_trailer


def test_unknown_user(db):
    client = FakeClient(answer=[1])
    with pytest.raises(NotFoundError):
        recommendations.get_recommendations(db, 404, client=client)
    assert client.calls == []


def test_negative_page_rejected(db, make_user):
    with pytest.raises(ValueError):
        recommendations.get_recommendations(db, make_user(), page=-1, client=FakeClient())


def test_candidate_vectors(db, make_user, make_post, monkeypatch):
    user_id = make_user()
    a, b = make_post(), make_post()
    vec = np.ones(64, dtype=np.float32) / 8.0
    vector_store.put_vector(db, vector_store.POST_SPACE, a, vec)
    vector_store.put_vector(db, vector_store.POST_SPACE, b, vec)
    monkeypatch.setattr(vector_store, "nearest_neighbors", lambda *args, **kw: [b, a, 77])

    found = recommendations.get_candidate_vectors(db, user_id, limit=2, offset=1)

    assert list(found) == [a]
    assert recommendations.get_candidate_vectors(db, user_id, limit=0) == {}
