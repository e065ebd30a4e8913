# apps/recengine/tests/conftest.py
import itertools
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["BOOTSTRAP_ON_STARTUP"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cache
from models import (
    Genre,
    Post,
    PostGenre,
    User,
    UserGenre,
    UserPostInteraction,
    UserTrailerInteraction,
    metadata,
)


class FakeRedis:
    """In-memory stand-in for the handful of commands the engine uses."""

    def __init__(self):
        self.store = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, nx=False, px=None, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        return True

    def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(cache, "redis_client", client)
    return client


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    metadata.create_all(bind=eng)
    yield eng
    metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


_counter = itertools.count(1)


@pytest.fixture
def make_user(db):
    def _make(**kwargs):
        n = next(_counter)
        values = {"username": f"user{n}", "email": f"user{n}@example.com", "region": "US"}
        values.update(kwargs)
        user = User(**values)
        db.add(user)
        db.commit()
        return user.user_id

    return _make


@pytest.fixture
def make_post(db):
    def _make(**kwargs):
        n = next(_counter)
        values = {
            "tmdb_id": 1000 + n,
            "type": "movie",
            "title": f"Title {n}",
            "subscription": "Netflix",
            "release_date": "2020-05-01",
            "vote_average": 7.0,
            "vote_count": 100,
            "popularity": 20.0,
            "original_language": "en",
        }
        values.update(kwargs)
        post = Post(**values)
        db.add(post)
        db.commit()
        return post.post_id

    return _make


@pytest.fixture
def make_genre(db):
    def _make(name, post_ids=(), user_priority=None):
        genre = Genre(genre_name=name)
        db.add(genre)
        db.flush()
        for pid in post_ids:
            db.add(PostGenre(post_id=pid, genre_id=genre.genre_id))
        if user_priority:
            user_id, priority = user_priority
            db.add(UserGenre(user_id=user_id, genre_id=genre.genre_id, priority=priority))
        db.commit()
        return genre.genre_id

    return _make


@pytest.fixture
def add_interaction(db):
    def _add(user_id, post_id, start="2024-03-01 10:00:00", end="2024-03-01 10:05:00", **flags):
        row = UserPostInteraction(
            user_id=user_id,
            post_id=post_id,
            start_timestamp=start,
            end_timestamp=end,
            **flags,
        )
        db.add(row)
        db.commit()
        return row.interaction_id

    return _add


@pytest.fixture
def add_trailer_interaction(db):
    def _add(user_id, post_id, start="2024-03-01 21:00:00", end="2024-03-01 21:02:00", **flags):
        row = UserTrailerInteraction(
            user_id=user_id,
            post_id=post_id,
            start_timestamp=start,
            end_timestamp=end,
            **flags,
        )
        db.add(row)
        db.commit()
        return row.interaction_id

    return _add
