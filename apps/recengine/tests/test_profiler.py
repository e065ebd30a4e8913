# apps/recengine/tests/test_profiler.py
from datetime import datetime, timedelta, timezone

import pytest

import profiler
from errors import NotFoundError
from models import UserBehaviorProfile

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_like_ratio_over_recent_interactions(db, make_user, make_post, add_interaction):
    user_id = make_user()
    post_id = make_post()
    for i in range(10):
        add_interaction(user_id, post_id, start=f"2024-05-01 10:{i:02d}:00", like_state=i < 6)

    profile = profiler.generate_profile(db, user_id, now=NOW)

    assert profile.metrics["post_like_ratio"] == pytest.approx(0.6)
    assert profile.metrics["post_preference_ratio"] == 1.0
    assert profile.metrics["trailer_preference_ratio"] == 0.0
    assert profile.dominant_type == "content_focused"


def test_empty_history_keeps_defaults(db, make_user):
    user_id = make_user()
    profile = profiler.generate_profile(db, user_id, now=NOW)
    assert profile.metrics == profiler.METRIC_DEFAULTS
    # default saver and liker scores tie; the first declared wins
    assert profile.dominant_type == "content_saver"


def test_generate_for_unknown_user(db):
    with pytest.raises(NotFoundError):
        profiler.generate_profile(db, 12345, now=NOW)


def test_trailer_metrics(db, make_user, make_post, add_trailer_interaction):
    user_id = make_user()
    post_id = make_post(video_key="xyz")
    add_trailer_interaction(user_id, post_id, is_muted=True, replay_count=2)
    add_trailer_interaction(user_id, post_id, start="2024-03-02 21:00:00", end="2024-03-02 21:01:00")

    metrics = profiler.generate_profile(db, user_id, now=NOW).metrics

    assert metrics["trailer_mute_ratio"] == 0.5
    assert metrics["avg_trailer_replay_count"] == 1.0
    assert metrics["avg_trailer_engagement_duration"] == pytest.approx(90.0)
    assert metrics["trailer_preference_ratio"] == 1.0


@pytest.mark.parametrize(
    "metrics, expected",
    [
        ({}, "content_focused"),
        (dict(profiler.METRIC_DEFAULTS), "content_saver"),
        ({"post_save_ratio": 0.4, "post_like_ratio": 0.3}, "content_saver"),
        ({"post_like_ratio": 0.9, "post_save_ratio": 0.1}, "content_liker"),
        ({"post_like_ratio": 0.0, "post_save_ratio": 0.0}, "content_focused"),
        ({"trailer_comment_ratio": 0.5}, "commenter"),
        ({"trailer_preference_ratio": 0.8, "post_preference_ratio": 0.2}, "trailer_focused"),
        # ties go to the first declared type
        ({"post_save_ratio": 0.5, "post_like_ratio": 0.5}, "content_saver"),
    ],
)
def test_dominant_type(metrics, expected):
    assert profiler.dominant_type(metrics) == expected


def test_get_profile_reuses_fresh_profile(db, make_user, monkeypatch):
    user_id = make_user()
    profiler.generate_profile(db, user_id, now=NOW)
    calls = []
    original = profiler.generate_profile
    monkeypatch.setattr(
        profiler, "generate_profile", lambda *a, **kw: calls.append(1) or original(*a, **kw)
    )

    fresh = profiler.get_profile(db, user_id, now=NOW + timedelta(hours=1))

    assert calls == []
    assert fresh.updated_at == NOW


def test_get_profile_regenerates_stale_profile(db, make_user):
    user_id = make_user()
    profiler.generate_profile(db, user_id, now=NOW)

    later = NOW + timedelta(hours=25)
    refreshed = profiler.get_profile(db, user_id, now=later)

    assert refreshed.updated_at == later
    row = db.get(UserBehaviorProfile, user_id)
    db.refresh(row)
    assert row.updated_at.replace(tzinfo=timezone.utc) == later


def test_get_profile_generates_when_missing(db, make_user):
    user_id = make_user()
    profile = profiler.get_profile(db, user_id, now=NOW)
    assert profile.updated_at == NOW
    assert db.get(UserBehaviorProfile, user_id) is not None


def test_is_stale_boundary():
    profile = profiler.BehaviorProfile(user_id=1, updated_at=NOW)
    assert not profiler.is_stale(profile, NOW + timedelta(hours=23, minutes=59))
    assert profiler.is_stale(profile, NOW + timedelta(hours=24))
    assert profiler.is_stale(profiler.BehaviorProfile(user_id=1), NOW)


def test_prune_removes_only_old_profiles(db, make_user):
    old_user = make_user()
    new_user = make_user()
    profiler.generate_profile(db, old_user, now=NOW - timedelta(days=120))
    profiler.generate_profile(db, new_user, now=NOW - timedelta(days=10))

    deleted = profiler.prune_profiles(db, now=NOW)

    assert deleted == 1
    assert db.get(UserBehaviorProfile, old_user) is None
    assert db.get(UserBehaviorProfile, new_user) is not None
