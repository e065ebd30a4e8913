# apps/recengine/tests/test_catalog.py
import pytest

import catalog


def test_post_engagement_aggregates_every_viewer(db, make_user, make_post, add_interaction):
    post_id = make_post()
    a, b, c = make_user(), make_user(), make_user()
    add_interaction(a, post_id, start="2024-03-01 10:00:00", end="2024-03-01 10:10:00", like_state=True)
    add_interaction(b, post_id, start="2024-03-01 11:00:00", end="2024-03-01 11:05:00", save_state=True)
    # end before start clamps to zero, missing end counts as zero
    add_interaction(c, post_id, start="2024-03-01 12:00:00", end="2024-03-01 11:00:00", like_state=True)
    add_interaction(c, post_id, start="2024-03-02 12:00:00", end=None)
    add_interaction(a, make_post(), like_state=True)

    engagement = catalog.post_engagement(db, post_id)

    assert engagement.total_views == 4
    assert engagement.avg_duration == pytest.approx((600 + 300) / 4)
    assert engagement.like_ratio == pytest.approx(0.5)
    assert engagement.save_ratio == pytest.approx(0.25)


def test_post_engagement_without_views(db, make_post):
    engagement = catalog.post_engagement(db, make_post())
    assert engagement.total_views == 0
    assert engagement.avg_duration is None
    assert engagement.like_ratio is None


def test_trailer_engagement_aggregates(db, make_user, make_post, add_trailer_interaction):
    post_id = make_post(video_key="abc")
    a, b = make_user(), make_user()
    add_trailer_interaction(
        a, post_id, start="2024-03-01 21:00:00", end="2024-03-01 21:02:00", replay_count=3, is_muted=True
    )
    add_trailer_interaction(
        b, post_id, start="2024-03-01 22:00:00", end="2024-03-01 22:01:00", replay_count=None, like_state=True
    )

    engagement = catalog.trailer_engagement(db, post_id)

    assert engagement.total_views == 2
    assert engagement.avg_duration == pytest.approx(90.0)
    assert engagement.avg_replays == pytest.approx(1.5)
    assert engagement.unmuted_ratio == pytest.approx(0.5)
    assert engagement.like_ratio == pytest.approx(0.5)
    assert engagement.save_ratio == pytest.approx(0.0)


def test_trailer_engagement_without_views(db, make_post):
    engagement = catalog.trailer_engagement(db, make_post(video_key="abc"))
    assert engagement.total_views == 0
    assert engagement.avg_replays is None


def test_trailer_post_ids_honours_exclusion(db, make_post):
    first = make_post(video_key="a")
    second = make_post(video_key="b")
    third = make_post(video_key="c")
    make_post(video_key="")
    make_post()

    assert catalog.trailer_post_ids(db) == [first, second, third]
    assert catalog.trailer_post_ids(db, exclude=[first, third]) == [second]
    assert catalog.trailer_post_ids(db, exclude={first, second, third}) == []
