# apps/recengine/encoder.py
"""Feature encoding for the user and post vector spaces.

Everything here is a pure function of its arguments. Callers load the
aggregates (genre count, engagement, genre interaction stats) through
``catalog`` and pass them in, which keeps encoding deterministic.

User layout before padding::

    [movie runtime, tv runtime, date]
    + genre block (total_genres)
    + time of day (morning, afternoon, evening, night)
    + post interactions (like, save, comment, duration)
    + trailer interactions (like, save, comment, mute, replay, duration)

Post layout before padding::

    [is_movie, release year, vote average, vote count, popularity]
    + genre one-hot (total_genres)
    + post engagement (4) and trailer engagement (6), trailers first
      when encoding for the trailer feed
"""
from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

import numpy as np

from config import settings
from records import (
    GenreInteractionStat,
    GenrePreference,
    PostEngagement,
    PostInteraction,
    PostRecord,
    TrailerEngagement,
    TrailerInteraction,
    UserRecord,
)

RUNTIME_CEILING_MINUTES = 240.0
YEAR_FLOOR = 1900
YEAR_SPAN = 130.0
USER_DURATION_CEILING_SECONDS = 1800.0
ITEM_DURATION_CEILING_SECONDS = 7200.0
REPLAY_CEILING = 5
MAGNITUDE_EPSILON = 1e-8

POST_INTERACTION_DEFAULTS = [0.5, 0.5, 0.2, 0.5]
TRAILER_INTERACTION_DEFAULTS = [0.5, 0.5, 0.2, 0.5, 0.5, 0.5]
TIME_OF_DAY_DEFAULTS = [0.25, 0.25, 0.25, 0.25]
MISSING_ENGAGEMENT = 0.5


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


# ---------------------------------------------------------------------------
# Scalar normalizers
# ---------------------------------------------------------------------------


def runtime_preference(minimum: Optional[int], maximum: Optional[int]) -> float:
    if minimum is not None and maximum is not None:
        return _clamp((minimum + maximum) / 2.0 / RUNTIME_CEILING_MINUTES)
    if minimum is not None:
        return _clamp(minimum / RUNTIME_CEILING_MINUTES)
    if maximum is not None:
        return _clamp(maximum / RUNTIME_CEILING_MINUTES)
    return 0.5


def _year_of(value: Optional[str]) -> Optional[int]:
    text = (value or "").strip()
    if len(text) < 4 or not text[:4].isdigit():
        return None
    return int(text[:4])


def date_preference(oldest: Optional[str], recent: Optional[str]) -> float:
    oldest_year = _year_of(oldest)
    recent_year = _year_of(recent)
    if oldest_year is None or recent_year is None:
        return 0.5
    avg_year = (oldest_year + recent_year) / 2.0
    return _clamp((avg_year - YEAR_FLOOR) / YEAR_SPAN)


def release_year(release_date: Optional[str]) -> float:
    year = _year_of(release_date)
    if year is None:
        return 0.5
    return _clamp((year - YEAR_FLOOR) / YEAR_SPAN)


def vote_average(value: float) -> float:
    return _clamp(value / 10.0)


def vote_count(value: int) -> float:
    if value <= 0:
        return 0.0
    return _clamp(math.log(value + 1) / 10.0)


def popularity(value: float) -> float:
    return 1.0 / (1.0 + math.exp(-0.1 * value + 2.0))


def genre_priority(priority: int) -> float:
    return _clamp(priority / 10.0)


def engagement_duration(seconds: float, ceiling: float = USER_DURATION_CEILING_SECONDS) -> float:
    return _clamp(seconds / ceiling)


def view_count(count: int) -> float:
    return _clamp(math.log(count + 1) / 10.0)


def replay_score(avg_replays: float) -> float:
    return min(1.0, math.log10(avg_replays + 1) / math.log10(REPLAY_CEILING + 1))


# ---------------------------------------------------------------------------
# Feature blocks
# ---------------------------------------------------------------------------


def explicit_genre_block(preferences: Sequence[GenrePreference], total_genres: int) -> List[float]:
    block = [0.0] * total_genres
    for pref in preferences:
        index = pref.genre_id - 1
        if 0 <= index < total_genres:
            block[index] = genre_priority(pref.priority)
    return block


def interaction_genre_block(stats: Sequence[GenreInteractionStat], total_genres: int) -> List[float]:
    block = [0.0] * total_genres
    total = max(1, sum(s.interaction_count for s in stats))
    for stat in stats:
        index = stat.genre_id - 1
        if not (0 <= index < total_genres):
            continue
        share = stat.interaction_count / total
        like_ratio = stat.liked_count / stat.interaction_count if stat.interaction_count else 0.0
        block[index] = _clamp(share * (1.0 + like_ratio))
    return block


def time_of_day_block(interactions: Iterable[PostInteraction]) -> List[float]:
    buckets = [0, 0, 0, 0]
    total = 0
    for item in interactions:
        ts = item.start_timestamp
        if ts is None:
            continue
        hour = ts.hour
        if 5 <= hour <= 11:
            buckets[0] += 1
        elif 12 <= hour <= 17:
            buckets[1] += 1
        elif 18 <= hour <= 23:
            buckets[2] += 1
        else:
            buckets[3] += 1
        total += 1
    if total == 0:
        return list(TIME_OF_DAY_DEFAULTS)
    return [b / total for b in buckets]


def interaction_features(interactions: Sequence[PostInteraction]) -> List[float]:
    """like, save, comment ratio and normalized mean duration."""
    if not interactions:
        return list(POST_INTERACTION_DEFAULTS)
    n = len(interactions)
    avg_duration = sum(i.duration_seconds for i in interactions) / n
    return [
        sum(1 for i in interactions if i.like_state) / n,
        sum(1 for i in interactions if i.save_state) / n,
        sum(1 for i in interactions if i.comment_button_pressed) / n,
        engagement_duration(avg_duration),
    ]


def trailer_interaction_features(interactions: Sequence[TrailerInteraction]) -> List[float]:
    if not interactions:
        return list(TRAILER_INTERACTION_DEFAULTS)
    n = len(interactions)
    avg_replays = sum(i.replay_count for i in interactions) / n
    avg_duration = sum(i.duration_seconds for i in interactions) / n
    return [
        sum(1 for i in interactions if i.like_state) / n,
        sum(1 for i in interactions if i.save_state) / n,
        sum(1 for i in interactions if i.comment_button_pressed) / n,
        sum(1 for i in interactions if i.is_muted) / n,
        replay_score(avg_replays),
        engagement_duration(avg_duration),
    ]


def _or_default(value: Optional[float]) -> float:
    return MISSING_ENGAGEMENT if value is None else float(value)


def post_engagement_block(engagement: Optional[PostEngagement]) -> List[float]:
    if engagement is None or engagement.total_views == 0:
        return [MISSING_ENGAGEMENT] * 4
    return [
        engagement_duration(engagement.avg_duration or 0.0, ITEM_DURATION_CEILING_SECONDS),
        view_count(engagement.total_views),
        _or_default(engagement.like_ratio),
        _or_default(engagement.save_ratio),
    ]


def trailer_engagement_block(engagement: Optional[TrailerEngagement]) -> List[float]:
    if engagement is None or engagement.total_views == 0:
        return [MISSING_ENGAGEMENT] * 6
    return [
        engagement_duration(engagement.avg_duration or 0.0, ITEM_DURATION_CEILING_SECONDS),
        view_count(engagement.total_views),
        replay_score(engagement.avg_replays or 0.0),
        _or_default(engagement.like_ratio),
        _or_default(engagement.save_ratio),
        _or_default(engagement.unmuted_ratio),
    ]


# ---------------------------------------------------------------------------
# Raw feature lists
# ---------------------------------------------------------------------------


def user_features(
    user: UserRecord,
    genre_preferences: Sequence[GenrePreference],
    post_interactions: Sequence[PostInteraction],
    trailer_interactions: Sequence[TrailerInteraction] = (),
    *,
    total_genres: int,
    genre_stats: Sequence[GenreInteractionStat] = (),
) -> List[float]:
    features = [
        runtime_preference(user.min_movie, user.max_movie),
        runtime_preference(user.min_tv, user.max_tv),
        date_preference(user.oldest_date, user.recent_date),
    ]
    if genre_preferences:
        features.extend(explicit_genre_block(genre_preferences, total_genres))
    elif genre_stats:
        features.extend(interaction_genre_block(genre_stats, total_genres))
    else:
        features.extend([0.0] * total_genres)
    features.extend(time_of_day_block(post_interactions))
    features.extend(interaction_features(post_interactions))
    features.extend(trailer_interaction_features(trailer_interactions))
    return features


def post_features(
    post: PostRecord,
    *,
    total_genres: int,
    post_engagement: Optional[PostEngagement] = None,
    trailer_engagement: Optional[TrailerEngagement] = None,
    content_type: str = "posts",
) -> List[float]:
    features = [
        1.0 if post.type == "movie" else 0.0,
        release_year(post.release_date),
        vote_average(post.vote_average),
        vote_count(post.vote_count),
        popularity(post.popularity),
    ]
    genres = [0.0] * total_genres
    for genre_id in post.genre_ids:
        index = genre_id - 1
        if 0 <= index < total_genres:
            genres[index] = 1.0
    features.extend(genres)

    post_block = post_engagement_block(post_engagement)
    trailer_block = trailer_engagement_block(trailer_engagement)
    if content_type == "trailers":
        features.extend(trailer_block)
        features.extend(post_block)
    else:
        features.extend(post_block)
        features.extend(trailer_block)
    return features


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------


def fit_dimension(values: Sequence[float], dimension: int) -> np.ndarray:
    out = np.zeros(dimension, dtype=np.float32)
    head = np.asarray(list(values)[:dimension], dtype=np.float32)
    out[: head.shape[0]] = head
    return out


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    vector = np.asarray(vector, dtype=np.float32)
    magnitude = float(np.sqrt(np.sum(vector.astype(np.float64) ** 2)))
    if magnitude < MAGNITUDE_EPSILON:
        return vector
    return (vector / np.float32(magnitude)).astype(np.float32)


def finalize(values: Sequence[float], dimension: int) -> np.ndarray:
    return l2_normalize(fit_dimension(values, dimension))


def zero_vector(dimension: Optional[int] = None) -> np.ndarray:
    return np.zeros(dimension or settings.user_vector_dim, dtype=np.float32)


def encode_user(
    user: UserRecord,
    genre_preferences: Sequence[GenrePreference],
    post_interactions: Sequence[PostInteraction],
    trailer_interactions: Sequence[TrailerInteraction] = (),
    *,
    total_genres: int,
    genre_stats: Sequence[GenreInteractionStat] = (),
    dimension: Optional[int] = None,
) -> np.ndarray:
    raw = user_features(
        user,
        genre_preferences,
        post_interactions,
        trailer_interactions,
        total_genres=total_genres,
        genre_stats=genre_stats,
    )
    return finalize(raw, dimension or settings.user_vector_dim)


def encode_post(
    post: PostRecord,
    *,
    total_genres: int,
    post_engagement: Optional[PostEngagement] = None,
    trailer_engagement: Optional[TrailerEngagement] = None,
    content_type: str = "posts",
    dimension: Optional[int] = None,
) -> np.ndarray:
    raw = post_features(
        post,
        total_genres=total_genres,
        post_engagement=post_engagement,
        trailer_engagement=trailer_engagement,
        content_type=content_type,
    )
    return finalize(raw, dimension or settings.post_vector_dim)
