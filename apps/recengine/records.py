# apps/recengine/records.py
"""Plain records read from the catalog tables.

Every component that needs user, post or interaction data goes through the
``from_*`` constructors here, so row shape changes land in one place.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    for fmt in (TIMESTAMP_FORMAT, "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S.%f"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def duration_seconds(start, end) -> float:
    s = parse_timestamp(start)
    e = parse_timestamp(end)
    if s is None or e is None:
        return 0.0
    return max(0.0, (e - s).total_seconds())


def parse_genre_ids(raw: Optional[str]) -> List[int]:
    out: List[int] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(int(part))
        except ValueError:
            continue
    return out


@dataclass
class UserRecord:
    user_id: int
    username: str = ""
    language: str = "en"
    region: str = ""
    min_movie: Optional[int] = None
    max_movie: Optional[int] = None
    min_tv: Optional[int] = None
    max_tv: Optional[int] = None
    oldest_date: Optional[str] = None
    recent_date: Optional[str] = None


def user_from_row(row) -> UserRecord:
    return UserRecord(
        user_id=row.user_id,
        username=row.username or "",
        language=row.language or "en",
        region=row.region or "",
        min_movie=row.min_movie,
        max_movie=row.max_movie,
        min_tv=row.min_tv,
        max_tv=row.max_tv,
        oldest_date=row.oldest_date,
        recent_date=row.recent_date,
    )


@dataclass
class PostRecord:
    post_id: int
    tmdb_id: int
    type: str
    title: str = ""
    subscription: str = ""
    release_date: Optional[str] = None
    vote_average: float = 0.0
    vote_count: int = 0
    popularity: float = 0.0
    original_language: Optional[str] = None
    genre_ids: List[int] = field(default_factory=list)
    video_key: Optional[str] = None
    overview: str = ""
    poster_path: Optional[str] = None

    @property
    def has_trailer(self) -> bool:
        return bool((self.video_key or "").strip())


def post_from_row(row) -> PostRecord:
    return PostRecord(
        post_id=row.post_id,
        tmdb_id=row.tmdb_id,
        type=row.type,
        title=row.title or "",
        subscription=row.subscription or "",
        release_date=row.release_date,
        vote_average=float(row.vote_average or 0.0),
        vote_count=int(row.vote_count or 0),
        popularity=float(row.popularity or 0.0),
        original_language=row.original_language,
        genre_ids=parse_genre_ids(row.genre_ids),
        video_key=row.video_key,
        overview=row.overview or "",
        poster_path=row.poster_path,
    )


@dataclass
class CastCredit:
    person_id: int
    name: str
    character: Optional[str] = None
    order_index: int = 0
    popularity: float = 0.0
    profile_path: Optional[str] = None


def cast_from_row(row) -> CastCredit:
    return CastCredit(
        person_id=row.person_id,
        name=row.name,
        character=row.character,
        order_index=int(row.order_index or 0),
        popularity=float(row.popularity or 0.0),
        profile_path=row.profile_path,
    )


@dataclass
class CrewCredit:
    person_id: int
    name: str
    job: str = ""
    department: Optional[str] = None
    profile_path: Optional[str] = None


def crew_from_row(row) -> CrewCredit:
    return CrewCredit(
        person_id=row.person_id,
        name=row.name,
        job=row.job or "",
        department=row.department,
        profile_path=row.profile_path,
    )


@dataclass
class GenrePreference:
    genre_id: int
    genre_name: str
    priority: int


@dataclass
class PostInteraction:
    user_id: int
    post_id: int
    start_timestamp: Optional[datetime]
    end_timestamp: Optional[datetime]
    like_state: bool = False
    save_state: bool = False
    comment_button_pressed: bool = False

    @property
    def duration_seconds(self) -> float:
        return duration_seconds(self.start_timestamp, self.end_timestamp)


def post_interaction_from_row(row) -> PostInteraction:
    return PostInteraction(
        user_id=row.user_id,
        post_id=row.post_id,
        start_timestamp=parse_timestamp(row.start_timestamp),
        end_timestamp=parse_timestamp(row.end_timestamp),
        like_state=bool(row.like_state),
        save_state=bool(row.save_state),
        comment_button_pressed=bool(row.comment_button_pressed),
    )


@dataclass
class TrailerInteraction(PostInteraction):
    is_muted: bool = False
    replay_count: int = 0


def trailer_interaction_from_row(row) -> TrailerInteraction:
    return TrailerInteraction(
        user_id=row.user_id,
        post_id=row.post_id,
        start_timestamp=parse_timestamp(row.start_timestamp),
        end_timestamp=parse_timestamp(row.end_timestamp),
        like_state=bool(row.like_state),
        save_state=bool(row.save_state),
        comment_button_pressed=bool(row.comment_button_pressed),
        is_muted=bool(row.is_muted),
        replay_count=int(row.replay_count or 0),
    )


@dataclass
class GenreInteractionStat:
    genre_id: int
    interaction_count: int
    liked_count: int


@dataclass
class PostEngagement:
    """Aggregates over every viewer of one post. ``None`` means no rows."""

    avg_duration: Optional[float] = None
    total_views: int = 0
    like_ratio: Optional[float] = None
    save_ratio: Optional[float] = None


@dataclass
class TrailerEngagement(PostEngagement):
    avg_replays: Optional[float] = None
    unmuted_ratio: Optional[float] = None
