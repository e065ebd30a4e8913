# apps/recengine/models.py
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from pgvector.sqlalchemy import Vector

from config import settings

# Naming convention keeps constraint names predictable across environments
naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=naming_convention)
Base = declarative_base(metadata=metadata)

# JSONB on postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Source-of-truth tables owned by the catalog service. Read-only here.
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, default="")
    username = Column(String(255), nullable=False, unique=True)
    email = Column(String(255), nullable=False, default="")
    language = Column(String(50), nullable=False, default="en")
    region = Column(String(50), nullable=False, default="")
    min_movie = Column(Integer, nullable=True)
    max_movie = Column(Integer, nullable=True)
    min_tv = Column(Integer, nullable=True)
    max_tv = Column(Integer, nullable=True)
    oldest_date = Column(String(50), nullable=True)
    recent_date = Column(String(50), nullable=True)
    recent_login = Column(String(75), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Post(Base):
    __tablename__ = "posts"

    post_id = Column(Integer, primary_key=True, autoincrement=True)
    tmdb_id = Column(Integer, nullable=False)
    type = Column(String(50), nullable=False)  # movie|tv
    title = Column(String(255), nullable=False, default="")
    subscription = Column(String(255), nullable=False, default="")
    release_date = Column(String(100), nullable=True)
    overview = Column(Text, nullable=False, default="")
    poster_path = Column(String, nullable=True)
    vote_average = Column(Float, nullable=False, default=0.0)
    vote_count = Column(Integer, nullable=False, default=0)
    original_language = Column(String(50), nullable=True)
    original_title = Column(String(255), nullable=True)
    popularity = Column(Float, nullable=False, default=0.0)
    genre_ids = Column(String(255), nullable=False, default="")  # comma separated
    video_key = Column(String(100), nullable=True)
    post_like_count = Column(Integer, nullable=False, default=0)
    trailer_like_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class Genre(Base):
    __tablename__ = "genres"

    genre_id = Column(Integer, primary_key=True, autoincrement=True)
    genre_name = Column(String(255), nullable=False)


class PostGenre(Base):
    __tablename__ = "post_genres"

    post_id = Column(Integer, ForeignKey("posts.post_id", ondelete="CASCADE"), primary_key=True)
    genre_id = Column(Integer, ForeignKey("genres.genre_id", ondelete="CASCADE"), primary_key=True)


class UserGenre(Base):
    __tablename__ = "user_genres"

    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    genre_id = Column(Integer, ForeignKey("genres.genre_id", ondelete="CASCADE"), primary_key=True)
    priority = Column(Integer, nullable=False, default=0)


class UserAvoidGenre(Base):
    __tablename__ = "user_avoid_genres"

    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    genre_id = Column(Integer, ForeignKey("genres.genre_id", ondelete="CASCADE"), primary_key=True)


class SubscriptionProvider(Base):
    __tablename__ = "subscription_providers"

    provider_id = Column(Integer, primary_key=True, autoincrement=True)
    provider_name = Column(String(255), nullable=False)


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    provider_id = Column(
        Integer,
        ForeignKey("subscription_providers.provider_id", ondelete="CASCADE"),
        primary_key=True,
    )
    priority = Column(Integer, nullable=False, default=0)


class UserPostInteraction(Base):
    __tablename__ = "user_post_interactions"

    interaction_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    post_id = Column(Integer, ForeignKey("posts.post_id", ondelete="CASCADE"), nullable=False)
    # "YYYY-MM-DD HH:MM:SS"
    start_timestamp = Column(String(75), nullable=False)
    end_timestamp = Column(String(75), nullable=True)
    like_state = Column(Boolean, nullable=False, default=False)
    save_state = Column(Boolean, nullable=False, default=False)
    comment_button_pressed = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_user_post_interactions_user_start", "user_id", "start_timestamp"),
        Index("ix_user_post_interactions_post", "post_id"),
    )


class UserTrailerInteraction(Base):
    __tablename__ = "user_trailer_interactions"

    interaction_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    post_id = Column(Integer, ForeignKey("posts.post_id", ondelete="CASCADE"), nullable=False)
    start_timestamp = Column(String(75), nullable=False)
    end_timestamp = Column(String(75), nullable=True)
    replay_count = Column(Integer, nullable=True)
    like_state = Column(Boolean, nullable=False, default=False)
    save_state = Column(Boolean, nullable=False, default=False)
    is_muted = Column(Boolean, nullable=False, default=False)
    comment_button_pressed = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_user_trailer_interactions_user_start", "user_id", "start_timestamp"),
        Index("ix_user_trailer_interactions_post", "post_id"),
    )


class MoreInformation(Base):
    """Immutable info-button click event."""

    __tablename__ = "more_information"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tmdb_id = Column(Integer, nullable=False)
    type = Column(String(50), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)


class InfoTimestamp(Base):
    __tablename__ = "info_timestamps"

    info_id = Column(
        Integer, ForeignKey("more_information.id", ondelete="CASCADE"), primary_key=True
    )
    session_index = Column(Integer, primary_key=True, default=0)
    start_timestamp = Column(String(75), nullable=False)
    end_timestamp = Column(String(75), nullable=False)


class CastMember(Base):
    __tablename__ = "cast_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tmdb_id = Column(Integer, nullable=False, index=True)
    person_id = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    character = Column(String(255), nullable=True)
    order_index = Column(Integer, nullable=True)
    popularity = Column(Float, nullable=True)
    profile_path = Column(String(255), nullable=True)
    gender = Column(Integer, nullable=True)
    known_for_department = Column(String(100), nullable=True)
    episode_count = Column(Integer, nullable=True)


class CrewMember(Base):
    __tablename__ = "crew"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tmdb_id = Column(Integer, nullable=False, index=True)
    person_id = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    department = Column(String(100), nullable=True)
    job = Column(String(100), nullable=True)
    popularity = Column(Float, nullable=True)
    profile_path = Column(String(255), nullable=True)
    gender = Column(Integer, nullable=True)
    known_for_department = Column(String(100), nullable=True)
    episode_count = Column(Integer, nullable=True)


# ---------------------------------------------------------------------------
# Engine-owned tables
# ---------------------------------------------------------------------------


class UserVector(Base):
    __tablename__ = "user_vectors"

    user_id = Column(Integer, primary_key=True)
    vector = Column(Vector(settings.user_vector_dim), nullable=False)
    dimension = Column(Integer, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index(
            "ix_user_vectors_vector_hnsw",
            "vector",
            postgresql_using="hnsw",
            postgresql_ops={"vector": "vector_cosine_ops"},
        ),
    )


class PostVector(Base):
    __tablename__ = "post_vectors"

    post_id = Column(Integer, primary_key=True)
    vector = Column(Vector(settings.post_vector_dim), nullable=False)
    dimension = Column(Integer, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index(
            "ix_post_vectors_vector_hnsw",
            "vector",
            postgresql_using="hnsw",
            postgresql_ops={"vector": "vector_cosine_ops"},
        ),
    )


class UserBehaviorProfile(Base):
    __tablename__ = "user_behavior_profiles"

    user_id = Column(Integer, primary_key=True)
    profile = Column(JSONType, nullable=False)
    dominant_type = Column(String(50), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_user_behavior_profiles_dominant_type", "dominant_type"),
        Index("ix_user_behavior_profiles_updated_at", "updated_at"),
    )


class UserVectorMetadata(Base):
    __tablename__ = "user_vector_metadata"

    user_id = Column(Integer, primary_key=True)
    interest_weights = Column(JSONType, nullable=True)
    language_weights = Column(JSONType, nullable=True)
    region = Column(String(50), nullable=True)
    demographic_segment = Column(String(50), nullable=True)
    comment = Column(Text, nullable=True)
    more_information = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("ix_user_vector_metadata_updated_at", "updated_at"),)


class PostVectorMetadata(Base):
    __tablename__ = "post_vector_metadata"

    post_id = Column(Integer, primary_key=True)
    tmdb_id = Column(Integer, nullable=True)
    type = Column(String(50), nullable=True)
    genre_weights = Column(JSONType, nullable=True)
    demographic_weights = Column(JSONType, nullable=True)
    region_weights = Column(JSONType, nullable=True)
    comment = Column(Text, nullable=True)
    more_information = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("ix_post_vector_metadata_updated_at", "updated_at"),)


ENGINE_TABLES = [
    UserVector.__table__,
    PostVector.__table__,
    UserBehaviorProfile.__table__,
    UserVectorMetadata.__table__,
    PostVectorMetadata.__table__,
]
