"""
SQLAlchemy ORM models for the library catalog and per-user visibility state.

============================================================================
CATALOG TABLES ARE READ-ONLY HERE
============================================================================
Scene / Performer / Studio / Tag / Group / Gallery / Image and their join
tables are written by the external catalog sync. Rows are soft-deleted by
setting deleted_at; nothing here ever hard-deletes catalog rows.

Visibility state:
- UserContentRestriction (+ entities): admin allow/deny lists   SOURCE OF TRUTH
- UserHiddenEntity: explicit user hides                          SOURCE OF TRUTH
- UserExcludedEntity: derived exclusion cache                    DISPOSABLE
- UserEntityStats: derived visible counts                        DISPOSABLE

Data flow: catalog sync → catalog tables → ExclusionComputationService
           → user_excluded_entities → query builders → API
============================================================================
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Text, Date, DateTime,
    ForeignKey, Index, BigInteger, UniqueConstraint
)

from peek.db.database import Base


# ============ Enumerations ============

class EntityType(str, enum.Enum):
    """The closed set of catalog entity types."""

    SCENE = "scene"
    PERFORMER = "performer"
    STUDIO = "studio"
    TAG = "tag"
    GROUP = "group"
    GALLERY = "gallery"
    IMAGE = "image"

    @classmethod
    def _missing_(cls, value):
        # Restrictions created by older clients used plural type names
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if normalized in (member.value, _PLURALS[member]):
                    return member
        return None


_PLURALS = {
    EntityType.SCENE: "scenes",
    EntityType.PERFORMER: "performers",
    EntityType.STUDIO: "studios",
    EntityType.TAG: "tags",
    EntityType.GROUP: "groups",
    EntityType.GALLERY: "galleries",
    EntityType.IMAGE: "images",
}

# Leaf entities are consumed directly; every other type is a container.
LEAF_TYPES = frozenset({EntityType.SCENE, EntityType.IMAGE})


class RestrictionMode(str, enum.Enum):
    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"


class ExclusionReason(str, enum.Enum):
    """Why an entity is excluded, in precedence order."""

    RESTRICTED = "restricted"
    HIDDEN = "hidden"
    CASCADE = "cascade"
    EMPTY = "empty"


# ============ Catalog Models ============

class Scene(Base):
    """A video scene synced from the catalog."""

    __tablename__ = "scenes"

    id = Column(String(64), primary_key=True)  # catalog ID, numeric string
    title = Column(String(500))
    code = Column(String(100))
    details = Column(Text)
    director = Column(String(200))
    date = Column(Date)
    studio_id = Column(String(64), ForeignKey("studios.id", ondelete="SET NULL"))
    rating100 = Column(Integer)  # Catalog-side rating, 0-100
    organized = Column(Boolean, default=False)
    file_path = Column(String(1000))
    duration = Column(Float)  # seconds
    filesize = Column(BigInteger)
    bitrate = Column(Integer)
    framerate = Column(Float)
    width = Column(Integer)
    height = Column(Integer)
    video_codec = Column(String(50))
    audio_codec = Column(String(50))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    __table_args__ = (
        Index("idx_scenes_studio", "studio_id"),
        Index("idx_scenes_deleted", "deleted_at"),
        Index("idx_scenes_created", "created_at"),
        Index("idx_scenes_date", "date"),
    )


class Performer(Base):
    """A performer synced from the catalog."""

    __tablename__ = "performers"

    id = Column(String(64), primary_key=True)
    name = Column(String(300), nullable=False)
    disambiguation = Column(String(300))
    aliases = Column(Text)  # Newline separated, search only
    gender = Column(String(30))
    birthdate = Column(Date)
    country = Column(String(100))
    ethnicity = Column(String(100))
    height_cm = Column(Integer)
    favorite = Column(Boolean, default=False)  # Catalog-side favorite
    rating100 = Column(Integer)
    scene_count = Column(Integer, default=0)
    image_count = Column(Integer, default=0)
    gallery_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    __table_args__ = (
        Index("idx_performers_name", "name"),
        Index("idx_performers_deleted", "deleted_at"),
    )


class Studio(Base):
    """A studio; studios form a parent/child hierarchy via parent_id."""

    __tablename__ = "studios"

    id = Column(String(64), primary_key=True)
    name = Column(String(300), nullable=False)
    parent_id = Column(String(64), ForeignKey("studios.id", ondelete="SET NULL"))
    details = Column(Text)
    url = Column(String(500))
    favorite = Column(Boolean, default=False)
    rating100 = Column(Integer)
    scene_count = Column(Integer, default=0)
    image_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    __table_args__ = (
        Index("idx_studios_name", "name"),
        Index("idx_studios_parent", "parent_id"),
        Index("idx_studios_deleted", "deleted_at"),
    )


class Tag(Base):
    """A tag; the hierarchy lives in tag_parents."""

    __tablename__ = "tags"

    id = Column(String(64), primary_key=True)
    name = Column(String(300), nullable=False)
    description = Column(Text)
    aliases = Column(Text)
    favorite = Column(Boolean, default=False)
    scene_count = Column(Integer, default=0)
    performer_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    __table_args__ = (
        Index("idx_tags_name", "name"),
        Index("idx_tags_deleted", "deleted_at"),
    )


class TagParent(Base):
    """Tag hierarchy edges (a tag can have multiple parents)."""

    __tablename__ = "tag_parents"

    tag_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)
    parent_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_tag_parents_parent_id", "parent_id"),
    )


class Group(Base):
    """A group (movie / series) of scenes."""

    __tablename__ = "catalog_groups"

    id = Column(String(64), primary_key=True)
    name = Column(String(300), nullable=False)
    aliases = Column(Text)
    date = Column(Date)
    duration = Column(Integer)  # seconds
    director = Column(String(200))
    synopsis = Column(Text)
    studio_id = Column(String(64), ForeignKey("studios.id", ondelete="SET NULL"))
    rating100 = Column(Integer)
    scene_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    __table_args__ = (
        Index("idx_groups_name", "name"),
        Index("idx_groups_deleted", "deleted_at"),
    )


class Gallery(Base):
    """An image gallery."""

    __tablename__ = "galleries"

    id = Column(String(64), primary_key=True)
    title = Column(String(500))
    code = Column(String(100))
    date = Column(Date)
    details = Column(Text)
    photographer = Column(String(200))
    studio_id = Column(String(64), ForeignKey("studios.id", ondelete="SET NULL"))
    folder_path = Column(String(1000))
    rating100 = Column(Integer)
    image_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    __table_args__ = (
        Index("idx_galleries_studio", "studio_id"),
        Index("idx_galleries_deleted", "deleted_at"),
    )


class Image(Base):
    """A single image."""

    __tablename__ = "images"

    id = Column(String(64), primary_key=True)
    title = Column(String(500))
    code = Column(String(100))
    date = Column(Date)
    details = Column(Text)
    studio_id = Column(String(64), ForeignKey("studios.id", ondelete="SET NULL"))
    rating100 = Column(Integer)
    organized = Column(Boolean, default=False)
    file_path = Column(String(1000))
    filesize = Column(BigInteger)
    width = Column(Integer)
    height = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    __table_args__ = (
        Index("idx_images_studio", "studio_id"),
        Index("idx_images_deleted", "deleted_at"),
        Index("idx_images_created", "created_at"),
    )


# ============ Catalog Join Tables ============

class ScenePerformer(Base):
    __tablename__ = "scene_performers"

    scene_id = Column(String(64), ForeignKey("scenes.id", ondelete="CASCADE"), primary_key=True)
    performer_id = Column(String(64), ForeignKey("performers.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_scene_performers_performer", "performer_id"),
    )


class SceneTag(Base):
    """Tags assigned directly to a scene."""

    __tablename__ = "scene_tags"

    scene_id = Column(String(64), ForeignKey("scenes.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_scene_tags_tag", "tag_id"),
    )


class SceneInheritedTag(Base):
    """Precomputed ancestor closure of a scene's direct tags (maintained by sync)."""

    __tablename__ = "scene_inherited_tags"

    scene_id = Column(String(64), ForeignKey("scenes.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_scene_inherited_tags_tag", "tag_id"),
    )


class SceneGroup(Base):
    __tablename__ = "scene_groups"

    scene_id = Column(String(64), ForeignKey("scenes.id", ondelete="CASCADE"), primary_key=True)
    group_id = Column(String(64), ForeignKey("catalog_groups.id", ondelete="CASCADE"), primary_key=True)
    scene_index = Column(Integer)

    __table_args__ = (
        Index("idx_scene_groups_group", "group_id"),
    )


class SceneGallery(Base):
    __tablename__ = "scene_galleries"

    scene_id = Column(String(64), ForeignKey("scenes.id", ondelete="CASCADE"), primary_key=True)
    gallery_id = Column(String(64), ForeignKey("galleries.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_scene_galleries_gallery", "gallery_id"),
    )


class ImagePerformer(Base):
    __tablename__ = "image_performers"

    image_id = Column(String(64), ForeignKey("images.id", ondelete="CASCADE"), primary_key=True)
    performer_id = Column(String(64), ForeignKey("performers.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_image_performers_performer", "performer_id"),
    )


class ImageTag(Base):
    __tablename__ = "image_tags"

    image_id = Column(String(64), ForeignKey("images.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_image_tags_tag", "tag_id"),
    )


class ImageGallery(Base):
    __tablename__ = "image_galleries"

    image_id = Column(String(64), ForeignKey("images.id", ondelete="CASCADE"), primary_key=True)
    gallery_id = Column(String(64), ForeignKey("galleries.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_image_galleries_gallery", "gallery_id"),
    )


class GalleryPerformer(Base):
    __tablename__ = "gallery_performers"

    gallery_id = Column(String(64), ForeignKey("galleries.id", ondelete="CASCADE"), primary_key=True)
    performer_id = Column(String(64), ForeignKey("performers.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_gallery_performers_performer", "performer_id"),
    )


class GalleryTag(Base):
    __tablename__ = "gallery_tags"

    gallery_id = Column(String(64), ForeignKey("galleries.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_gallery_tags_tag", "tag_id"),
    )


class PerformerTag(Base):
    __tablename__ = "performer_tags"

    performer_id = Column(String(64), ForeignKey("performers.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_performer_tags_tag", "tag_id"),
    )


class StudioTag(Base):
    __tablename__ = "studio_tags"

    studio_id = Column(String(64), ForeignKey("studios.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_studio_tags_tag", "tag_id"),
    )


class GroupTag(Base):
    __tablename__ = "group_tags"

    group_id = Column(String(64), ForeignKey("catalog_groups.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_group_tags_tag", "tag_id"),
    )


# ============ Users ============

class User(Base):
    """A library user."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True)
    role = Column(String(20), nullable=False, default="USER")  # USER, ADMIN
    created_at = Column(DateTime, default=datetime.utcnow)


# ============ Visibility Rules (source of truth) ============

class UserContentRestriction(Base):
    """Admin-set allow/deny list for one user and one entity type."""

    __tablename__ = "user_content_restrictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(20), nullable=False)  # EntityType value
    mode = Column(String(10), nullable=False)  # INCLUDE, EXCLUDE
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", name="uq_restriction_user_type"),
        Index("idx_restrictions_user", "user_id"),
    )


class UserContentRestrictionEntity(Base):
    """One entity ID listed by a restriction."""

    __tablename__ = "user_content_restriction_entities"

    restriction_id = Column(
        Integer, ForeignKey("user_content_restrictions.id", ondelete="CASCADE"), primary_key=True
    )
    entity_id = Column(String(64), primary_key=True)


class UserHiddenEntity(Base):
    """An entity the user explicitly hid."""

    __tablename__ = "user_hidden_entities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(64), nullable=False)
    hidden_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", "entity_id", name="uq_hidden_user_entity"),
        Index("idx_hidden_user_hidden_at", "user_id", "hidden_at"),
    )


# ============ Visibility Cache (derived, disposable) ============

class UserExcludedEntity(Base):
    """Precomputed exclusion row. Owned by ExclusionComputationService."""

    __tablename__ = "user_excluded_entities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(64), nullable=False)
    reason = Column(String(20), nullable=False)  # ExclusionReason value
    computed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", "entity_id", name="uq_excluded_user_entity"),
        Index("idx_excluded_user_type", "user_id", "entity_type"),
    )


class UserEntityStats(Base):
    """Visible entity count per user and type. Owned by ExclusionComputationService."""

    __tablename__ = "user_entity_stats"

    user_id = Column(Integer, primary_key=True)
    entity_type = Column(String(20), primary_key=True)
    visible_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# ============ Per-user Annotations (read-only here) ============

class UserRating(Base):
    """User rating / favorite for any entity type."""

    __tablename__ = "user_ratings"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    entity_type = Column(String(20), primary_key=True)
    entity_id = Column(String(64), primary_key=True)
    rating = Column(Integer)  # 0-100
    favorite = Column(Boolean, default=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_user_ratings_favorite", "user_id", "entity_type", "favorite"),
    )


class WatchHistory(Base):
    """Per-user scene play statistics."""

    __tablename__ = "watch_history"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    scene_id = Column(String(64), primary_key=True)
    play_count = Column(Integer, default=0)
    play_duration = Column(Float, default=0.0)  # seconds
    o_count = Column(Integer, default=0)
    resume_time = Column(Float)
    last_played_at = Column(DateTime)


class ImageViewHistory(Base):
    """Per-user image view statistics."""

    __tablename__ = "image_view_history"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    image_id = Column(String(64), primary_key=True)
    view_count = Column(Integer, default=0)
    o_count = Column(Integer, default=0)
    last_viewed_at = Column(DateTime)


class UserEntityEngagement(Base):
    """Aggregated per-user engagement for performers, studios and tags."""

    __tablename__ = "user_entity_engagement"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    entity_type = Column(String(20), primary_key=True)
    entity_id = Column(String(64), primary_key=True)
    o_counter = Column(Integer, default=0)
    play_count = Column(Integer, default=0)
    last_played_at = Column(DateTime)


# ============ Registry ============

CATALOG_MODELS = {
    EntityType.SCENE: Scene,
    EntityType.PERFORMER: Performer,
    EntityType.STUDIO: Studio,
    EntityType.TAG: Tag,
    EntityType.GROUP: Group,
    EntityType.GALLERY: Gallery,
    EntityType.IMAGE: Image,
}

assert set(CATALOG_MODELS) == set(EntityType), "every EntityType needs a catalog model"
assert set(_PLURALS) == set(EntityType), "every EntityType needs a plural alias"
