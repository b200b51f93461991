"""Pydantic schemas for filter criteria and API request/response validation."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from peek.db.models import EntityType, RestrictionMode


# ============ Filter Criteria ============
# Modifiers are plain strings: the query builders log and skip modifiers they
# do not recognise instead of failing the whole listing.

class NumberCriterion(BaseModel):
    """Numeric comparison (EQUALS, NOT_EQUALS, GREATER_THAN, LESS_THAN, BETWEEN, NOT_BETWEEN, IS_NULL, NOT_NULL)."""
    value: float | None = None
    value2: float | None = None
    modifier: str = "GREATER_THAN"


class DateCriterion(BaseModel):
    """Date/datetime comparison, same modifiers as NumberCriterion."""
    value: datetime | date | None = None
    value2: datetime | date | None = None
    modifier: str = "GREATER_THAN"


class TextCriterion(BaseModel):
    """Text match (INCLUDES, EXCLUDES, EQUALS, NOT_EQUALS, IS_NULL, NOT_NULL)."""
    value: str = ""
    modifier: str = "INCLUDES"


class MultiCriterion(BaseModel):
    """Relation membership (INCLUDES, INCLUDES_ALL, EXCLUDES, IS_NULL, NOT_NULL).

    depth applies to hierarchical relations (tags, studios):
    None/0 = exact, -1 = all descendants, N = N levels down.
    """
    value: list[str] = Field(default_factory=list)
    modifier: str = "INCLUDES"
    depth: int | None = None


class IdCriterion(BaseModel):
    """Explicit ID allow/deny list (INCLUDES, EXCLUDES)."""
    value: list[str] = Field(default_factory=list)
    modifier: str = "INCLUDES"


# ============ Entity Filters ============

class SceneFilter(BaseModel):
    q: str | None = None
    ids: IdCriterion | None = None
    title: TextCriterion | None = None
    details: TextCriterion | None = None
    path: TextCriterion | None = None
    code: TextCriterion | None = None
    director: TextCriterion | None = None
    video_codec: TextCriterion | None = None
    audio_codec: TextCriterion | None = None
    rating100: NumberCriterion | None = None
    user_rating: NumberCriterion | None = None
    o_counter: NumberCriterion | None = None
    play_count: NumberCriterion | None = None
    play_duration: NumberCriterion | None = None
    duration: NumberCriterion | None = None
    filesize: NumberCriterion | None = None
    bitrate: NumberCriterion | None = None
    framerate: NumberCriterion | None = None
    resolution: NumberCriterion | None = None  # frame height in pixels
    performer_count: NumberCriterion | None = None
    tag_count: NumberCriterion | None = None
    date: DateCriterion | None = None
    created_at: DateCriterion | None = None
    updated_at: DateCriterion | None = None
    last_played_at: DateCriterion | None = None
    performers: MultiCriterion | None = None
    tags: MultiCriterion | None = None
    studios: MultiCriterion | None = None
    groups: MultiCriterion | None = None
    galleries: MultiCriterion | None = None
    organized: bool | None = None
    favorite: bool | None = None
    performer_favorite: bool | None = None
    studio_favorite: bool | None = None
    tag_favorite: bool | None = None
    orientation: list[str] | None = None  # LANDSCAPE, PORTRAIT, SQUARE


class PerformerFilter(BaseModel):
    q: str | None = None
    ids: IdCriterion | None = None
    name: TextCriterion | None = None
    gender: TextCriterion | None = None
    country: TextCriterion | None = None
    ethnicity: TextCriterion | None = None
    rating100: NumberCriterion | None = None
    user_rating: NumberCriterion | None = None
    height: NumberCriterion | None = None
    scene_count: NumberCriterion | None = None
    image_count: NumberCriterion | None = None
    gallery_count: NumberCriterion | None = None
    o_counter: NumberCriterion | None = None
    play_count: NumberCriterion | None = None
    birthdate: DateCriterion | None = None
    created_at: DateCriterion | None = None
    updated_at: DateCriterion | None = None
    last_played_at: DateCriterion | None = None
    tags: MultiCriterion | None = None
    studios: MultiCriterion | None = None  # performers appearing in those studios' scenes
    favorite: bool | None = None
    catalog_favorite: bool | None = None


class StudioFilter(BaseModel):
    q: str | None = None
    ids: IdCriterion | None = None
    name: TextCriterion | None = None
    details: TextCriterion | None = None
    rating100: NumberCriterion | None = None
    user_rating: NumberCriterion | None = None
    scene_count: NumberCriterion | None = None
    image_count: NumberCriterion | None = None
    o_counter: NumberCriterion | None = None
    play_count: NumberCriterion | None = None
    created_at: DateCriterion | None = None
    updated_at: DateCriterion | None = None
    parents: MultiCriterion | None = None
    tags: MultiCriterion | None = None
    favorite: bool | None = None


class TagFilter(BaseModel):
    q: str | None = None
    ids: IdCriterion | None = None
    name: TextCriterion | None = None
    description: TextCriterion | None = None
    scene_count: NumberCriterion | None = None
    performer_count: NumberCriterion | None = None
    user_rating: NumberCriterion | None = None
    o_counter: NumberCriterion | None = None
    play_count: NumberCriterion | None = None
    created_at: DateCriterion | None = None
    updated_at: DateCriterion | None = None
    parents: MultiCriterion | None = None
    children: MultiCriterion | None = None
    favorite: bool | None = None


class GroupFilter(BaseModel):
    q: str | None = None
    ids: IdCriterion | None = None
    name: TextCriterion | None = None
    director: TextCriterion | None = None
    synopsis: TextCriterion | None = None
    rating100: NumberCriterion | None = None
    user_rating: NumberCriterion | None = None
    duration: NumberCriterion | None = None
    scene_count: NumberCriterion | None = None
    date: DateCriterion | None = None
    created_at: DateCriterion | None = None
    updated_at: DateCriterion | None = None
    studios: MultiCriterion | None = None
    tags: MultiCriterion | None = None
    performers: MultiCriterion | None = None  # via the group's scenes
    favorite: bool | None = None


class GalleryFilter(BaseModel):
    q: str | None = None
    ids: IdCriterion | None = None
    title: TextCriterion | None = None
    details: TextCriterion | None = None
    path: TextCriterion | None = None
    photographer: TextCriterion | None = None
    rating100: NumberCriterion | None = None
    user_rating: NumberCriterion | None = None
    image_count: NumberCriterion | None = None
    date: DateCriterion | None = None
    created_at: DateCriterion | None = None
    updated_at: DateCriterion | None = None
    studios: MultiCriterion | None = None
    performers: MultiCriterion | None = None
    tags: MultiCriterion | None = None
    scenes: MultiCriterion | None = None
    favorite: bool | None = None


class ImageFilter(BaseModel):
    q: str | None = None
    ids: IdCriterion | None = None
    title: TextCriterion | None = None
    path: TextCriterion | None = None
    rating100: NumberCriterion | None = None
    user_rating: NumberCriterion | None = None
    o_counter: NumberCriterion | None = None
    view_count: NumberCriterion | None = None
    filesize: NumberCriterion | None = None
    resolution: NumberCriterion | None = None
    date: DateCriterion | None = None
    created_at: DateCriterion | None = None
    updated_at: DateCriterion | None = None
    last_viewed_at: DateCriterion | None = None
    studios: MultiCriterion | None = None
    performers: MultiCriterion | None = None
    tags: MultiCriterion | None = None
    galleries: MultiCriterion | None = None
    organized: bool | None = None
    favorite: bool | None = None
    orientation: list[str] | None = None


# ============ Library Listing ============

class LibraryQueryRequest(BaseModel):
    """Body of a library listing request."""
    filter: dict[str, Any] = Field(default_factory=dict)
    sort: str | None = None
    direction: str = "DESC"
    page: int = Field(default=1, ge=1)
    per_page: int | None = Field(default=None, ge=1)
    seed: int | None = None
    apply_exclusions: bool = True


class LibraryPageResponse(BaseModel):
    """One page of a library listing."""
    items: list[dict[str, Any]]
    total: int
    page: int
    pages: int


# ============ Visibility ============

class HideEntityRequest(BaseModel):
    entity_type: EntityType
    entity_id: str = Field(min_length=1, max_length=64)


class HiddenEntityItem(BaseModel):
    """A hidden entity with its display name."""
    entity_type: EntityType
    entity_id: str
    name: str | None = None
    hidden_at: datetime


class UnhideAllResponse(BaseModel):
    removed: int


class EntityStatsItem(BaseModel):
    entity_type: EntityType
    visible_count: int
    updated_at: datetime | None = None


class RestrictionItem(BaseModel):
    """A restriction as set by an admin."""
    entity_type: EntityType
    mode: RestrictionMode
    entity_ids: list[str] = Field(default_factory=list)


class RestrictionsUpdate(BaseModel):
    restrictions: list[RestrictionItem]


class RecomputeResponse(BaseModel):
    user_id: int
    excluded: int
    by_reason: dict[str, int]


class RecomputeAllResponse(BaseModel):
    success: int
    failed: int
    errors: list[dict[str, Any]]
