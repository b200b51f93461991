"""Scene listing."""

from sqlalchemy import and_, func, or_, select, union
from sqlalchemy.orm import aliased

from peek.db.models import (
    EntityType, Scene, ScenePerformer, SceneTag, SceneInheritedTag, SceneGroup,
    SceneGallery, WatchHistory,
)
from peek.db.schemas import SceneFilter
from peek.services.query.base import EntityQueryBuilder, QueryContext
from peek.services.query.filters import (
    bool_filter, date_filter, favorite_related_filter, membership_filter,
    number_filter, orientation_filter, text_filter,
)
from peek.services.query.hydration import load_many, load_one
from peek.services.query.sorting import case_insensitive


class SceneQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.SCENE
    filter_schema = SceneFilter
    default_sort = "created_at"
    default_direction = "DESC"

    def search_columns(self) -> list:
        return [Scene.title, Scene.details, Scene.code, Scene.file_path]

    def annotate(self, ctx: QueryContext) -> None:
        super().annotate(ctx)
        history = aliased(WatchHistory)
        ctx.outerjoin(history, and_(
            history.user_id == ctx.user_id,
            history.scene_id == Scene.id,
        ))
        ctx.user_columns["play_count"] = func.coalesce(history.play_count, 0)
        ctx.user_columns["play_duration"] = func.coalesce(history.play_duration, 0)
        ctx.user_columns["o_counter"] = func.coalesce(history.o_count, 0)
        ctx.user_columns["resume_time"] = history.resume_time
        ctx.user_columns["last_played_at"] = history.last_played_at

    def sort_expressions(self, ctx: QueryContext) -> dict:
        sorts = super().sort_expressions(ctx)
        sorts.update({
            "title": case_insensitive(Scene.title),
            "date": Scene.date,
            "rating": Scene.rating100,
            "duration": Scene.duration,
            "filesize": Scene.filesize,
            "bitrate": Scene.bitrate,
            "framerate": Scene.framerate,
            "path": Scene.file_path,
            "play_count": ctx.user_columns["play_count"],
            "play_duration": ctx.user_columns["play_duration"],
            "o_counter": ctx.user_columns["o_counter"],
            "last_played_at": ctx.user_columns["last_played_at"],
            "performer_count": self.count_of(ScenePerformer.scene_id),
            "tag_count": self.count_of(SceneTag.scene_id),
        })
        return sorts

    async def _tags_clause(self, criterion):
        if criterion is None:
            return None
        if criterion.modifier == "INCLUDES_ALL" and criterion.depth:
            # Each listed tag must be on the scene directly or through a child tag
            tagged = union(
                select(SceneTag.scene_id.label("scene_id"), SceneTag.tag_id.label("tag_id")),
                select(SceneInheritedTag.scene_id, SceneInheritedTag.tag_id),
            ).subquery()
            return membership_filter(Scene.id, tagged.c.scene_id, tagged.c.tag_id, criterion)
        return await self.tag_membership(SceneTag.scene_id, SceneTag.tag_id, criterion)

    async def filter_clauses(self, ctx: QueryContext, filters: SceneFilter) -> list:
        clauses = await super().filter_clauses(ctx, filters)
        clauses += [
            text_filter([Scene.title], filters.title),
            text_filter([Scene.details], filters.details),
            text_filter([Scene.file_path], filters.path),
            text_filter([Scene.code], filters.code),
            text_filter([Scene.director], filters.director),
            text_filter([Scene.video_codec], filters.video_codec),
            text_filter([Scene.audio_codec], filters.audio_codec),
            number_filter(Scene.rating100, filters.rating100),
            number_filter(ctx.user_columns["o_counter"], filters.o_counter),
            number_filter(ctx.user_columns["play_count"], filters.play_count),
            number_filter(ctx.user_columns["play_duration"], filters.play_duration),
            number_filter(Scene.duration, filters.duration),
            number_filter(Scene.filesize, filters.filesize),
            number_filter(Scene.bitrate, filters.bitrate),
            number_filter(Scene.framerate, filters.framerate),
            number_filter(Scene.height, filters.resolution),
            number_filter(self.count_of(ScenePerformer.scene_id), filters.performer_count),
            number_filter(self.count_of(SceneTag.scene_id), filters.tag_count),
            date_filter(Scene.date, filters.date),
            date_filter(ctx.user_columns["last_played_at"], filters.last_played_at),
            membership_filter(Scene.id, ScenePerformer.scene_id, ScenePerformer.performer_id, filters.performers),
            membership_filter(Scene.id, SceneGroup.scene_id, SceneGroup.group_id, filters.groups),
            membership_filter(Scene.id, SceneGallery.scene_id, SceneGallery.gallery_id, filters.galleries),
            await self._tags_clause(filters.tags),
            await self.studio_membership(Scene.studio_id, filters.studios),
            bool_filter(Scene.organized, filters.organized),
            favorite_related_filter(
                Scene.id, ScenePerformer.scene_id, ScenePerformer.performer_id,
                self.favorites_of(ctx, EntityType.PERFORMER), filters.performer_favorite,
            ),
            favorite_related_filter(
                Scene.id, SceneTag.scene_id, SceneTag.tag_id,
                self.favorites_of(ctx, EntityType.TAG), filters.tag_favorite,
            ),
            orientation_filter(Scene.width, Scene.height, filters.orientation),
        ]
        if filters.studio_favorite is not None:
            favorite_studios = self.favorites_of(ctx, EntityType.STUDIO)
            if filters.studio_favorite:
                clauses.append(Scene.studio_id.in_(favorite_studios))
            else:
                clauses.append(or_(Scene.studio_id.is_(None), Scene.studio_id.not_in(favorite_studios)))
        return clauses

    async def hydrate(self, ctx: QueryContext, items: list[dict]) -> None:
        ids = [item["id"] for item in items]
        viewer = ctx.user_id if ctx.apply_exclusions else None
        performers = await load_many(
            self.db, ScenePerformer.scene_id, ScenePerformer.performer_id,
            EntityType.PERFORMER, ids, viewer,
        )
        tags = await load_many(
            self.db, SceneTag.scene_id, SceneTag.tag_id,
            EntityType.TAG, ids, viewer,
        )
        groups = await load_many(
            self.db, SceneGroup.scene_id, SceneGroup.group_id,
            EntityType.GROUP, ids, viewer,
        )
        galleries = await load_many(
            self.db, SceneGallery.scene_id, SceneGallery.gallery_id,
            EntityType.GALLERY, ids, viewer,
        )
        studios = await load_one(
            self.db, EntityType.STUDIO, {item["studio_id"] for item in items},
            viewer,
        )
        for item in items:
            item["performers"] = performers.get(item["id"], [])
            item["tags"] = tags.get(item["id"], [])
            item["groups"] = groups.get(item["id"], [])
            item["galleries"] = galleries.get(item["id"], [])
            item["studio"] = studios.get(item["studio_id"])
