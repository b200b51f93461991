"""Gallery listing."""

from peek.db.models import (
    EntityType, Gallery, GalleryPerformer, GalleryTag, SceneGallery,
)
from peek.db.schemas import GalleryFilter
from peek.services.query.base import EntityQueryBuilder, QueryContext
from peek.services.query.filters import date_filter, membership_filter, number_filter, text_filter
from peek.services.query.hydration import load_many, load_one
from peek.services.query.sorting import case_insensitive


class GalleryQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.GALLERY
    filter_schema = GalleryFilter
    default_sort = "created_at"
    default_direction = "DESC"

    def search_columns(self) -> list:
        return [Gallery.title, Gallery.details, Gallery.code, Gallery.folder_path]

    def sort_expressions(self, ctx: QueryContext) -> dict:
        sorts = super().sort_expressions(ctx)
        sorts.update({
            "title": case_insensitive(Gallery.title),
            "date": Gallery.date,
            "rating": Gallery.rating100,
            "image_count": Gallery.image_count,
            "path": Gallery.folder_path,
        })
        return sorts

    async def filter_clauses(self, ctx: QueryContext, filters: GalleryFilter) -> list:
        clauses = await super().filter_clauses(ctx, filters)
        clauses += [
            text_filter([Gallery.title], filters.title),
            text_filter([Gallery.details], filters.details),
            text_filter([Gallery.folder_path], filters.path),
            text_filter([Gallery.photographer], filters.photographer),
            number_filter(Gallery.rating100, filters.rating100),
            number_filter(Gallery.image_count, filters.image_count),
            date_filter(Gallery.date, filters.date),
            await self.studio_membership(Gallery.studio_id, filters.studios),
            membership_filter(Gallery.id, GalleryPerformer.gallery_id, GalleryPerformer.performer_id, filters.performers),
            await self.tag_membership(GalleryTag.gallery_id, GalleryTag.tag_id, filters.tags),
            membership_filter(Gallery.id, SceneGallery.gallery_id, SceneGallery.scene_id, filters.scenes),
        ]
        return clauses

    async def hydrate(self, ctx: QueryContext, items: list[dict]) -> None:
        viewer = ctx.user_id if ctx.apply_exclusions else None
        ids = [item["id"] for item in items]
        performers = await load_many(
            self.db, GalleryPerformer.gallery_id, GalleryPerformer.performer_id,
            EntityType.PERFORMER, ids, viewer,
        )
        tags = await load_many(self.db, GalleryTag.gallery_id, GalleryTag.tag_id, EntityType.TAG, ids, viewer)
        studios = await load_one(self.db, EntityType.STUDIO, {item["studio_id"] for item in items}, viewer)
        for item in items:
            item["performers"] = performers.get(item["id"], [])
            item["tags"] = tags.get(item["id"], [])
            item["studio"] = studios.get(item["studio_id"])
