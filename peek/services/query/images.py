"""Image listing."""

from sqlalchemy import and_, func
from sqlalchemy.orm import aliased

from peek.db.models import (
    EntityType, Image, ImageGallery, ImagePerformer, ImageTag, ImageViewHistory,
)
from peek.db.schemas import ImageFilter
from peek.services.query.base import EntityQueryBuilder, QueryContext
from peek.services.query.filters import (
    bool_filter, date_filter, membership_filter, number_filter, orientation_filter,
    text_filter,
)
from peek.services.query.hydration import load_many, load_one
from peek.services.query.sorting import case_insensitive


class ImageQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.IMAGE
    filter_schema = ImageFilter
    default_sort = "created_at"
    default_direction = "DESC"

    def search_columns(self) -> list:
        return [Image.title, Image.details, Image.code, Image.file_path]

    def annotate(self, ctx: QueryContext) -> None:
        super().annotate(ctx)
        views = aliased(ImageViewHistory)
        ctx.outerjoin(views, and_(
            views.user_id == ctx.user_id,
            views.image_id == Image.id,
        ))
        ctx.user_columns["view_count"] = func.coalesce(views.view_count, 0)
        ctx.user_columns["o_counter"] = func.coalesce(views.o_count, 0)
        ctx.user_columns["last_viewed_at"] = views.last_viewed_at

    def sort_expressions(self, ctx: QueryContext) -> dict:
        sorts = super().sort_expressions(ctx)
        sorts.update({
            "title": case_insensitive(Image.title),
            "date": Image.date,
            "rating": Image.rating100,
            "filesize": Image.filesize,
            "path": Image.file_path,
            "view_count": ctx.user_columns["view_count"],
            "o_counter": ctx.user_columns["o_counter"],
            "last_viewed_at": ctx.user_columns["last_viewed_at"],
        })
        return sorts

    async def filter_clauses(self, ctx: QueryContext, filters: ImageFilter) -> list:
        clauses = await super().filter_clauses(ctx, filters)
        clauses += [
            text_filter([Image.title], filters.title),
            text_filter([Image.file_path], filters.path),
            number_filter(Image.rating100, filters.rating100),
            number_filter(ctx.user_columns["o_counter"], filters.o_counter),
            number_filter(ctx.user_columns["view_count"], filters.view_count),
            number_filter(Image.filesize, filters.filesize),
            number_filter(Image.height, filters.resolution),
            date_filter(Image.date, filters.date),
            date_filter(ctx.user_columns["last_viewed_at"], filters.last_viewed_at),
            await self.studio_membership(Image.studio_id, filters.studios),
            membership_filter(Image.id, ImagePerformer.image_id, ImagePerformer.performer_id, filters.performers),
            await self.tag_membership(ImageTag.image_id, ImageTag.tag_id, filters.tags),
            membership_filter(Image.id, ImageGallery.image_id, ImageGallery.gallery_id, filters.galleries),
            bool_filter(Image.organized, filters.organized),
            orientation_filter(Image.width, Image.height, filters.orientation),
        ]
        return clauses

    async def hydrate(self, ctx: QueryContext, items: list[dict]) -> None:
        viewer = ctx.user_id if ctx.apply_exclusions else None
        ids = [item["id"] for item in items]
        performers = await load_many(
            self.db, ImagePerformer.image_id, ImagePerformer.performer_id,
            EntityType.PERFORMER, ids, viewer,
        )
        tags = await load_many(self.db, ImageTag.image_id, ImageTag.tag_id, EntityType.TAG, ids, viewer)
        galleries = await load_many(
            self.db, ImageGallery.image_id, ImageGallery.gallery_id,
            EntityType.GALLERY, ids, viewer,
        )
        studios = await load_one(self.db, EntityType.STUDIO, {item["studio_id"] for item in items}, viewer)
        for item in items:
            item["performers"] = performers.get(item["id"], [])
            item["tags"] = tags.get(item["id"], [])
            item["galleries"] = galleries.get(item["id"], [])
            item["studio"] = studios.get(item["studio_id"])
