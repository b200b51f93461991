"""Studio listing."""

from sqlalchemy.orm import aliased

from peek.db.models import EntityType, Studio, StudioTag
from peek.db.schemas import StudioFilter
from peek.services.query.base import EntityQueryBuilder, QueryContext
from peek.services.query.filters import number_filter, text_filter
from peek.services.query.hydration import load_many, load_one
from peek.services.query.sorting import case_insensitive


class StudioQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.STUDIO
    filter_schema = StudioFilter
    default_sort = "name"

    def annotate(self, ctx: QueryContext) -> None:
        super().annotate(ctx)
        self.annotate_engagement(ctx)

    def sort_expressions(self, ctx: QueryContext) -> dict:
        sorts = super().sort_expressions(ctx)
        sorts.update({
            "name": case_insensitive(Studio.name),
            "rating": Studio.rating100,
            "scene_count": Studio.scene_count,
            "image_count": Studio.image_count,
            "o_counter": ctx.user_columns["o_counter"],
            "play_count": ctx.user_columns["play_count"],
            "last_played_at": ctx.user_columns["last_played_at"],
        })
        return sorts

    async def filter_clauses(self, ctx: QueryContext, filters: StudioFilter) -> list:
        clauses = await super().filter_clauses(ctx, filters)
        clauses += [
            text_filter([Studio.name], filters.name),
            text_filter([Studio.details], filters.details),
            number_filter(Studio.rating100, filters.rating100),
            number_filter(Studio.scene_count, filters.scene_count),
            number_filter(Studio.image_count, filters.image_count),
            number_filter(ctx.user_columns["o_counter"], filters.o_counter),
            number_filter(ctx.user_columns["play_count"], filters.play_count),
            await self.studio_membership(Studio.parent_id, filters.parents),
            await self.tag_membership(StudioTag.studio_id, StudioTag.tag_id, filters.tags),
        ]
        return clauses

    async def hydrate(self, ctx: QueryContext, items: list[dict]) -> None:
        viewer = ctx.user_id if ctx.apply_exclusions else None
        ids = [item["id"] for item in items]
        tags = await load_many(self.db, StudioTag.studio_id, StudioTag.tag_id, EntityType.TAG, ids, viewer)
        parents = await load_one(self.db, EntityType.STUDIO, {item["parent_id"] for item in items}, viewer)

        child = aliased(Studio)
        children = await load_many(self.db, child.parent_id, child.id, EntityType.STUDIO, ids, viewer)
        for item in items:
            item["tags"] = tags.get(item["id"], [])
            item["parent"] = parents.get(item["parent_id"])
            item["children"] = children.get(item["id"], [])
