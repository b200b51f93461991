"""Tag listing."""

from peek.db.models import EntityType, Tag, TagParent
from peek.db.schemas import TagFilter
from peek.services.query.base import EntityQueryBuilder, QueryContext
from peek.services.query.filters import membership_filter, number_filter, text_filter
from peek.services.query.hydration import load_many
from peek.services.query.sorting import case_insensitive


class TagQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.TAG
    filter_schema = TagFilter
    default_sort = "name"

    def search_columns(self) -> list:
        return [Tag.name, Tag.aliases, Tag.description]

    def annotate(self, ctx: QueryContext) -> None:
        super().annotate(ctx)
        self.annotate_engagement(ctx)

    def sort_expressions(self, ctx: QueryContext) -> dict:
        sorts = super().sort_expressions(ctx)
        sorts.update({
            "name": case_insensitive(Tag.name),
            "scene_count": Tag.scene_count,
            "performer_count": Tag.performer_count,
            "o_counter": ctx.user_columns["o_counter"],
            "play_count": ctx.user_columns["play_count"],
            "last_played_at": ctx.user_columns["last_played_at"],
        })
        return sorts

    async def filter_clauses(self, ctx: QueryContext, filters: TagFilter) -> list:
        clauses = await super().filter_clauses(ctx, filters)
        clauses += [
            text_filter([Tag.name, Tag.aliases], filters.name),
            text_filter([Tag.description], filters.description),
            number_filter(Tag.scene_count, filters.scene_count),
            number_filter(Tag.performer_count, filters.performer_count),
            number_filter(ctx.user_columns["o_counter"], filters.o_counter),
            number_filter(ctx.user_columns["play_count"], filters.play_count),
            membership_filter(Tag.id, TagParent.tag_id, TagParent.parent_id, filters.parents),
            membership_filter(Tag.id, TagParent.parent_id, TagParent.tag_id, filters.children),
        ]
        return clauses

    async def hydrate(self, ctx: QueryContext, items: list[dict]) -> None:
        viewer = ctx.user_id if ctx.apply_exclusions else None
        ids = [item["id"] for item in items]
        parents = await load_many(self.db, TagParent.tag_id, TagParent.parent_id, EntityType.TAG, ids, viewer)
        children = await load_many(self.db, TagParent.parent_id, TagParent.tag_id, EntityType.TAG, ids, viewer)
        for item in items:
            item["parents"] = parents.get(item["id"], [])
            item["children"] = children.get(item["id"], [])
