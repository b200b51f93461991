"""Group listing."""

from sqlalchemy import select

from peek.db.models import EntityType, Group, GroupTag, SceneGroup, ScenePerformer
from peek.db.schemas import GroupFilter
from peek.services.query.base import EntityQueryBuilder, QueryContext
from peek.services.query.filters import date_filter, membership_filter, number_filter, text_filter
from peek.services.query.hydration import load_many, load_one
from peek.services.query.sorting import case_insensitive


class GroupQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.GROUP
    filter_schema = GroupFilter
    default_sort = "name"

    def search_columns(self) -> list:
        return [Group.name, Group.aliases, Group.director]

    def sort_expressions(self, ctx: QueryContext) -> dict:
        sorts = super().sort_expressions(ctx)
        sorts.update({
            "name": case_insensitive(Group.name),
            "date": Group.date,
            "duration": Group.duration,
            "rating": Group.rating100,
            "scene_count": Group.scene_count,
        })
        return sorts

    async def filter_clauses(self, ctx: QueryContext, filters: GroupFilter) -> list:
        clauses = await super().filter_clauses(ctx, filters)

        # Performers of a group are the performers of its scenes
        appearances = (
            select(SceneGroup.group_id.label("group_id"), ScenePerformer.performer_id.label("performer_id"))
            .join(ScenePerformer, ScenePerformer.scene_id == SceneGroup.scene_id)
            .subquery()
        )
        clauses += [
            text_filter([Group.name, Group.aliases], filters.name),
            text_filter([Group.director], filters.director),
            text_filter([Group.synopsis], filters.synopsis),
            number_filter(Group.rating100, filters.rating100),
            number_filter(Group.duration, filters.duration),
            number_filter(Group.scene_count, filters.scene_count),
            date_filter(Group.date, filters.date),
            await self.studio_membership(Group.studio_id, filters.studios),
            await self.tag_membership(GroupTag.group_id, GroupTag.tag_id, filters.tags),
            membership_filter(Group.id, appearances.c.group_id, appearances.c.performer_id, filters.performers),
        ]
        return clauses

    async def hydrate(self, ctx: QueryContext, items: list[dict]) -> None:
        viewer = ctx.user_id if ctx.apply_exclusions else None
        tags = await load_many(
            self.db, GroupTag.group_id, GroupTag.tag_id, EntityType.TAG,
            [item["id"] for item in items], viewer,
        )
        studios = await load_one(self.db, EntityType.STUDIO, {item["studio_id"] for item in items}, viewer)
        for item in items:
            item["tags"] = tags.get(item["id"], [])
            item["studio"] = studios.get(item["studio_id"])
