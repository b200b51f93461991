"""Performer listing."""

from sqlalchemy import select

from peek.db.models import (
    EntityType, Performer, PerformerTag, Scene, ScenePerformer,
)
from peek.db.schemas import PerformerFilter
from peek.services.catalog import expand_studio_ids
from peek.services.query.base import EntityQueryBuilder, QueryContext
from peek.services.query.filters import (
    bool_filter, date_filter, membership_filter, number_filter, text_filter,
)
from peek.services.query.hydration import load_many
from peek.services.query.sorting import case_insensitive


class PerformerQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.PERFORMER
    filter_schema = PerformerFilter
    default_sort = "name"

    def search_columns(self) -> list:
        return [Performer.name, Performer.disambiguation, Performer.aliases]

    def annotate(self, ctx: QueryContext) -> None:
        super().annotate(ctx)
        self.annotate_engagement(ctx)

    def sort_expressions(self, ctx: QueryContext) -> dict:
        sorts = super().sort_expressions(ctx)
        sorts.update({
            "name": case_insensitive(Performer.name),
            "birthdate": Performer.birthdate,
            "height": Performer.height_cm,
            "rating": Performer.rating100,
            "scene_count": Performer.scene_count,
            "image_count": Performer.image_count,
            "gallery_count": Performer.gallery_count,
            "o_counter": ctx.user_columns["o_counter"],
            "play_count": ctx.user_columns["play_count"],
            "last_played_at": ctx.user_columns["last_played_at"],
        })
        return sorts

    async def _studios_clause(self, criterion):
        """Performers appearing in scenes from the given studios."""
        if criterion is None:
            return None
        values = None
        if criterion.depth and criterion.modifier in ("INCLUDES", "EXCLUDES"):
            values = await expand_studio_ids(self.db, criterion.value, criterion.depth)
        appearances = (
            select(ScenePerformer.performer_id.label("performer_id"), Scene.studio_id.label("studio_id"))
            .join(Scene, Scene.id == ScenePerformer.scene_id)
            .where(Scene.deleted_at.is_(None), Scene.studio_id.is_not(None))
            .subquery()
        )
        return membership_filter(
            Performer.id, appearances.c.performer_id, appearances.c.studio_id, criterion, values
        )

    async def filter_clauses(self, ctx: QueryContext, filters: PerformerFilter) -> list:
        clauses = await super().filter_clauses(ctx, filters)
        clauses += [
            text_filter([Performer.name, Performer.aliases], filters.name),
            text_filter([Performer.gender], filters.gender),
            text_filter([Performer.country], filters.country),
            text_filter([Performer.ethnicity], filters.ethnicity),
            number_filter(Performer.rating100, filters.rating100),
            number_filter(Performer.height_cm, filters.height),
            number_filter(Performer.scene_count, filters.scene_count),
            number_filter(Performer.image_count, filters.image_count),
            number_filter(Performer.gallery_count, filters.gallery_count),
            number_filter(ctx.user_columns["o_counter"], filters.o_counter),
            number_filter(ctx.user_columns["play_count"], filters.play_count),
            date_filter(Performer.birthdate, filters.birthdate),
            date_filter(ctx.user_columns["last_played_at"], filters.last_played_at),
            await self.tag_membership(PerformerTag.performer_id, PerformerTag.tag_id, filters.tags),
            await self._studios_clause(filters.studios),
            bool_filter(Performer.favorite, filters.catalog_favorite),
        ]
        return clauses

    async def hydrate(self, ctx: QueryContext, items: list[dict]) -> None:
        viewer = ctx.user_id if ctx.apply_exclusions else None
        tags = await load_many(
            self.db, PerformerTag.performer_id, PerformerTag.tag_id,
            EntityType.TAG, [item["id"] for item in items], viewer,
        )
        for item in items:
            item["tags"] = tags.get(item["id"], [])
