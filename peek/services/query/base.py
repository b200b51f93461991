"""Shared execution path for the per-entity library query builders.

A builder composes one parameterized statement per call:

    FROM <entity>
    LEFT JOIN <per-user annotation tables>            (ratings, play stats)
    LEFT JOIN user_excluded_entities  e               (only when applying exclusions)
    WHERE <entity>.deleted_at IS NULL
      AND e.id IS NULL                                (only when applying exclusions)
      AND <filter fragments...>
    ORDER BY <whitelisted sort>, <entity>.id
    OFFSET (page - 1) * per_page LIMIT per_page

The total comes from a COUNT over the identical FROM/JOIN/WHERE, so the page
and its total can never disagree.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, NamedTuple

from pydantic import BaseModel
from sqlalchemy import select, func, and_, distinct
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from peek.config import get_settings
from peek.db.models import (
    CATALOG_MODELS, EntityType, UserExcludedEntity, UserRating, UserEntityEngagement,
)
from peek.db.schemas import MultiCriterion
from peek.services.catalog import expand_studio_ids, expand_tag_ids
from peek.services.query.filters import (
    bool_filter, date_filter, foreign_key_filter, id_filter, membership_filter,
    number_filter, search_filter,
)
from peek.services.query.sorting import seeded_random, unseeded_random

logger = logging.getLogger(__name__)
settings = get_settings()

DIRECTIONS = ("ASC", "DESC")


class QueryResult(NamedTuple):
    items: list[dict]
    total: int


@dataclass
class QueryContext:
    """Per-call state: the user, the outer joins and the user-annotation columns."""
    user_id: int
    apply_exclusions: bool
    joins: list[tuple[Any, Any]] = field(default_factory=list)
    user_columns: dict[str, Any] = field(default_factory=dict)

    def outerjoin(self, target, onclause) -> None:
        self.joins.append((target, onclause))


class EntityQueryBuilder:
    """
    Base class for a listing of one entity type.

    Subclasses declare entity_type, filter_schema, default_sort and
    search_columns, and override annotate(), sort_expressions(),
    filter_clauses() and hydrate().
    """

    entity_type: ClassVar[EntityType]
    filter_schema: ClassVar[type[BaseModel]]
    default_sort: ClassVar[str] = "name"
    default_direction: ClassVar[str] = "ASC"

    def __init__(self, db: AsyncSession):
        self.db = db
        self.model = CATALOG_MODELS[self.entity_type]

    # ---------- hooks ----------

    def search_columns(self) -> list:
        return [self.model.name]

    def annotate(self, ctx: QueryContext) -> None:
        """Join the user's rating/favorite row for this entity."""
        rating = aliased(UserRating)
        ctx.outerjoin(rating, and_(
            rating.user_id == ctx.user_id,
            rating.entity_type == self.entity_type.value,
            rating.entity_id == self.model.id,
        ))
        ctx.user_columns["user_rating"] = rating.rating
        ctx.user_columns["favorite"] = func.coalesce(rating.favorite, False)

    def sort_expressions(self, ctx: QueryContext) -> dict[str, Any]:
        return {
            "created_at": self.model.created_at,
            "updated_at": self.model.updated_at,
            "user_rating": ctx.user_columns["user_rating"],
        }

    async def filter_clauses(self, ctx: QueryContext, filters) -> list:
        """Filters every entity type supports."""
        return [
            id_filter(self.model.id, filters.ids),
            number_filter(ctx.user_columns["user_rating"], getattr(filters, "user_rating", None)),
            bool_filter(ctx.user_columns["favorite"], getattr(filters, "favorite", None)),
            date_filter(self.model.created_at, getattr(filters, "created_at", None)),
            date_filter(self.model.updated_at, getattr(filters, "updated_at", None)),
        ]

    async def hydrate(self, ctx: QueryContext, items: list[dict]) -> None:
        """Attach related collections to the page's items in place."""
        return None

    # ---------- shared helpers for subclasses ----------

    def annotate_engagement(self, ctx: QueryContext) -> None:
        """Join aggregated engagement (performers, studios, tags)."""
        engagement = aliased(UserEntityEngagement)
        ctx.outerjoin(engagement, and_(
            engagement.user_id == ctx.user_id,
            engagement.entity_type == self.entity_type.value,
            engagement.entity_id == self.model.id,
        ))
        ctx.user_columns["o_counter"] = func.coalesce(engagement.o_counter, 0)
        ctx.user_columns["play_count"] = func.coalesce(engagement.play_count, 0)
        ctx.user_columns["last_played_at"] = engagement.last_played_at

    def count_of(self, owner_col, related_col=None):
        """Correlated COUNT of join-table rows for the listed entity."""
        column = related_col if related_col is not None else owner_col
        return (
            select(func.count(column))
            .where(owner_col == self.model.id)
            .correlate(self.model)
            .scalar_subquery()
        )

    def favorites_of(self, ctx: QueryContext, entity_type: EntityType):
        """IDs of `entity_type` the user marked favorite."""
        return select(UserRating.entity_id).where(
            UserRating.user_id == ctx.user_id,
            UserRating.entity_type == entity_type.value,
            UserRating.favorite == True,  # noqa: E712
        )

    async def tag_membership(self, owner_col, related_col, criterion: MultiCriterion | None):
        """Tag membership with hierarchy depth expansion (INCLUDES / EXCLUDES only)."""
        if criterion is None:
            return None
        values = None
        if criterion.depth and criterion.modifier in ("INCLUDES", "EXCLUDES"):
            values = await expand_tag_ids(self.db, criterion.value, criterion.depth)
        return membership_filter(self.model.id, owner_col, related_col, criterion, values)

    async def studio_membership(self, fk_col, criterion: MultiCriterion | None):
        """Studio foreign-key membership with child-studio depth expansion."""
        if criterion is None:
            return None
        values = None
        if criterion.depth and criterion.modifier in ("INCLUDES", "EXCLUDES"):
            values = await expand_studio_ids(self.db, criterion.value, criterion.depth)
        return foreign_key_filter(fk_col, criterion, values)

    # ---------- execution ----------

    def _coerce_filters(self, filters):
        if filters is None:
            return self.filter_schema()
        if isinstance(filters, self.filter_schema):
            return filters
        if isinstance(filters, dict):
            # pydantic.ValidationError is a ValueError
            return self.filter_schema.model_validate(filters)
        raise TypeError(
            f"{type(self).__name__} expects {self.filter_schema.__name__} or dict, "
            f"got {type(filters).__name__}"
        )

    def _order_by(self, ctx: QueryContext, sort: str | None, direction: str | None, seed: int | None) -> list:
        direction = (direction or self.default_direction).upper()
        if direction not in DIRECTIONS:
            logger.warning(f"Unknown sort direction {direction!r} for {self.entity_type.value}, using {self.default_direction}")
            direction = self.default_direction

        sort = sort or self.default_sort
        if sort == "random":
            if seed is None:
                return [unseeded_random()]
            expr = seeded_random(self.model.id, seed)
        else:
            sorts = self.sort_expressions(ctx)
            expr = sorts.get(sort)
            if expr is None:
                logger.warning(f"Unknown sort {sort!r} for {self.entity_type.value}, using {self.default_sort}")
                expr = sorts[self.default_sort]

        # Primary key tiebreaker keeps pages stable across identical requests
        if direction == "ASC":
            return [expr.asc().nullslast(), self.model.id.asc()]
        return [expr.desc().nullslast(), self.model.id.desc()]

    def _with_joins(self, ctx: QueryContext, query):
        query = query.select_from(self.model)
        for target, onclause in ctx.joins:
            query = query.outerjoin(target, onclause)
        return query

    def _serialize(self, row, ctx: QueryContext) -> dict:
        entity = row[0]
        item = {}
        for column in self.model.__table__.columns:
            if column.key == "deleted_at":
                continue
            # The user's own value wins the plain key (e.g. favorite)
            key = f"catalog_{column.key}" if column.key in ctx.user_columns else column.key
            item[key] = getattr(entity, column.key)
        mapping = row._mapping
        for name in ctx.user_columns:
            item[name] = mapping[name]
        return item

    async def execute(
        self,
        user_id: int,
        filters=None,
        apply_exclusions: bool = True,
        sort: str | None = None,
        direction: str | None = None,
        page: int = 1,
        per_page: int | None = None,
        random_seed: int | None = None,
    ) -> QueryResult:
        """Run the listing and return one page plus the total match count.

        No matches is a normal result (items=[], total=0). Invalid paging or
        filter input raises ValueError.
        """
        if per_page is None:
            per_page = settings.default_per_page
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if per_page < 1:
            raise ValueError(f"per_page must be >= 1, got {per_page}")

        filters = self._coerce_filters(filters)
        ctx = QueryContext(user_id=user_id, apply_exclusions=apply_exclusions)
        self.annotate(ctx)

        conditions = [self.model.deleted_at.is_(None)]
        if apply_exclusions:
            excluded = aliased(UserExcludedEntity)
            ctx.outerjoin(excluded, and_(
                excluded.user_id == user_id,
                excluded.entity_type == self.entity_type.value,
                excluded.entity_id == self.model.id,
            ))
            conditions.append(excluded.id.is_(None))

        clauses = await self.filter_clauses(ctx, filters)
        clauses.append(search_filter(self.search_columns(), filters.q))
        conditions.extend(clause for clause in clauses if clause is not None)

        labelled = [expr.label(name) for name, expr in ctx.user_columns.items()]
        query = (
            self._with_joins(ctx, select(self.model, *labelled))
            .where(*conditions)
            .order_by(*self._order_by(ctx, sort, direction, random_seed))
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        count_query = self._with_joins(ctx, select(func.count(distinct(self.model.id)))).where(*conditions)

        result = await self.db.execute(query)
        rows = result.all()

        count_result = await self.db.execute(count_query)
        total = count_result.scalar_one_or_none() or 0

        items = [self._serialize(row, ctx) for row in rows]
        if items:
            await self.hydrate(ctx, items)
        return QueryResult(items=items, total=total)
