"""Shared catalog data-access helpers.

Everything here reads through live queries against the catalog tables; there
is no in-process snapshot of IDs or hierarchy to go stale between syncs.
"""

import logging
from itertools import islice
from typing import Iterable, Iterator

from sqlalchemy import select, func, exists
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from peek.config import get_settings
from peek.db.models import (
    CATALOG_MODELS, EntityType, Studio, TagParent, UserExcludedEntity,
)

logger = logging.getLogger(__name__)
settings = get_settings()


def chunked(values: Iterable, size: int | None = None) -> Iterator[list]:
    """Yield lists of at most `size` items (defaults to the IN-list chunk size)."""
    size = size or settings.sql_in_chunk_size
    iterator = iter(values)
    while chunk := list(islice(iterator, size)):
        yield chunk


def parse_entity_type(value: str) -> EntityType | None:
    """Parse a stored entity type, returning None for unknown values."""
    try:
        return EntityType(value)
    except ValueError:
        return None


def dialect_insert(db: AsyncSession, model):
    """Dialect-specific INSERT supporting ON CONFLICT for the session's backend."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")


def not_excluded(user_id: int, entity_type: EntityType, id_col):
    """NOT EXISTS an exclusion row for (user, type, id_col). Correlates to id_col's table."""
    excluded = aliased(UserExcludedEntity)
    return ~exists().where(
        excluded.user_id == user_id,
        excluded.entity_type == entity_type.value,
        excluded.entity_id == id_col,
    )


def live_ids_query(entity_type: EntityType):
    """SELECT of every non-deleted ID of a type."""
    model = CATALOG_MODELS[entity_type]
    return select(model.id).where(model.deleted_at.is_(None))


async def count_live(db: AsyncSession, entity_type: EntityType) -> int:
    model = CATALOG_MODELS[entity_type]
    result = await db.execute(
        select(func.count()).select_from(model).where(model.deleted_at.is_(None))
    )
    return result.scalar_one_or_none() or 0


async def entity_exists(db: AsyncSession, entity_type: EntityType, entity_id: str) -> bool:
    """True if the entity exists in the catalog and is not soft-deleted."""
    model = CATALOG_MODELS[entity_type]
    result = await db.execute(
        select(model.id).where(model.id == entity_id, model.deleted_at.is_(None))
    )
    return result.scalar_one_or_none() is not None


def display_column(entity_type: EntityType):
    """Human readable label column for a type (title or name)."""
    model = CATALOG_MODELS[entity_type]
    return model.title if hasattr(model, "title") else model.name


async def get_display_names(
    db: AsyncSession, entity_type: EntityType, entity_ids: Iterable[str]
) -> dict[str, str | None]:
    """Map live entity IDs to their display label. Missing/deleted IDs are absent."""
    model = CATALOG_MODELS[entity_type]
    label = display_column(entity_type)
    names: dict[str, str | None] = {}
    for chunk in chunked(set(entity_ids)):
        result = await db.execute(
            select(model.id, label).where(model.id.in_(chunk), model.deleted_at.is_(None))
        )
        names.update({row[0]: row[1] for row in result.all()})
    return names


# ============ Hierarchy ============

async def _expand_descendants(
    db: AsyncSession,
    child_col,
    parent_col,
    root_ids: Iterable[str],
    depth: int | None,
) -> set[str]:
    """Breadth-first walk of a parent/child edge table.

    depth: None or 0 returns the roots only, -1 walks the whole subtree,
    N walks N levels. Cycles are tolerated (visited IDs are never re-expanded).
    """
    found = set(root_ids)
    if not found or not depth:
        return found

    frontier = set(found)
    level = 0
    while frontier and (depth < 0 or level < depth):
        children: set[str] = set()
        for chunk in chunked(frontier):
            result = await db.execute(select(child_col).where(parent_col.in_(chunk)))
            children.update(row[0] for row in result.all())
        frontier = children - found
        found |= frontier
        level += 1
    return found


async def expand_tag_ids(db: AsyncSession, tag_ids: Iterable[str], depth: int | None = -1) -> set[str]:
    """Tag IDs plus their descendants via tag_parents."""
    return await _expand_descendants(db, TagParent.tag_id, TagParent.parent_id, tag_ids, depth)


async def expand_studio_ids(db: AsyncSession, studio_ids: Iterable[str], depth: int | None = -1) -> set[str]:
    """Studio IDs plus their child studios via studios.parent_id."""
    return await _expand_descendants(db, Studio.id, Studio.parent_id, studio_ids, depth)
