"""Batched loading of related entities for a page of results.

One query per relation, keyed by the page's IDs, then joined in memory.
Never issue per-row queries from a builder.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from peek.db.models import CATALOG_MODELS, EntityType
from peek.services.catalog import display_column, not_excluded


def _related_ref(entity_id: str, label: str | None) -> dict:
    return {"id": entity_id, "name": label}


async def load_many(
    db: AsyncSession,
    owner_col,
    related_col,
    related_type: EntityType,
    owner_ids: list[str],
    user_id: int | None = None,
) -> dict[str, list[dict]]:
    """Related refs per owner ID through a join table.

    Soft-deleted related rows are dropped, and so are rows excluded for
    `user_id` when one is given.
    """
    if not owner_ids:
        return {}
    related = CATALOG_MODELS[related_type]
    label = display_column(related_type)

    query = (
        select(owner_col, related.id, label)
        .join(related, related.id == related_col)
        .where(owner_col.in_(owner_ids), related.deleted_at.is_(None))
        .order_by(owner_col, label, related.id)
    )
    if user_id is not None:
        query = query.where(not_excluded(user_id, related_type, related.id))

    result = await db.execute(query)
    grouped: dict[str, list[dict]] = {}
    for owner_id, related_id, related_label in result.all():
        grouped.setdefault(owner_id, []).append(_related_ref(related_id, related_label))
    return grouped


async def load_one(
    db: AsyncSession,
    related_type: EntityType,
    related_ids: set[str],
    user_id: int | None = None,
) -> dict[str, dict]:
    """Related refs for foreign-key relations (e.g. studio_id), keyed by related ID."""
    related_ids = {related_id for related_id in related_ids if related_id}
    if not related_ids:
        return {}
    related = CATALOG_MODELS[related_type]
    label = display_column(related_type)

    query = select(related.id, label).where(
        related.id.in_(related_ids), related.deleted_at.is_(None)
    )
    if user_id is not None:
        query = query.where(not_excluded(user_id, related_type, related.id))

    result = await db.execute(query)
    return {related_id: _related_ref(related_id, related_label) for related_id, related_label in result.all()}
