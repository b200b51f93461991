"""Admin-managed content restrictions.

A restriction is an INCLUDE (allow-list) or EXCLUDE (deny-list) of entity IDs
for one user and one entity type. Every mutation is followed by a full
recompute of that user's exclusion cache.
"""

import logging
from typing import TypedDict

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from peek.db.models import (
    EntityType, RestrictionMode, UserContentRestriction, UserContentRestrictionEntity,
)
from peek.services.exclusion_service import ExclusionComputationService, get_exclusion_service

logger = logging.getLogger(__name__)


class Restriction(TypedDict):
    entity_type: EntityType
    mode: RestrictionMode
    entity_ids: list[str]


async def get_restrictions(db: AsyncSession, user_id: int) -> list[Restriction]:
    """A user's restrictions with their listed IDs. Rows with unknown type/mode are skipped."""
    result = await db.execute(
        select(UserContentRestriction)
        .where(UserContentRestriction.user_id == user_id)
        .order_by(UserContentRestriction.id)
    )
    restrictions = result.scalars().all()
    if not restrictions:
        return []

    result = await db.execute(
        select(UserContentRestrictionEntity.restriction_id, UserContentRestrictionEntity.entity_id)
        .where(UserContentRestrictionEntity.restriction_id.in_([r.id for r in restrictions]))
        .order_by(UserContentRestrictionEntity.entity_id)
    )
    ids_by_restriction: dict[int, list[str]] = {}
    for restriction_id, entity_id in result.all():
        ids_by_restriction.setdefault(restriction_id, []).append(entity_id)

    items: list[Restriction] = []
    for restriction in restrictions:
        try:
            entity_type = EntityType(restriction.entity_type)
            mode = RestrictionMode(restriction.mode)
        except ValueError:
            logger.warning(
                f"Skipping restriction {restriction.id}: invalid type/mode "
                f"{restriction.entity_type!r}/{restriction.mode!r}"
            )
            continue
        items.append(Restriction(
            entity_type=entity_type,
            mode=mode,
            entity_ids=ids_by_restriction.get(restriction.id, []),
        ))
    return items


async def set_restrictions(
    db: AsyncSession,
    user_id: int,
    restrictions: list[Restriction],
    exclusions: ExclusionComputationService | None = None,
) -> None:
    """Replace every restriction of a user, then recompute the user's exclusions.

    Duplicate entries for the same entity type are rejected.
    """
    seen: set[EntityType] = set()
    for item in restrictions:
        if item["entity_type"] in seen:
            raise ValueError(f"Duplicate restriction for entity type {item['entity_type'].value}")
        seen.add(item["entity_type"])

    await _delete_user_restrictions(db, user_id)

    for item in restrictions:
        restriction = UserContentRestriction(
            user_id=user_id,
            entity_type=item["entity_type"].value,
            mode=item["mode"].value,
        )
        db.add(restriction)
        await db.flush()
        db.add_all([
            UserContentRestrictionEntity(restriction_id=restriction.id, entity_id=entity_id)
            for entity_id in sorted(set(item["entity_ids"]))
        ])

    await db.commit()
    logger.info(f"Set {len(restrictions)} restrictions for user {user_id}")

    await (exclusions or get_exclusion_service()).recompute_for_user(user_id)


async def delete_restrictions(
    db: AsyncSession,
    user_id: int,
    exclusions: ExclusionComputationService | None = None,
) -> int:
    """Remove every restriction of a user and recompute. Returns the number removed."""
    removed = await _delete_user_restrictions(db, user_id)
    if not removed:
        return 0
    await db.commit()
    logger.info(f"Removed {removed} restrictions for user {user_id}")

    await (exclusions or get_exclusion_service()).recompute_for_user(user_id)
    return removed


async def _delete_user_restrictions(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(UserContentRestriction.id).where(UserContentRestriction.user_id == user_id)
    )
    restriction_ids = list(result.scalars().all())
    if not restriction_ids:
        return 0

    # Children first: SQLite does not enforce ON DELETE CASCADE by default
    await db.execute(
        delete(UserContentRestrictionEntity).where(
            UserContentRestrictionEntity.restriction_id.in_(restriction_ids)
        )
    )
    await db.execute(delete(UserContentRestriction).where(UserContentRestriction.id.in_(restriction_ids)))
    return len(restriction_ids)
