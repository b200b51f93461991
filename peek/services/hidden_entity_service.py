"""User hidden-entity service.

Hidden entities are explicit, user-initiated hides. This service owns the
user_hidden_entities rows and keeps the exclusion cache in step:
hide → incremental exclusion, unhide → background recompute.
"""

import asyncio
import logging
from datetime import datetime
from typing import TypedDict

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from peek.db.models import EntityType, UserHiddenEntity
from peek.services.catalog import dialect_insert, get_display_names, parse_entity_type
from peek.services.exclusion_service import ExclusionComputationService, get_exclusion_service

logger = logging.getLogger(__name__)


class HiddenEntity(TypedDict):
    entity_type: EntityType
    entity_id: str
    name: str | None
    hidden_at: datetime


class HiddenEntityService:
    """Manages a user's hidden entities."""

    def __init__(self, db: AsyncSession, exclusions: ExclusionComputationService | None = None):
        self.db = db
        self.exclusions = exclusions or get_exclusion_service()

    async def hide_entity(self, user_id: int, entity_type: EntityType, entity_id: str) -> None:
        """Hide an entity. Re-hiding refreshes hidden_at."""
        now = datetime.utcnow()
        stmt = dialect_insert(self.db, UserHiddenEntity).values(
            user_id=user_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            hidden_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "entity_type", "entity_id"],
            set_={"hidden_at": now},
        )
        await self.db.execute(stmt)
        await self.db.commit()

        # Synchronous: the caller's next listing must already reflect the hide
        try:
            await self.exclusions.add_hidden_entity(user_id, entity_type, entity_id)
        except Exception:
            # The hide is already committed; a full rebuild picks it up
            logger.error(
                f"User {user_id} hid {entity_type.value} {entity_id} but the exclusion update failed, "
                f"scheduling recompute"
            )
            self.exclusions.schedule_recompute(user_id)
            raise

    async def unhide_entity(self, user_id: int, entity_type: EntityType, entity_id: str) -> asyncio.Task | None:
        """Unhide an entity. Returns the scheduled recompute task, or None if nothing was hidden."""
        result = await self.db.execute(
            delete(UserHiddenEntity).where(
                UserHiddenEntity.user_id == user_id,
                UserHiddenEntity.entity_type == entity_type.value,
                UserHiddenEntity.entity_id == entity_id,
            )
        )
        await self.db.commit()

        if not result.rowcount:
            logger.debug(f"User {user_id} unhide of {entity_type.value} {entity_id}: not hidden")
            return None
        return await self.exclusions.remove_hidden_entity(user_id, entity_type, entity_id)

    async def unhide_all(self, user_id: int, entity_type: EntityType | None = None) -> int:
        """Unhide everything (optionally of one type). Recomputes synchronously when anything changed."""
        stmt = delete(UserHiddenEntity).where(UserHiddenEntity.user_id == user_id)
        if entity_type is not None:
            stmt = stmt.where(UserHiddenEntity.entity_type == entity_type.value)
        result = await self.db.execute(stmt)
        await self.db.commit()

        removed = result.rowcount or 0
        logger.info(
            f"User {user_id} unhid {removed} "
            f"{entity_type.value if entity_type else 'entities of all types'}"
        )
        if removed:
            await self.exclusions.recompute_for_user(user_id)
        return removed

    async def get_hidden_entities(
        self, user_id: int, entity_type: EntityType | None = None
    ) -> list[HiddenEntity]:
        """
        Hidden entities, newest first, with display names.

        Entities that were deleted from the catalog since they were hidden are
        left out of the listing (the hidden row itself is kept).
        """
        query = (
            select(UserHiddenEntity)
            .where(UserHiddenEntity.user_id == user_id)
            .order_by(UserHiddenEntity.hidden_at.desc(), UserHiddenEntity.id.desc())
        )
        if entity_type is not None:
            query = query.where(UserHiddenEntity.entity_type == entity_type.value)

        result = await self.db.execute(query)
        rows = result.scalars().all()

        ids_by_type: dict[EntityType, list[str]] = {}
        parsed = []
        for row in rows:
            row_type = parse_entity_type(row.entity_type)
            if row_type is None:
                logger.warning(f"Skipping hidden row {row.id}: unknown entity type {row.entity_type!r}")
                continue
            ids_by_type.setdefault(row_type, []).append(row.entity_id)
            parsed.append((row_type, row))

        names = {
            row_type: await get_display_names(self.db, row_type, ids)
            for row_type, ids in ids_by_type.items()
        }

        return [
            HiddenEntity(
                entity_type=row_type,
                entity_id=row.entity_id,
                name=names[row_type][row.entity_id],
                hidden_at=row.hidden_at,
            )
            for row_type, row in parsed
            if row.entity_id in names[row_type]
        ]

    async def is_entity_hidden(self, user_id: int, entity_type: EntityType, entity_id: str) -> bool:
        result = await self.db.execute(
            select(UserHiddenEntity.id).where(
                UserHiddenEntity.user_id == user_id,
                UserHiddenEntity.entity_type == entity_type.value,
                UserHiddenEntity.entity_id == entity_id,
            )
        )
        return result.scalar_one_or_none() is not None
