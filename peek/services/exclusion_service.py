"""
Exclusion computation engine: the per-user visibility cache.

============================================================================
WHAT THIS MAINTAINS
============================================================================
user_excluded_entities holds, for every user, every catalog entity that must
not appear in that user's listings. user_entity_stats holds the matching
visible counts. Both tables are DERIVED and can be truncated and rebuilt at
any time with recompute_all_users(). This module is the only writer.

Full recompute (one transaction per user):
1. Clear      - delete the user's exclusion rows
2. Direct     - restrictions (EXCLUDE lists, inverted INCLUDE lists) and
                explicit hides
3. Cascade    - propagate along fixed relationship edges until no new
                entity is reached
4. Empty      - containers with no visible leaf content left, repeated
                until a pass adds nothing
5. Stats      - visible count per entity type

Hiding is applied incrementally (direct row + its cascade closure). Unhiding
cannot be undone incrementally because other rows may depend on the hidden
entity, so it schedules a full background recompute instead.
============================================================================
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Callable, TypedDict

from sqlalchemy import select, delete, insert, exists, literal, func, union
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from peek.config import get_settings
from peek.core.tasks import TaskManager
from peek.db.database import async_session
from peek.db.models import (
    CATALOG_MODELS, LEAF_TYPES, EntityType, ExclusionReason, RestrictionMode,
    Scene, Image, Tag, TagParent, ScenePerformer, SceneTag, SceneInheritedTag,
    SceneGroup, SceneGallery, ImagePerformer, ImageTag, ImageGallery,
    GalleryTag, PerformerTag, StudioTag, GroupTag,
    User, UserContentRestriction, UserContentRestrictionEntity,
    UserHiddenEntity, UserExcludedEntity, UserEntityStats,
)
from peek.services.catalog import (
    chunked, count_live, dialect_insert, expand_tag_ids, live_ids_query,
    not_excluded, parse_entity_type,
)

logger = logging.getLogger(__name__)
settings = get_settings()

ExclusionKey = tuple[EntityType, str]

_EXCLUDED_COLUMNS = ["user_id", "entity_type", "entity_id", "reason", "computed_at"]


class RecomputeResult(TypedDict):
    """Summary of one user's recompute."""
    user_id: int
    excluded: int
    by_reason: dict[str, int]


class RecomputeAllResult(TypedDict):
    """Summary of a recompute over every user."""
    success: int
    failed: int
    errors: list[dict]


# ============ Cascade Edges ============

@dataclass(frozen=True)
class CascadeEdge:
    """Excluding a `source` entity excludes the live `target` entities returned by `query`."""
    source: EntityType
    target: EntityType
    query: Callable[[list[str]], object]
    expand_tag_descendants: bool = False


def _junction_edge(source: EntityType, target: EntityType, target_col, source_col) -> CascadeEdge:
    target_model = CATALOG_MODELS[target]

    def query(source_ids: list[str]):
        return (
            select(target_col)
            .join(target_model, target_model.id == target_col)
            .where(source_col.in_(source_ids), target_model.deleted_at.is_(None))
        )

    # Excluding a tag also excludes whatever carries one of its descendants
    return CascadeEdge(source, target, query, expand_tag_descendants=source is EntityType.TAG)


def _studio_scenes(studio_ids: list[str]):
    return select(Scene.id).where(Scene.studio_id.in_(studio_ids), Scene.deleted_at.is_(None))


def _tagged_scenes(tag_ids: list[str]):
    # Direct tags and the inherited closure both count
    direct = (
        select(SceneTag.scene_id)
        .join(Scene, Scene.id == SceneTag.scene_id)
        .where(SceneTag.tag_id.in_(tag_ids), Scene.deleted_at.is_(None))
    )
    inherited = (
        select(SceneInheritedTag.scene_id)
        .join(Scene, Scene.id == SceneInheritedTag.scene_id)
        .where(SceneInheritedTag.tag_id.in_(tag_ids), Scene.deleted_at.is_(None))
    )
    return union(direct, inherited)


CASCADE_EDGES: tuple[CascadeEdge, ...] = (
    _junction_edge(EntityType.PERFORMER, EntityType.SCENE, ScenePerformer.scene_id, ScenePerformer.performer_id),
    CascadeEdge(EntityType.STUDIO, EntityType.SCENE, _studio_scenes),
    _junction_edge(EntityType.GROUP, EntityType.SCENE, SceneGroup.scene_id, SceneGroup.group_id),
    _junction_edge(EntityType.GALLERY, EntityType.SCENE, SceneGallery.scene_id, SceneGallery.gallery_id),
    _junction_edge(EntityType.GALLERY, EntityType.IMAGE, ImageGallery.image_id, ImageGallery.gallery_id),
    CascadeEdge(EntityType.TAG, EntityType.SCENE, _tagged_scenes, expand_tag_descendants=True),
    _junction_edge(EntityType.TAG, EntityType.PERFORMER, PerformerTag.performer_id, PerformerTag.tag_id),
    _junction_edge(EntityType.TAG, EntityType.STUDIO, StudioTag.studio_id, StudioTag.tag_id),
    _junction_edge(EntityType.TAG, EntityType.GROUP, GroupTag.group_id, GroupTag.tag_id),
)


# ============ Empty Containers ============

# Containers that hold other containers are evaluated last
EMPTY_PASS_ORDER: tuple[EntityType, ...] = (
    EntityType.GALLERY,
    EntityType.PERFORMER,
    EntityType.STUDIO,
    EntityType.GROUP,
    EntityType.TAG,
)

assert set(EMPTY_PASS_ORDER) == set(EntityType) - LEAF_TYPES, "every container type needs an empty rule"


def _visible_through(user_id: int, member_type: EntityType, member_col, owner_col, owner_id_col):
    """EXISTS a live, non-excluded member linked to the owner through a join table."""
    member = CATALOG_MODELS[member_type]
    return exists(
        select(member_col)
        .join(member, member.id == member_col)
        .where(
            owner_col == owner_id_col,
            member.deleted_at.is_(None),
            not_excluded(user_id, member_type, member.id),
        )
    )


def _visible_owned(user_id: int, member_model, member_type: EntityType, owner_id_col):
    """EXISTS a live, non-excluded member whose studio_id is the owner."""
    return exists(
        select(member_model.id).where(
            member_model.studio_id == owner_id_col,
            member_model.deleted_at.is_(None),
            not_excluded(user_id, member_type, member_model.id),
        )
    )


def _empty_conditions(user_id: int, entity_type: EntityType) -> list:
    """WHERE conditions selecting containers of `entity_type` with nothing visible left."""
    model = CATALOG_MODELS[entity_type]
    conditions = [model.deleted_at.is_(None), not_excluded(user_id, entity_type, model.id)]

    if entity_type is EntityType.GALLERY:
        conditions.append(~_visible_through(
            user_id, EntityType.IMAGE, ImageGallery.image_id, ImageGallery.gallery_id, model.id))
    elif entity_type is EntityType.PERFORMER:
        conditions.append(~_visible_through(
            user_id, EntityType.SCENE, ScenePerformer.scene_id, ScenePerformer.performer_id, model.id))
        conditions.append(~_visible_through(
            user_id, EntityType.IMAGE, ImagePerformer.image_id, ImagePerformer.performer_id, model.id))
    elif entity_type is EntityType.STUDIO:
        conditions.append(~_visible_owned(user_id, Scene, EntityType.SCENE, model.id))
        conditions.append(~_visible_owned(user_id, Image, EntityType.IMAGE, model.id))
    elif entity_type is EntityType.GROUP:
        conditions.append(~_visible_through(
            user_id, EntityType.SCENE, SceneGroup.scene_id, SceneGroup.group_id, model.id))
    elif entity_type is EntityType.TAG:
        for member_type, member_col, owner_col in (
            (EntityType.SCENE, SceneTag.scene_id, SceneTag.tag_id),
            (EntityType.IMAGE, ImageTag.image_id, ImageTag.tag_id),
            (EntityType.PERFORMER, PerformerTag.performer_id, PerformerTag.tag_id),
            (EntityType.STUDIO, StudioTag.studio_id, StudioTag.tag_id),
            (EntityType.GROUP, GroupTag.group_id, GroupTag.tag_id),
            (EntityType.GALLERY, GalleryTag.gallery_id, GalleryTag.tag_id),
        ):
            conditions.append(~_visible_through(user_id, member_type, member_col, owner_col, model.id))
        # Parent tags stay visible while they have a visible child
        child = aliased(Tag)
        conditions.append(~exists(
            select(TagParent.tag_id)
            .join(child, child.id == TagParent.tag_id)
            .where(
                TagParent.parent_id == model.id,
                child.deleted_at.is_(None),
                not_excluded(user_id, EntityType.TAG, child.id),
            )
        ))
    else:
        raise ValueError(f"{entity_type.value} is a leaf type and cannot be empty")

    return conditions


# ============ Service ============

class ExclusionComputationService:
    """
    Builds and maintains the per-user exclusion cache.

    Each public method opens its own session from `session_factory` so the
    transaction boundary is owned here, not by the caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        task_manager: TaskManager | None = None,
    ):
        self._session_factory = session_factory
        self._task_manager = task_manager or TaskManager.get_instance()

    # ---------- full recompute ----------

    async def recompute_for_user(self, user_id: int) -> RecomputeResult:
        """Atomically rebuild every exclusion and stats row for one user.

        Raises on failure after rolling back, leaving the previous cache intact.
        """
        start = time.monotonic()
        computed_at = datetime.utcnow()

        async with self._session_factory() as db:
            try:
                # Phase 1: clear
                await db.execute(
                    delete(UserExcludedEntity).where(UserExcludedEntity.user_id == user_id)
                )

                # Phase 2: direct exclusions
                exclusions = await self._collect_direct(db, user_id)
                logger.debug(f"User {user_id}: {len(exclusions)} direct exclusions")

                # Phase 3: cascade
                cascaded = await self._compute_cascade(db, set(exclusions), set(exclusions))
                for key in cascaded:
                    exclusions.setdefault(key, ExclusionReason.CASCADE)
                logger.debug(f"User {user_id}: {len(cascaded)} cascade exclusions")

                await self._insert_exclusions(db, user_id, exclusions, computed_at)

                # Phase 4: empty containers
                empty_count = await self._exclude_empty_containers(db, user_id, computed_at)
                logger.debug(f"User {user_id}: {empty_count} empty containers")

                # Phase 5: stats
                await self._update_stats(db, user_id, list(EntityType), computed_at)

                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error(f"Exclusion recompute failed for user {user_id}: {e}", exc_info=True)
                raise

        by_reason = Counter(reason.value for reason in exclusions.values())
        if empty_count:
            by_reason[ExclusionReason.EMPTY.value] = empty_count
        total = len(exclusions) + empty_count

        elapsed = time.monotonic() - start
        logger.info(
            f"Recomputed exclusions for user {user_id}: {total} excluded "
            f"({dict(by_reason)}) in {elapsed:.2f}s"
        )
        return RecomputeResult(user_id=user_id, excluded=total, by_reason=dict(by_reason))

    async def recompute_all_users(self) -> RecomputeAllResult:
        """Recompute every user. Per-user failures are collected, not raised."""
        async with self._session_factory() as db:
            result = await db.execute(select(User.id).order_by(User.id))
            user_ids = list(result.scalars().all())

        concurrency = max(1, settings.exclusion_recompute_concurrency)
        logger.info(f"Recomputing exclusions for {len(user_ids)} users (concurrency={concurrency})")
        start = time.monotonic()

        summary = RecomputeAllResult(success=0, failed=0, errors=[])
        semaphore = asyncio.Semaphore(concurrency)

        async def run(user_id: int):
            async with semaphore:
                try:
                    await self.recompute_for_user(user_id)
                    summary["success"] += 1
                except Exception as e:
                    summary["failed"] += 1
                    summary["errors"].append({"user_id": user_id, "error": str(e)})

        await asyncio.gather(*(run(user_id) for user_id in user_ids))

        elapsed = time.monotonic() - start
        if summary["failed"]:
            logger.warning(
                f"Exclusion recompute finished with {summary['failed']} failures "
                f"({summary['success']} succeeded) in {elapsed:.1f}s"
            )
        else:
            logger.info(f"Exclusion recompute complete for {summary['success']} users in {elapsed:.1f}s")
        return summary

    # ---------- incremental paths ----------

    async def add_hidden_entity(self, user_id: int, entity_type: EntityType, entity_id: str) -> int:
        """Exclude one hidden entity and its cascade closure without a full recompute.

        Returns the number of exclusion rows written or refreshed.
        """
        computed_at = datetime.utcnow()
        seed = {(entity_type, entity_id)}

        async with self._session_factory() as db:
            try:
                # A hide outranks an existing cascade/empty row but never a restriction
                stmt = dialect_insert(db, UserExcludedEntity).values(
                    user_id=user_id,
                    entity_type=entity_type.value,
                    entity_id=entity_id,
                    reason=ExclusionReason.HIDDEN.value,
                    computed_at=computed_at,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["user_id", "entity_type", "entity_id"],
                    set_={"reason": ExclusionReason.HIDDEN.value, "computed_at": computed_at},
                    where=UserExcludedEntity.reason.in_(
                        [ExclusionReason.CASCADE.value, ExclusionReason.EMPTY.value]
                    ),
                )
                await db.execute(stmt)

                cascaded = await self._compute_cascade(db, set(seed), set(seed))
                rows = [
                    {
                        "user_id": user_id,
                        "entity_type": target_type.value,
                        "entity_id": target_id,
                        "reason": ExclusionReason.CASCADE.value,
                        "computed_at": computed_at,
                    }
                    for target_type, target_id in cascaded
                ]
                for batch in chunked(rows, settings.exclusion_insert_batch_size):
                    stmt = dialect_insert(db, UserExcludedEntity).values(batch)
                    await db.execute(
                        stmt.on_conflict_do_nothing(index_elements=["user_id", "entity_type", "entity_id"])
                    )

                affected = {entity_type} | {target_type for target_type, _ in cascaded}
                await self._update_stats(db, user_id, sorted(affected, key=lambda t: t.value), computed_at)
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error(
                    f"Failed to add hidden {entity_type.value} {entity_id} for user {user_id}: {e}",
                    exc_info=True,
                )
                raise

        logger.info(
            f"Hid {entity_type.value} {entity_id} for user {user_id} "
            f"(+{len(cascaded)} cascade exclusions)"
        )
        return 1 + len(cascaded)

    async def remove_hidden_entity(self, user_id: int, entity_type: EntityType, entity_id: str) -> asyncio.Task:
        """Drop the direct hidden row now and rebuild the user's cache in the background.

        The returned task never raises; failures are logged and the cache
        stays stale until the next recompute.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                delete(UserExcludedEntity).where(
                    UserExcludedEntity.user_id == user_id,
                    UserExcludedEntity.entity_type == entity_type.value,
                    UserExcludedEntity.entity_id == entity_id,
                    UserExcludedEntity.reason == ExclusionReason.HIDDEN.value,
                )
            )
            await db.commit()

        logger.info(
            f"Unhid {entity_type.value} {entity_id} for user {user_id} "
            f"({result.rowcount} direct rows removed), scheduling recompute"
        )
        return self.schedule_recompute(user_id)

    def schedule_recompute(self, user_id: int) -> asyncio.Task:
        """Rebuild a user's cache in the background."""
        return self._task_manager.create_task(
            self._background_recompute(user_id),
            name=f"exclusion_recompute_user_{user_id}",
        )

    async def _background_recompute(self, user_id: int) -> None:
        try:
            await self.recompute_for_user(user_id)
        except Exception as e:
            logger.error(f"Background exclusion recompute failed for user {user_id}: {e}")

    # ---------- phases ----------

    async def _collect_direct(self, db: AsyncSession, user_id: int) -> dict[ExclusionKey, ExclusionReason]:
        """Restricted and hidden entities. The first reason recorded for an entity wins."""
        direct: dict[ExclusionKey, ExclusionReason] = {}

        result = await db.execute(
            select(UserContentRestriction)
            .where(UserContentRestriction.user_id == user_id)
            .order_by(UserContentRestriction.id)
        )
        for restriction in result.scalars().all():
            entity_type = parse_entity_type(restriction.entity_type)
            if entity_type is None:
                logger.warning(
                    f"Skipping restriction {restriction.id} for user {user_id}: "
                    f"unknown entity type {restriction.entity_type!r}"
                )
                continue
            try:
                mode = RestrictionMode(restriction.mode)
            except ValueError:
                logger.warning(
                    f"Skipping restriction {restriction.id} for user {user_id}: "
                    f"unknown mode {restriction.mode!r}"
                )
                continue

            listed = select(UserContentRestrictionEntity.entity_id).where(
                UserContentRestrictionEntity.restriction_id == restriction.id
            )
            if mode is RestrictionMode.EXCLUDE:
                query = listed
            else:
                # Inversion runs against the live catalog, never a cached ID set
                model = CATALOG_MODELS[entity_type]
                query = live_ids_query(entity_type).where(model.id.not_in(listed))

            ids = await db.execute(query)
            for (entity_id,) in ids.all():
                direct.setdefault((entity_type, entity_id), ExclusionReason.RESTRICTED)

        result = await db.execute(
            select(UserHiddenEntity.entity_type, UserHiddenEntity.entity_id)
            .where(UserHiddenEntity.user_id == user_id)
        )
        for raw_type, entity_id in result.all():
            entity_type = parse_entity_type(raw_type)
            if entity_type is None:
                logger.warning(f"Skipping hidden entity {entity_id} for user {user_id}: unknown type {raw_type!r}")
                continue
            direct.setdefault((entity_type, entity_id), ExclusionReason.HIDDEN)

        return direct

    async def _compute_cascade(
        self,
        db: AsyncSession,
        known: set[ExclusionKey],
        frontier: set[ExclusionKey],
    ) -> list[ExclusionKey]:
        """Follow CASCADE_EDGES from `frontier` until nothing new is reached.

        One bulk query per edge per round. Returns newly reached keys that are
        not already in `known`.
        """
        known = set(known)
        cascaded: list[ExclusionKey] = []

        while frontier:
            by_type: dict[EntityType, set[str]] = {}
            for entity_type, entity_id in frontier:
                by_type.setdefault(entity_type, set()).add(entity_id)

            expanded_tags: set[str] | None = None
            next_frontier: set[ExclusionKey] = set()

            for edge in CASCADE_EDGES:
                source_ids = by_type.get(edge.source)
                if not source_ids:
                    continue
                if edge.expand_tag_descendants:
                    if expanded_tags is None:
                        expanded_tags = await expand_tag_ids(db, source_ids, depth=-1)
                    source_ids = expanded_tags

                for chunk in chunked(sorted(source_ids)):
                    result = await db.execute(edge.query(chunk))
                    for (target_id,) in result.all():
                        key = (edge.target, target_id)
                        if key not in known:
                            known.add(key)
                            next_frontier.add(key)
                            cascaded.append(key)

            frontier = next_frontier

        return cascaded

    async def _insert_exclusions(
        self,
        db: AsyncSession,
        user_id: int,
        exclusions: dict[ExclusionKey, ExclusionReason],
        computed_at: datetime,
    ) -> None:
        rows = [
            {
                "user_id": user_id,
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "reason": reason.value,
                "computed_at": computed_at,
            }
            for (entity_type, entity_id), reason in exclusions.items()
        ]
        for batch in chunked(rows, settings.exclusion_insert_batch_size):
            await db.execute(insert(UserExcludedEntity), batch)

    async def _exclude_empty_containers(self, db: AsyncSession, user_id: int, computed_at: datetime) -> int:
        """Insert reason=empty rows until a full pass over every container type adds nothing."""
        total = 0
        passes = 0
        while True:
            passes += 1
            added = 0
            for entity_type in EMPTY_PASS_ORDER:
                model = CATALOG_MODELS[entity_type]
                candidates = select(
                    literal(user_id),
                    literal(entity_type.value),
                    model.id,
                    literal(ExclusionReason.EMPTY.value),
                    literal(computed_at),
                ).where(*_empty_conditions(user_id, entity_type))
                result = await db.execute(
                    insert(UserExcludedEntity).from_select(_EXCLUDED_COLUMNS, candidates)
                )
                added += max(result.rowcount or 0, 0)
            total += added
            if not added:
                break

        if passes > 2:
            logger.debug(f"User {user_id}: empty-container pass needed {passes} iterations")
        return total

    async def _update_stats(
        self,
        db: AsyncSession,
        user_id: int,
        entity_types: list[EntityType],
        computed_at: datetime,
    ) -> None:
        rows = []
        for entity_type in entity_types:
            model = CATALOG_MODELS[entity_type]
            total = await count_live(db, entity_type)
            # Only live entities count against the total
            result = await db.execute(
                select(func.count())
                .select_from(UserExcludedEntity)
                .join(model, model.id == UserExcludedEntity.entity_id)
                .where(
                    UserExcludedEntity.user_id == user_id,
                    UserExcludedEntity.entity_type == entity_type.value,
                    model.deleted_at.is_(None),
                )
            )
            excluded = result.scalar_one_or_none() or 0
            rows.append({
                "user_id": user_id,
                "entity_type": entity_type.value,
                "visible_count": max(total - excluded, 0),
                "updated_at": computed_at,
            })

        if not rows:
            return
        stmt = dialect_insert(db, UserEntityStats).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "entity_type"],
            set_={
                "visible_count": stmt.excluded.visible_count,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await db.execute(stmt)


# ============ Read helpers ============

async def get_entity_stats(db: AsyncSession, user_id: int) -> list[UserEntityStats]:
    """Cached visible counts for a user (empty until the first recompute)."""
    result = await db.execute(
        select(UserEntityStats)
        .where(UserEntityStats.user_id == user_id)
        .order_by(UserEntityStats.entity_type)
    )
    return list(result.scalars().all())


async def is_entity_excluded(db: AsyncSession, user_id: int, entity_type: EntityType, entity_id: str) -> bool:
    result = await db.execute(
        select(UserExcludedEntity.id).where(
            UserExcludedEntity.user_id == user_id,
            UserExcludedEntity.entity_type == entity_type.value,
            UserExcludedEntity.entity_id == entity_id,
        )
    )
    return result.scalar_one_or_none() is not None


@lru_cache
def get_exclusion_service() -> ExclusionComputationService:
    """Service bound to the application's session factory."""
    return ExclusionComputationService()
