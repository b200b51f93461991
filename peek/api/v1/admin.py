"""Admin endpoints: content restrictions, exclusion recomputes and task monitoring."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from peek.core.auth import require_admin
from peek.core.tasks import TaskManager
from peek.db.database import get_db
from peek.db.schemas import (
    RecomputeAllResponse, RecomputeResponse, RestrictionItem, RestrictionsUpdate,
)
from peek.services import restriction_service
from peek.services.exclusion_service import get_exclusion_service

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])

SYNC_RECOMPUTE_TASK = "exclusion_recompute_all"


# ==================== Restrictions ====================

@router.get("/users/{user_id}/restrictions", response_model=list[RestrictionItem])
async def get_restrictions(user_id: int, db: AsyncSession = Depends(get_db)):
    return [RestrictionItem(**item) for item in await restriction_service.get_restrictions(db, user_id)]


@router.put("/users/{user_id}/restrictions", response_model=list[RestrictionItem])
async def replace_restrictions(user_id: int, body: RestrictionsUpdate, db: AsyncSession = Depends(get_db)):
    """Replace the user's restrictions and recompute their exclusions before returning."""
    items = [
        restriction_service.Restriction(
            entity_type=item.entity_type,
            mode=item.mode,
            entity_ids=item.entity_ids,
        )
        for item in body.restrictions
    ]
    try:
        await restriction_service.set_restrictions(db, user_id, items)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [RestrictionItem(**item) for item in await restriction_service.get_restrictions(db, user_id)]


@router.delete("/users/{user_id}/restrictions")
async def clear_restrictions(user_id: int, db: AsyncSession = Depends(get_db)):
    removed = await restriction_service.delete_restrictions(db, user_id)
    return {"removed": removed}


# ==================== Recompute ====================

@router.post("/users/{user_id}/recompute", response_model=RecomputeResponse)
async def recompute_user(user_id: int):
    """Rebuild one user's exclusion cache synchronously."""
    try:
        result = await get_exclusion_service().recompute_for_user(user_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Recompute failed: {type(e).__name__}")
    return RecomputeResponse(**result)


@router.post("/recompute", response_model=RecomputeAllResponse)
async def recompute_all():
    """Rebuild every user's exclusion cache synchronously."""
    return RecomputeAllResponse(**await get_exclusion_service().recompute_all_users())


@router.post("/sync/complete", status_code=202)
async def sync_complete():
    """
    Called by the catalog sync when it finishes.

    Schedules a rebuild of every user's cache in the background. A rebuild
    already in flight is not duplicated.
    """
    task_manager = TaskManager.get_instance()
    if task_manager.get_task(SYNC_RECOMPUTE_TASK) is not None:
        return {"status": "already_running"}

    task_manager.create_task(get_exclusion_service().recompute_all_users(), name=SYNC_RECOMPUTE_TASK)
    logger.info("Catalog sync complete, scheduled exclusion recompute for all users")
    return {"status": "scheduled"}


@router.get("/tasks")
async def background_tasks():
    """Background task counters (running, failed, named)."""
    return TaskManager.get_instance().get_task_stats()
