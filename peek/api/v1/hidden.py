"""User hidden-entity endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from peek.db.database import get_db
from peek.db.models import EntityType
from peek.db.schemas import HideEntityRequest, HiddenEntityItem, UnhideAllResponse
from peek.services.catalog import entity_exists, parse_entity_type
from peek.services.hidden_entity_service import HiddenEntityService

logger = logging.getLogger(__name__)

router = APIRouter()


def _entity_type_or_404(value: str | None) -> EntityType | None:
    if value is None:
        return None
    entity_type = parse_entity_type(value)
    if entity_type is None:
        raise HTTPException(status_code=404, detail=f"Unknown entity type: {value}")
    return entity_type


@router.get("/{user_id}/hidden", response_model=list[HiddenEntityItem])
async def list_hidden(
    user_id: int,
    entity_type: str | None = Query(None, description="Only this entity type"),
    db: AsyncSession = Depends(get_db),
):
    """Hidden entities, newest first."""
    service = HiddenEntityService(db)
    rows = await service.get_hidden_entities(user_id, _entity_type_or_404(entity_type))
    return [HiddenEntityItem(**row) for row in rows]


@router.post("/{user_id}/hidden", status_code=204)
async def hide(user_id: int, body: HideEntityRequest, db: AsyncSession = Depends(get_db)):
    """Hide an entity; it and everything it cascades to leave the user's listings immediately."""
    if not await entity_exists(db, body.entity_type, body.entity_id):
        raise HTTPException(status_code=404, detail=f"{body.entity_type.value} {body.entity_id} not found")
    await HiddenEntityService(db).hide_entity(user_id, body.entity_type, body.entity_id)


@router.delete("/{user_id}/hidden/{entity_type}/{entity_id}", status_code=204)
async def unhide(user_id: int, entity_type: str, entity_id: str, db: AsyncSession = Depends(get_db)):
    """Unhide an entity. Its cascade is rebuilt in the background."""
    parsed_type = _entity_type_or_404(entity_type)
    task = await HiddenEntityService(db).unhide_entity(user_id, parsed_type, entity_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"{parsed_type.value} {entity_id} is not hidden")


@router.delete("/{user_id}/hidden", response_model=UnhideAllResponse)
async def unhide_all(
    user_id: int,
    entity_type: str | None = Query(None, description="Only unhide this entity type"),
    db: AsyncSession = Depends(get_db),
):
    """Unhide everything (optionally of one type) and recompute the user's exclusions."""
    removed = await HiddenEntityService(db).unhide_all(user_id, _entity_type_or_404(entity_type))
    return UnhideAllResponse(removed=removed)
