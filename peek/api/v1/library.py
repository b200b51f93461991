"""Per-user library listings and visible-count stats."""

import logging
import math

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from peek.config import get_settings
from peek.core.auth import is_admin_request
from peek.db.database import get_db
from peek.db.schemas import EntityStatsItem, LibraryPageResponse, LibraryQueryRequest
from peek.services.catalog import parse_entity_type
from peek.services.exclusion_service import get_entity_stats
from peek.services.query import get_query_builder

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()

# Listings are the heaviest queries the API runs
limiter = Limiter(key_func=get_remote_address)


@router.post("/{user_id}/library/{entity_type}", response_model=LibraryPageResponse)
@limiter.limit("120/minute")
async def list_library(
    request: Request,
    user_id: int,
    entity_type: str,
    body: LibraryQueryRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    One page of a user's library for an entity type.

    Results honour the user's exclusions. apply_exclusions=false returns the
    unfiltered catalog and is only accepted with the admin key.
    """
    parsed_type = parse_entity_type(entity_type)
    if parsed_type is None:
        raise HTTPException(status_code=404, detail=f"Unknown entity type: {entity_type}")

    if not body.apply_exclusions and not await is_admin_request(request):
        raise HTTPException(status_code=403, detail="Only admins can list without exclusions")

    per_page = min(body.per_page or settings.default_per_page, settings.max_per_page)
    builder = get_query_builder(parsed_type, db)
    try:
        result = await builder.execute(
            user_id,
            filters=body.filter,
            apply_exclusions=body.apply_exclusions,
            sort=body.sort,
            direction=body.direction,
            page=body.page,
            per_page=per_page,
            random_seed=body.seed,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return LibraryPageResponse(
        items=result.items,
        total=result.total,
        page=body.page,
        pages=math.ceil(result.total / per_page) if result.total else 0,
    )


@router.get("/{user_id}/stats", response_model=list[EntityStatsItem])
async def user_stats(user_id: int, db: AsyncSession = Depends(get_db)):
    """Visible entity counts per type, as of the user's last recompute."""
    stats = await get_entity_stats(db, user_id)
    items = []
    for row in stats:
        entity_type = parse_entity_type(row.entity_type)
        if entity_type is None:
            continue
        items.append(EntityStatsItem(
            entity_type=entity_type,
            visible_count=row.visible_count,
            updated_at=row.updated_at,
        ))
    return items
