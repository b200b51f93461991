"""Per-user, exclusion-aware library listings."""

from sqlalchemy.ext.asyncio import AsyncSession

from peek.db.models import EntityType
from peek.services.query.base import EntityQueryBuilder, QueryResult
from peek.services.query.galleries import GalleryQueryBuilder
from peek.services.query.groups import GroupQueryBuilder
from peek.services.query.images import ImageQueryBuilder
from peek.services.query.performers import PerformerQueryBuilder
from peek.services.query.scenes import SceneQueryBuilder
from peek.services.query.studios import StudioQueryBuilder
from peek.services.query.tags import TagQueryBuilder

QUERY_BUILDERS: dict[EntityType, type[EntityQueryBuilder]] = {
    EntityType.SCENE: SceneQueryBuilder,
    EntityType.PERFORMER: PerformerQueryBuilder,
    EntityType.STUDIO: StudioQueryBuilder,
    EntityType.TAG: TagQueryBuilder,
    EntityType.GROUP: GroupQueryBuilder,
    EntityType.GALLERY: GalleryQueryBuilder,
    EntityType.IMAGE: ImageQueryBuilder,
}

assert set(QUERY_BUILDERS) == set(EntityType), "every EntityType needs a query builder"


def get_query_builder(entity_type: EntityType | str, db: AsyncSession) -> EntityQueryBuilder:
    """Builder for an entity type. Raises ValueError for unknown types."""
    return QUERY_BUILDERS[EntityType(entity_type)](db)


__all__ = ["EntityQueryBuilder", "QueryResult", "QUERY_BUILDERS", "get_query_builder"]
