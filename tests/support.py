"""Database and catalog builders shared by the tests."""

from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from peek.core.tasks import TaskManager
from peek.db.database import Base
from peek.db.models import (
    Gallery, Group, Image, ImageGallery, ImagePerformer, ImageTag, Performer, PerformerTag,
    Scene, SceneGallery, SceneGroup, SceneInheritedTag, ScenePerformer, SceneTag,
    Studio, Tag, TagParent, User, UserExcludedEntity,
)
from peek.services.exclusion_service import ExclusionComputationService


@asynccontextmanager
async def database(tmp_path: Path):
    """A fresh SQLite file with the full schema; yields a session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'peek.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


def exclusion_service(session_factory) -> ExclusionComputationService:
    return ExclusionComputationService(session_factory=session_factory, task_manager=TaskManager())


async def add_rows(session_factory, rows: list) -> None:
    async with session_factory() as db:
        db.add_all(rows)
        await db.commit()


async def excluded_rows(session_factory, user_id: int) -> set[tuple[str, str, str]]:
    """(entity_type, entity_id, reason) for every cached exclusion of a user."""
    async with session_factory() as db:
        result = await db.execute(
            select(UserExcludedEntity.entity_type, UserExcludedEntity.entity_id, UserExcludedEntity.reason)
            .where(UserExcludedEntity.user_id == user_id)
        )
        return {tuple(row) for row in result.all()}


async def excluded_ids(session_factory, user_id: int, entity_type: str) -> set[str]:
    return {entity_id for kind, entity_id, _ in await excluded_rows(session_factory, user_id) if kind == entity_type}


# ============ Catalog builders ============

def scene(scene_id: str, performers=(), tags=(), inherited=(), groups=(), galleries=(), **fields) -> list:
    rows = [Scene(id=scene_id, title=fields.pop("title", f"Scene {scene_id}"), **fields)]
    rows += [ScenePerformer(scene_id=scene_id, performer_id=p) for p in performers]
    rows += [SceneTag(scene_id=scene_id, tag_id=t) for t in tags]
    rows += [SceneInheritedTag(scene_id=scene_id, tag_id=t) for t in inherited]
    rows += [SceneGroup(scene_id=scene_id, group_id=g) for g in groups]
    rows += [SceneGallery(scene_id=scene_id, gallery_id=g) for g in galleries]
    return rows


def image(image_id: str, galleries=(), performers=(), tags=(), **fields) -> list:
    rows = [Image(id=image_id, title=fields.pop("title", f"Image {image_id}"), **fields)]
    rows += [ImageGallery(image_id=image_id, gallery_id=g) for g in galleries]
    rows += [ImagePerformer(image_id=image_id, performer_id=p) for p in performers]
    rows += [ImageTag(image_id=image_id, tag_id=t) for t in tags]
    return rows


def tag(tag_id: str, name: str, parents=(), **fields) -> list:
    return [Tag(id=tag_id, name=name, **fields)] + [TagParent(tag_id=tag_id, parent_id=p) for p in parents]


def performer(performer_id: str, name: str, tags=(), **fields) -> list:
    return [Performer(id=performer_id, name=name, **fields)] + [
        PerformerTag(performer_id=performer_id, tag_id=t) for t in tags
    ]


def sample_library() -> list:
    """
    A small catalog exercising every cascade edge.

        Studios:    1 Acme, 2 Bravo (child of 1), 3 Coast
        Tags:       1 Outdoor > 2 Beach > 3 Sand, 4 Indoor
        Performers: 1 Ann, 2 Bea, 3 Cid (tagged Indoor)
        Scenes:     1 Sunrise  studio 1, Ann,       tag Outdoor,  group 1
                    2 Tide     studio 2, Ann + Bea, tag Sand,     group 1
                    3 Kitchen  studio 3, Cid,       tag Indoor
                    4 Dunes    studio 3, Bea,       tag Beach
        Gallery 1:  images 1 (Bea) and 2 (Cid)
    """
    return [
        User(id=1, username="alice"),
        User(id=2, username="bob"),
        Studio(id="1", name="Acme"),
        Studio(id="2", name="Bravo", parent_id="1"),
        Studio(id="3", name="Coast"),
        *tag("1", "Outdoor"),
        *tag("2", "Beach", parents=["1"]),
        *tag("3", "Sand", parents=["2"]),
        *tag("4", "Indoor"),
        *performer("1", "Ann"),
        *performer("2", "Bea"),
        *performer("3", "Cid", tags=["4"]),
        Group(id="1", name="Summer"),
        Gallery(id="1", title="Stills"),
        *scene("1", title="Sunrise", studio_id="1", performers=["1"], tags=["1"], groups=["1"], rating100=80),
        *scene("2", title="Tide", studio_id="2", performers=["1", "2"], tags=["3"], inherited=["2", "1"],
               groups=["1"], rating100=60),
        *scene("3", title="Kitchen", studio_id="3", performers=["3"], tags=["4"], rating100=40),
        *scene("4", title="Dunes", studio_id="3", performers=["2"], tags=["2"], inherited=["1"], rating100=20),
        *image("1", galleries=["1"], performers=["2"]),
        *image("2", galleries=["1"], performers=["3"]),
    ]
