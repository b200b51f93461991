"""Tests for the library query builders."""

import asyncio
from datetime import datetime

import pytest
from pydantic import ValidationError

from peek.db.models import EntityType, Tag, UserHiddenEntity, UserRating
from peek.services.query import get_query_builder
from peek.services.query.images import ImageQueryBuilder
from peek.services.query.performers import PerformerQueryBuilder
from peek.services.query.scenes import SceneQueryBuilder
from peek.services.query.tags import TagQueryBuilder

from support import add_rows, database, exclusion_service, sample_library, scene


def _ids(result) -> list[str]:
    return [item["id"] for item in result.items]


async def _scene_ids(factory, **kwargs) -> list[str]:
    async with factory() as db:
        return _ids(await SceneQueryBuilder(db).execute(1, **kwargs))


def test_pages_are_stable_with_tied_sort_values(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, [row for i in range(1, 6) for row in scene(str(i), rating100=50)])

            pages = [
                await _scene_ids(factory, sort="rating", direction="ASC", page=page, per_page=2)
                for page in (1, 2, 3)
            ]

            assert pages == [["1", "2"], ["3", "4"], ["5"]]
            assert pages[0] == await _scene_ids(factory, sort="rating", direction="ASC", page=1, per_page=2)

    asyncio.run(scenario())


def test_seeded_random_sort_pages_cover_every_row_once(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, [row for i in range(1, 13) for row in scene(str(i))])

            async def walk(seed: int) -> list[str]:
                seen = []
                for page in (1, 2, 3):
                    seen += await _scene_ids(factory, sort="random", random_seed=seed, page=page, per_page=5)
                return seen

            first = await walk(42)
            assert sorted(first, key=int) == [str(i) for i in range(1, 13)]
            assert await walk(42) == first

    asyncio.run(scenario())


def test_listing_without_exclusions_is_a_superset(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [UserHiddenEntity(user_id=1, entity_type="performer", entity_id="1")])
            await exclusion_service(factory).recompute_for_user(1)

            async with factory() as db:
                builder = SceneQueryBuilder(db)
                visible = await builder.execute(1)
                everything = await builder.execute(1, apply_exclusions=False)

            assert set(_ids(visible)) == {"3", "4"}
            assert set(_ids(everything)) == {"1", "2", "3", "4"}
            assert everything.total == 4

    asyncio.run(scenario())


def test_total_counts_every_match_not_just_the_page(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            async with factory() as db:
                result = await SceneQueryBuilder(db).execute(
                    1, filters={"rating100": {"value": 30, "modifier": "GREATER_THAN"}}, per_page=1,
                )

            assert len(result.items) == 1
            assert result.total == 3

    asyncio.run(scenario())


def test_page_past_the_end_is_empty(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            async with factory() as db:
                result = await SceneQueryBuilder(db).execute(1, page=5, per_page=10)

            assert result.items == []
            assert result.total == 4

    asyncio.run(scenario())


def test_rating_between_filter(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            ids = await _scene_ids(
                factory, filters={"rating100": {"value": 40, "value2": 60, "modifier": "BETWEEN"}},
            )
            assert set(ids) == {"2", "3"}

    asyncio.run(scenario())


def test_tag_filter_with_depth_includes_descendants(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            exact = await _scene_ids(factory, filters={"tags": {"value": ["1"]}})
            subtree = await _scene_ids(factory, filters={"tags": {"value": ["1"], "depth": -1}})
            one_level = await _scene_ids(factory, filters={"tags": {"value": ["1"], "depth": 1}})

            assert set(exact) == {"1"}
            assert set(subtree) == {"1", "2", "4"}
            assert set(one_level) == {"1", "4"}

    asyncio.run(scenario())


def test_performers_includes_all(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            ids = await _scene_ids(
                factory, filters={"performers": {"value": ["1", "2"], "modifier": "INCLUDES_ALL"}},
            )
            assert ids == ["2"]

            ids = await _scene_ids(
                factory, filters={"performers": {"value": ["1"], "modifier": "EXCLUDES"}},
            )
            assert set(ids) == {"3", "4"}

    asyncio.run(scenario())


def test_studio_filter_with_depth_includes_child_studios(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            ids = await _scene_ids(factory, filters={"studios": {"value": ["1"], "depth": -1}})
            assert set(ids) == {"1", "2"}

    asyncio.run(scenario())


def test_search_matches_title_case_insensitively(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            assert await _scene_ids(factory, filters={"q": "TIDE"}) == ["2"]
            assert await _scene_ids(factory, filters={"q": "100%"}) == []

    asyncio.run(scenario())


def test_unknown_modifier_is_ignored(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            ids = await _scene_ids(factory, filters={"rating100": {"value": 50, "modifier": "ROUGHLY"}})
            assert len(ids) == 4

    asyncio.run(scenario())


def test_unknown_sort_falls_back_to_default(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            async with factory() as db:
                builder = TagQueryBuilder(db)
                fallback = await builder.execute(1, sort="shoe_size", direction="ASC")
                by_name = await builder.execute(1, sort="name", direction="ASC")

            assert _ids(fallback) == _ids(by_name) == ["2", "4", "1", "3"]

    asyncio.run(scenario())


def test_user_rating_and_favorite_annotations(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [
                UserRating(user_id=1, entity_type="performer", entity_id="2", rating=90, favorite=True),
            ])

            async with factory() as db:
                result = await PerformerQueryBuilder(db).execute(1, sort="user_rating", direction="DESC")
                favorites = await PerformerQueryBuilder(db).execute(1, filters={"favorite": True})

            first = result.items[0]
            assert first["id"] == "2"
            assert first["user_rating"] == 90
            assert first["favorite"] == 1
            assert "catalog_favorite" in first
            assert [item["user_rating"] for item in result.items[1:]] == [None, None]
            assert _ids(favorites) == ["2"]

    asyncio.run(scenario())


def test_hydration_drops_excluded_and_deleted_related_rows(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [
                Tag(id="5", name="Retired", deleted_at=datetime(2024, 1, 1)),
                *scene("5", title="Archive", tags=["4", "5"], galleries=["1"]),
            ])
            await add_rows(factory, [UserHiddenEntity(user_id=1, entity_type="performer", entity_id="3")])
            await exclusion_service(factory).recompute_for_user(1)

            async with factory() as db:
                builder = ImageQueryBuilder(db)
                visible = {item["id"]: item for item in (await builder.execute(1)).items}
                raw = {item["id"]: item for item in (await builder.execute(1, apply_exclusions=False)).items}
                scenes = {item["id"]: item for item in (await SceneQueryBuilder(db).execute(1)).items}

            assert visible["2"]["performers"] == []
            assert raw["2"]["performers"] == [{"id": "3", "name": "Cid"}]
            assert visible["1"]["galleries"] == [{"id": "1", "name": "Stills"}]
            assert scenes["5"]["tags"] == [{"id": "4", "name": "Indoor"}]
            assert scenes["5"]["galleries"] == [{"id": "1", "name": "Stills"}]
            assert scenes["4"]["galleries"] == []
            assert scenes["4"]["studio"] == {"id": "3", "name": "Coast"}

    asyncio.run(scenario())


def test_invalid_paging_raises_value_error(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            async with factory() as db:
                builder = SceneQueryBuilder(db)
                with pytest.raises(ValueError):
                    await builder.execute(1, page=0)
                with pytest.raises(ValueError):
                    await builder.execute(1, per_page=0)
                with pytest.raises(ValidationError):
                    await builder.execute(1, filters={"rating100": {"value": "lots"}})

    asyncio.run(scenario())


def test_builder_registry_accepts_plural_names(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            async with factory() as db:
                assert isinstance(get_query_builder("scenes", db), SceneQueryBuilder)
                assert isinstance(get_query_builder(EntityType.IMAGE, db), ImageQueryBuilder)
                with pytest.raises(ValueError):
                    get_query_builder("widgets", db)

    asyncio.run(scenario())
