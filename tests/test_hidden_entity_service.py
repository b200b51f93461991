"""Tests for user hides."""

import asyncio
from datetime import datetime

import pytest

from peek.db.models import EntityType, Scene
from peek.services.hidden_entity_service import HiddenEntityService

from support import add_rows, database, excluded_rows, exclusion_service, sample_library


def test_hidden_listing_is_newest_first_with_names(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            service = exclusion_service(factory)

            async with factory() as db:
                hidden = HiddenEntityService(db, service)
                await hidden.hide_entity(1, EntityType.STUDIO, "3")
                await hidden.hide_entity(1, EntityType.TAG, "4")

                items = await hidden.get_hidden_entities(1)
                tags_only = await hidden.get_hidden_entities(1, EntityType.TAG)

            assert [(item["entity_type"], item["entity_id"], item["name"]) for item in items] == [
                (EntityType.TAG, "4", "Indoor"),
                (EntityType.STUDIO, "3", "Coast"),
            ]
            assert [item["entity_id"] for item in tags_only] == ["4"]

    asyncio.run(scenario())


def test_hiding_twice_keeps_one_row(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            service = exclusion_service(factory)

            async with factory() as db:
                hidden = HiddenEntityService(db, service)
                await hidden.hide_entity(1, EntityType.SCENE, "3")
                await hidden.hide_entity(1, EntityType.SCENE, "3")
                assert len(await hidden.get_hidden_entities(1)) == 1

            assert ("scene", "3", "hidden") in await excluded_rows(factory, 1)

    asyncio.run(scenario())


def test_hide_upgrades_cascade_row_to_hidden(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            service = exclusion_service(factory)

            async with factory() as db:
                hidden = HiddenEntityService(db, service)
                await hidden.hide_entity(1, EntityType.PERFORMER, "3")
                assert ("scene", "3", "cascade") in await excluded_rows(factory, 1)

                await hidden.hide_entity(1, EntityType.SCENE, "3")

            rows = await excluded_rows(factory, 1)
            assert ("scene", "3", "hidden") in rows
            assert ("scene", "3", "cascade") not in rows

    asyncio.run(scenario())


def test_failed_cache_update_schedules_recompute(tmp_path, monkeypatch):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            service = exclusion_service(factory)

            async def broken(*args, **kwargs):
                raise RuntimeError("cache write failed")

            monkeypatch.setattr(service, "add_hidden_entity", broken)

            async with factory() as db:
                hidden = HiddenEntityService(db, service)
                with pytest.raises(RuntimeError):
                    await hidden.hide_entity(1, EntityType.PERFORMER, "1")
                assert await hidden.is_entity_hidden(1, EntityType.PERFORMER, "1")

            task = service._task_manager.get_task("exclusion_recompute_user_1")
            assert task is not None
            await task

            assert ("performer", "1", "hidden") in await excluded_rows(factory, 1)

    asyncio.run(scenario())


def test_unhide_of_entity_that_was_not_hidden_returns_none(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())

            async with factory() as db:
                hidden = HiddenEntityService(db, exclusion_service(factory))
                assert await hidden.unhide_entity(1, EntityType.SCENE, "1") is None

    asyncio.run(scenario())


def test_unhide_all_by_type_recomputes(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            service = exclusion_service(factory)

            async with factory() as db:
                hidden = HiddenEntityService(db, service)
                await hidden.hide_entity(1, EntityType.SCENE, "1")
                await hidden.hide_entity(1, EntityType.SCENE, "3")
                await hidden.hide_entity(1, EntityType.GALLERY, "1")

                assert await hidden.unhide_all(1, EntityType.SCENE) == 2
                assert await hidden.unhide_all(1, EntityType.SCENE) == 0
                remaining = await hidden.get_hidden_entities(1)

            assert [item["entity_type"] for item in remaining] == [EntityType.GALLERY]
            rows = await excluded_rows(factory, 1)
            assert ("gallery", "1", "hidden") in rows
            assert not any(kind == "scene" and reason == "hidden" for kind, _, reason in rows)

    asyncio.run(scenario())


def test_deleted_entities_are_left_out_of_hidden_listing(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [Scene(id="8", title="Pulled", deleted_at=datetime(2024, 1, 1))])

            async with factory() as db:
                hidden = HiddenEntityService(db, exclusion_service(factory))
                await hidden.hide_entity(1, EntityType.SCENE, "8")

                assert await hidden.is_entity_hidden(1, EntityType.SCENE, "8")
                assert await hidden.get_hidden_entities(1) == []

    asyncio.run(scenario())
