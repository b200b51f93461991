"""Tests for the per-user exclusion cache."""

import asyncio
from datetime import datetime

import pytest

from peek.db.models import (
    EntityType, ExclusionReason, Performer, RestrictionMode, UserContentRestriction,
    UserContentRestrictionEntity, UserHiddenEntity,
)
from peek.services.exclusion_service import get_entity_stats, is_entity_excluded
from peek.services.hidden_entity_service import HiddenEntityService
from peek.services.query.scenes import SceneQueryBuilder
from peek.services.restriction_service import Restriction, set_restrictions

from support import (
    add_rows, database, excluded_ids, excluded_rows, exclusion_service, performer,
    sample_library, scene, tag,
)


def _restrict(user_id: int, entity_type: EntityType, mode: RestrictionMode, ids: list[str], restriction_id: int = 1):
    return [
        UserContentRestriction(id=restriction_id, user_id=user_id, entity_type=entity_type.value, mode=mode.value),
        *[UserContentRestrictionEntity(restriction_id=restriction_id, entity_id=entity_id) for entity_id in ids],
    ]


def test_user_without_rules_has_empty_cache(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            result = await exclusion_service(factory).recompute_for_user(2)

            assert result == {"user_id": 2, "excluded": 0, "by_reason": {}}
            assert await excluded_rows(factory, 2) == set()

    asyncio.run(scenario())


def test_hidden_performer_cascades_to_scenes_and_leaves_listing(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            service = exclusion_service(factory)

            async with factory() as db:
                await HiddenEntityService(db, service).hide_entity(1, EntityType.PERFORMER, "1")

            assert await excluded_rows(factory, 1) == {
                ("performer", "1", "hidden"),
                ("scene", "1", "cascade"),
                ("scene", "2", "cascade"),
            }

            async with factory() as db:
                result = await SceneQueryBuilder(db).execute(1, sort="title", direction="ASC")
            assert [item["id"] for item in result.items] == ["4", "3"]
            assert result.total == 2

            # Other users are untouched
            assert await excluded_rows(factory, 2) == set()

    asyncio.run(scenario())


def test_full_recompute_adds_empty_containers(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [UserHiddenEntity(user_id=1, entity_type="performer", entity_id="1")])

            result = await exclusion_service(factory).recompute_for_user(1)

            assert result["excluded"] == 7
            assert result["by_reason"] == {"hidden": 1, "cascade": 2, "empty": 4}

            rows = await excluded_rows(factory, 1)
            assert {(kind, entity_id) for kind, entity_id, reason in rows if reason == "empty"} == {
                ("studio", "1"),
                ("studio", "2"),
                ("group", "1"),
                ("tag", "3"),
            }
            # Outdoor keeps a visible child (Beach, through Dunes)
            assert ("tag", "1") not in {(kind, entity_id) for kind, entity_id, _ in rows}

            async with factory() as db:
                stats = {row.entity_type: row.visible_count for row in await get_entity_stats(db, 1)}
            assert stats == {
                "gallery": 1,
                "group": 0,
                "image": 2,
                "performer": 2,
                "scene": 2,
                "studio": 1,
                "tag": 3,
            }

    asyncio.run(scenario())


def test_recompute_is_idempotent(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [
                *_restrict(1, EntityType.TAG, RestrictionMode.INCLUDE, ["1", "2"]),
                UserHiddenEntity(user_id=1, entity_type="performer", entity_id="2"),
            ])
            service = exclusion_service(factory)

            first = await service.recompute_for_user(1)
            rows = await excluded_rows(factory, 1)
            second = await service.recompute_for_user(1)

            assert await excluded_rows(factory, 1) == rows
            assert first == second

    asyncio.run(scenario())


def test_tag_cascade_reaches_performer_then_its_scenes(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, [
                *tag("9", "Studio lights"),
                *performer("9", "Dee", tags=["9"]),
                *scene("9", performers=["9"]),
                *scene("10"),
            ])
            await add_rows(factory, _restrict(1, EntityType.TAG, RestrictionMode.EXCLUDE, ["9"]))

            await exclusion_service(factory).recompute_for_user(1)

            rows = await excluded_rows(factory, 1)
            assert ("tag", "9", "restricted") in rows
            assert ("performer", "9", "cascade") in rows
            assert ("scene", "9", "cascade") in rows
            assert await excluded_ids(factory, 1, "scene") == {"9"}

    asyncio.run(scenario())


def test_excluded_tag_cascades_through_descendants(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, _restrict(1, EntityType.TAG, RestrictionMode.EXCLUDE, ["2"]))

            await exclusion_service(factory).recompute_for_user(1)

            # Tide carries Sand (a child of Beach), Dunes carries Beach directly
            assert await excluded_ids(factory, 1, "scene") == {"2", "4"}

    asyncio.run(scenario())


def test_excluding_root_tag_uses_inherited_tags(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, _restrict(1, EntityType.TAG, RestrictionMode.EXCLUDE, ["1"]))

            await exclusion_service(factory).recompute_for_user(1)

            assert await excluded_ids(factory, 1, "scene") == {"1", "2", "4"}

    asyncio.run(scenario())


def test_include_restriction_excludes_every_other_live_entity(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [Performer(id="4", name="Gone", deleted_at=datetime(2024, 1, 1))])
            await add_rows(factory, _restrict(1, EntityType.PERFORMER, RestrictionMode.INCLUDE, ["2"]))

            await exclusion_service(factory).recompute_for_user(1)

            rows = await excluded_rows(factory, 1)
            restricted = {entity_id for kind, entity_id, reason in rows if kind == "performer" and reason == "restricted"}
            assert restricted == {"1", "3"}

    asyncio.run(scenario())


def test_include_tags_scenario(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            service = exclusion_service(factory)

            async with factory() as db:
                await set_restrictions(
                    db, 1,
                    [Restriction(entity_type=EntityType.TAG, mode=RestrictionMode.INCLUDE, entity_ids=["1", "2"])],
                    exclusions=service,
                )

            assert await excluded_rows(factory, 1) == {
                ("tag", "3", "restricted"),
                ("tag", "4", "restricted"),
                ("scene", "2", "cascade"),
                ("scene", "3", "cascade"),
                ("performer", "3", "cascade"),
                ("studio", "2", "empty"),
            }

    asyncio.run(scenario())


def test_gallery_without_visible_images_is_empty(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, _restrict(1, EntityType.IMAGE, RestrictionMode.EXCLUDE, ["1", "2"]))

            await exclusion_service(factory).recompute_for_user(1)

            rows = await excluded_rows(factory, 1)
            assert ("gallery", "1", "empty") in rows
            assert {(kind, entity_id) for kind, entity_id, reason in rows if reason == "empty"} == {("gallery", "1")}

    asyncio.run(scenario())


def test_restricted_reason_wins_over_hidden(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [
                *_restrict(1, EntityType.PERFORMER, RestrictionMode.EXCLUDE, ["3"]),
                UserHiddenEntity(user_id=1, entity_type="performer", entity_id="3"),
            ])

            await exclusion_service(factory).recompute_for_user(1)

            assert ("performer", "3", ExclusionReason.RESTRICTED.value) in await excluded_rows(factory, 1)

    asyncio.run(scenario())


def test_hiding_a_restricted_entity_keeps_it_restricted(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, _restrict(1, EntityType.PERFORMER, RestrictionMode.EXCLUDE, ["1"]))
            service = exclusion_service(factory)
            await service.recompute_for_user(1)

            async with factory() as db:
                hidden = HiddenEntityService(db, service)
                await hidden.hide_entity(1, EntityType.PERFORMER, "1")
                assert ("performer", "1", "restricted") in await excluded_rows(factory, 1)

                task = await hidden.unhide_entity(1, EntityType.PERFORMER, "1")

            # Still excluded before the background rebuild runs
            assert ("performer", "1", "restricted") in await excluded_rows(factory, 1)
            async with factory() as db:
                assert await is_entity_excluded(db, 1, EntityType.PERFORMER, "1")

            await task
            assert ("performer", "1", "restricted") in await excluded_rows(factory, 1)

    asyncio.run(scenario())


def test_group_and_gallery_cascade_to_scenes_and_images(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, scene("5", title="Behind the stills", galleries=["1"]))
            await add_rows(factory, [
                UserHiddenEntity(user_id=1, entity_type="group", entity_id="1"),
                UserHiddenEntity(user_id=1, entity_type="gallery", entity_id="1"),
            ])
            service = exclusion_service(factory)

            await service.recompute_for_user(1)
            cascaded = {(kind, entity_id) for kind, entity_id, reason in await excluded_rows(factory, 1)
                        if reason == "cascade"}
            assert cascaded == {
                ("scene", "1"), ("scene", "2"), ("scene", "5"),
                ("image", "1"), ("image", "2"),
            }

            await service.add_hidden_entity(2, EntityType.GROUP, "1")
            await service.add_hidden_entity(2, EntityType.GALLERY, "1")
            assert await excluded_rows(factory, 2) == {
                ("group", "1", "hidden"),
                ("gallery", "1", "hidden"),
                ("scene", "1", "cascade"),
                ("scene", "2", "cascade"),
                ("scene", "5", "cascade"),
                ("image", "1", "cascade"),
                ("image", "2", "cascade"),
            }

    asyncio.run(scenario())


def test_unknown_restriction_type_is_skipped(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [
                UserContentRestriction(id=1, user_id=1, entity_type="widget", mode="EXCLUDE"),
                UserContentRestrictionEntity(restriction_id=1, entity_id="1"),
                *_restrict(1, EntityType.SCENE, RestrictionMode.EXCLUDE, ["3"], restriction_id=2),
            ])

            await exclusion_service(factory).recompute_for_user(1)

            rows = await excluded_rows(factory, 1)
            assert ("scene", "3", "restricted") in rows
            assert not any(kind == "widget" for kind, _, _ in rows)

    asyncio.run(scenario())


def test_failed_recompute_keeps_previous_cache(tmp_path, monkeypatch):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, [UserHiddenEntity(user_id=1, entity_type="performer", entity_id="1")])
            service = exclusion_service(factory)
            await service.recompute_for_user(1)
            before = await excluded_rows(factory, 1)

            async def broken(*args, **kwargs):
                raise RuntimeError("empty pass failed")

            monkeypatch.setattr(service, "_exclude_empty_containers", broken)
            with pytest.raises(RuntimeError):
                await service.recompute_for_user(1)

            assert await excluded_rows(factory, 1) == before

    asyncio.run(scenario())


def test_unhide_restores_visibility_after_background_recompute(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            service = exclusion_service(factory)

            async with factory() as db:
                hidden = HiddenEntityService(db, service)
                await hidden.hide_entity(1, EntityType.PERFORMER, "1")
                assert await hidden.is_entity_hidden(1, EntityType.PERFORMER, "1")

                task = await hidden.unhide_entity(1, EntityType.PERFORMER, "1")
                assert task is not None
                await task

            assert await excluded_rows(factory, 1) == set()
            async with factory() as db:
                assert not await is_entity_excluded(db, 1, EntityType.SCENE, "1")

    asyncio.run(scenario())


def test_recompute_all_users_reports_each_user(tmp_path):
    async def scenario():
        async with database(tmp_path) as factory:
            await add_rows(factory, sample_library())
            await add_rows(factory, _restrict(2, EntityType.STUDIO, RestrictionMode.EXCLUDE, ["3"]))

            summary = await exclusion_service(factory).recompute_all_users()

            assert summary == {"success": 2, "failed": 0, "errors": []}
            assert await excluded_ids(factory, 2, "scene") == {"3", "4"}
            assert await excluded_ids(factory, 1, "scene") == set()

    asyncio.run(scenario())
