"""Tests for entity type parsing."""

import pytest

from peek.db.models import CATALOG_MODELS, LEAF_TYPES, EntityType
from peek.services.catalog import chunked, parse_entity_type
from peek.services.exclusion_service import EMPTY_PASS_ORDER


@pytest.mark.parametrize("raw, expected", [
    ("scene", EntityType.SCENE),
    ("galleries", EntityType.GALLERY),
    (" Performers ", EntityType.PERFORMER),
    ("widget", None),
])
def test_parse_entity_type(raw, expected):
    assert parse_entity_type(raw) is expected


def test_every_container_has_an_empty_rule():
    assert set(EMPTY_PASS_ORDER) | LEAF_TYPES == set(CATALOG_MODELS)
    assert EMPTY_PASS_ORDER[-1] is EntityType.TAG


def test_chunked_splits_in_order():
    assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]
    assert list(chunked([], 2)) == []
