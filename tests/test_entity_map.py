"""Tests for EntityMapStore against an in-memory SQLite database."""

from __future__ import annotations

import pytest

from src.erpsync.sync.errors import MappingConflictError


class TestLookups:
    async def test_missing_mapping_returns_none(self, entity_map):
        assert await entity_map.get_remote_id("x", "item", 42) is None
        assert await entity_map.get_local_id("x", "item", 900) is None

    async def test_upsert_is_readable_both_ways(self, entity_map):
        await entity_map.upsert("x", "item", 42, 900, "x.item")

        assert await entity_map.get_remote_id("x", "item", 42) == 900
        assert await entity_map.get_local_id("x", "item", 900) == "42"

    async def test_int_and_string_local_ids_are_the_same_key(self, entity_map):
        await entity_map.upsert("x", "item", 42, 900)
        assert await entity_map.get_remote_id("x", "item", "42") == 900

    async def test_mappings_are_scoped_by_module_and_entity_type(self, entity_map):
        await entity_map.upsert("x", "item", 42, 900)
        await entity_map.upsert("y", "item", 42, 900)
        await entity_map.upsert("x", "other", 42, 900)

        assert await entity_map.get_remote_id("y", "item", 42) == 900
        assert len(await entity_map.list_mappings("x", "item")) == 1

    async def test_batch_lookup_omits_unmapped(self, entity_map):
        await entity_map.upsert("x", "item", 1, 901)
        await entity_map.upsert("x", "item", 2, 902)

        result = await entity_map.get_remote_ids_batch("x", "item", [1, 2, 3])
        assert result == {"1": 901, "2": 902}

    async def test_timestamps_are_timezone_aware(self, entity_map):
        mapping = await entity_map.upsert("x", "item", 42, 900)
        stored = await entity_map.get_mapping("x", "item", 42)

        assert mapping.created_at.tzinfo is not None
        assert stored.last_synced_at.tzinfo is not None


class TestUpsert:
    async def test_upsert_is_idempotent(self, entity_map):
        await entity_map.upsert("x", "item", 42, 900)
        await entity_map.upsert("x", "item", 42, 900)

        mappings = await entity_map.list_mappings("x", "item")
        assert [(m.local_id, m.remote_id) for m in mappings] == [("42", 900)]

    async def test_upsert_overwrites_remote_id_for_same_local_id(self, entity_map):
        await entity_map.upsert("x", "item", 42, 900)
        await entity_map.upsert("x", "item", 42, 901)

        assert await entity_map.get_remote_id("x", "item", 42) == 901
        assert await entity_map.get_local_id("x", "item", 900) is None

    async def test_upsert_keeps_hash_when_not_given(self, entity_map):
        await entity_map.upsert("x", "item", 42, 900, "x.item", "abc")
        mapping = await entity_map.upsert("x", "item", 42, 900)

        assert mapping.sync_hash == "abc"
        assert mapping.remote_model == "x.item"

    async def test_conflicting_remote_id_is_rejected(self, entity_map):
        await entity_map.upsert("x", "item", 1, 900)

        with pytest.raises(MappingConflictError) as exc_info:
            await entity_map.upsert("x", "item", 2, 900)

        assert exc_info.value.existing_local_id == "1"
        assert await entity_map.get_local_id("x", "item", 900) == "1"
        assert await entity_map.get_remote_id("x", "item", 2) is None

    @pytest.mark.parametrize("local_id", [None, "", 0, "0"])
    async def test_empty_local_id_is_rejected(self, entity_map, local_id):
        with pytest.raises(ValueError):
            await entity_map.upsert("x", "item", local_id, 900)

    async def test_non_positive_remote_id_is_rejected(self, entity_map):
        with pytest.raises(ValueError):
            await entity_map.upsert("x", "item", 42, 0)


class TestDelete:
    async def test_delete_removes_mapping(self, entity_map):
        await entity_map.upsert("x", "item", 42, 900)

        assert await entity_map.delete("x", "item", 42) is True
        assert await entity_map.get_remote_id("x", "item", 42) is None

    async def test_delete_missing_returns_false(self, entity_map):
        assert await entity_map.delete("x", "item", 42) is False

    async def test_delete_by_remote_id(self, entity_map):
        await entity_map.upsert("x", "item", 42, 900)

        assert await entity_map.delete_by_remote_id("x", "item", 900) is True
        assert await entity_map.get_remote_id("x", "item", 42) is None

    async def test_remote_id_is_reusable_after_delete(self, entity_map):
        await entity_map.upsert("x", "item", 1, 900)
        await entity_map.delete("x", "item", 1)

        await entity_map.upsert("x", "item", 2, 900)
        assert await entity_map.get_local_id("x", "item", 900) == "2"


class TestListMappings:
    async def test_pagination(self, entity_map):
        for i in range(1, 6):
            await entity_map.upsert("x", "item", i, 900 + i)

        page = await entity_map.list_mappings("x", "item", limit=2, offset=2)
        assert [m.local_id for m in page] == ["3", "4"]
