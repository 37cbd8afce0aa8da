"""Tests for mapping reconciliation against the remote system."""

from __future__ import annotations

from src.erpsync.sync.errors import RemoteTransientError
from src.erpsync.sync.reconciler import Reconciler

MODEL = "x.item"


class TestReconcile:
    async def test_reports_orphans_without_fixing(self, entity_map, remote):
        remote.seed(MODEL, 901, {})
        await entity_map.upsert("x", "item", 1, 901, MODEL)
        await entity_map.upsert("x", "item", 2, 902, MODEL)

        report = await Reconciler(entity_map, remote).reconcile("x", "item", MODEL)

        assert report.checked == 2
        assert [(o.local_id, o.remote_id) for o in report.orphaned] == [("2", 902)]
        assert report.fixed == 0
        assert await entity_map.get_remote_id("x", "item", 2) == 902

    async def test_fix_removes_orphaned_mappings(self, entity_map, remote):
        remote.seed(MODEL, 901, {})
        await entity_map.upsert("x", "item", 1, 901, MODEL)
        await entity_map.upsert("x", "item", 2, 902, MODEL)

        report = await Reconciler(entity_map, remote).reconcile("x", "item", MODEL, fix=True)

        assert report.fixed == 1
        assert await entity_map.get_remote_id("x", "item", 2) is None
        assert await entity_map.get_remote_id("x", "item", 1) == 901

    async def test_checks_in_batches(self, entity_map, remote):
        for local_id in range(1, 6):
            remote.seed(MODEL, 900 + local_id, {})
            await entity_map.upsert("x", "item", local_id, 900 + local_id, MODEL)

        report = await Reconciler(entity_map, remote, batch_size=2).reconcile("x", "item", MODEL)

        assert report.orphaned == []
        assert remote.count("search") == 3

    async def test_no_mappings(self, entity_map, remote):
        report = await Reconciler(entity_map, remote).reconcile("x", "item", MODEL)

        assert report.checked == 0
        assert remote.calls == []

    async def test_remote_failure_aborts_without_changes(self, entity_map, remote):
        await entity_map.upsert("x", "item", 1, 901, MODEL)
        remote.errors["search"] = RemoteTransientError("timeout")

        report = await Reconciler(entity_map, remote).reconcile("x", "item", MODEL, fix=True)

        assert report.error == "timeout"
        assert report.fixed == 0
        assert await entity_map.get_remote_id("x", "item", 1) == 901
