"""Integration tests for the HTTP API.

Builds a FastAPI app with the v1 router and wires app.state by hand from
the conftest fixtures (in-memory SQLite queue and mapping store, fake
remote and local store). Requests go through httpx ASGITransport.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.erpsync.api.v1.router import router
from src.erpsync.config import get_settings
from src.erpsync.modules.base import ModuleDescriptor, SyncModule
from src.erpsync.sync.errors import ErrorType
from src.erpsync.sync.reconciler import Reconciler
from src.erpsync.sync.schemas import ModuleDirection, SyncDirection
from src.erpsync.sync.service import SyncService
from src.erpsync.sync.worker import SyncWorker

WEBHOOK = {"X-Webhook-Token": "hook-secret"}
ADMIN = {"X-Admin-Token": "admin-secret"}


class PushOnlyModule(SyncModule):
    descriptor = ModuleDescriptor(
        id="outbound",
        name="Outbound",
        direction=ModuleDirection.push_only,
        remote_models={"thing": "outbound.thing"},
    )


@pytest.fixture(autouse=True)
def api_tokens(monkeypatch):
    monkeypatch.setenv("WEBHOOK_TOKEN", "hook-secret")
    monkeypatch.setenv("ADMIN_TOKEN", "admin-secret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def app(registry, queue, entity_map, remote, engine, event_table) -> FastAPI:
    application = FastAPI()
    application.include_router(router)
    application.state.module_registry = registry
    application.state.sync_queue = queue
    application.state.event_table = event_table
    application.state.sync_service = SyncService(queue, entity_map, push_delay_seconds=0)
    application.state.reconciler = Reconciler(entity_map, remote)
    application.state.sync_worker = SyncWorker(queue, engine)
    return application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _dead_job(queue) -> int:
    job_id = await queue.enqueue("x", "item", "create", local_id=1)
    [job] = await queue.claim_batch(1)
    await queue.ack_failure(job, "rejected", ErrorType.permanent)
    return job_id


# ── Health ───────────────────────────────────────────────────────────────────


class TestHealth:
    async def test_liveness_needs_no_token(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


# ── Webhooks ─────────────────────────────────────────────────────────────────


class TestWebhooks:
    async def test_missing_token(self, client):
        response = await client.post("/api/v1/webhooks/x", json={})
        assert response.status_code == 401

    async def test_wrong_token(self, client):
        response = await client.post(
            "/api/v1/webhooks/x",
            json={"entity_type": "item", "action": "update", "remote_id": 900},
            headers={"X-Webhook-Token": "guess"},
        )
        assert response.status_code == 401

    async def test_unconfigured_token_disables_endpoint(self, client, monkeypatch):
        monkeypatch.setenv("WEBHOOK_TOKEN", "")
        get_settings.cache_clear()

        response = await client.post("/api/v1/webhooks/x", json={}, headers=WEBHOOK)

        assert response.status_code == 503

    async def test_queues_pull_job(self, client, queue):
        response = await client.post(
            "/api/v1/webhooks/x",
            json={"entity_type": "item", "action": "update", "remote_id": 900, "payload": {"name": "W"}},
            headers=WEBHOOK,
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        job = await queue.get_job(body["job_id"])
        assert job.direction == SyncDirection.pull
        assert job.remote_id == 900
        assert job.payload == {"name": "W"}

    async def test_unknown_module(self, client):
        response = await client.post(
            "/api/v1/webhooks/ghost",
            json={"entity_type": "item", "action": "update", "remote_id": 900},
            headers=WEBHOOK,
        )
        assert response.status_code == 404

    async def test_unknown_entity_type(self, client):
        response = await client.post(
            "/api/v1/webhooks/x",
            json={"entity_type": "widget", "action": "update", "remote_id": 900},
            headers=WEBHOOK,
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("remote_id", [0, -1])
    async def test_invalid_remote_id(self, client, remote_id):
        response = await client.post(
            "/api/v1/webhooks/x",
            json={"entity_type": "item", "action": "update", "remote_id": remote_id},
            headers=WEBHOOK,
        )
        assert response.status_code == 422

    async def test_push_only_module_ignores_webhook(self, client, registry, services, settings_store, queue):
        settings_store.enable("outbound")
        registry.register(PushOnlyModule(services))
        registry.boot_all()

        response = await client.post(
            "/api/v1/webhooks/outbound",
            json={"entity_type": "thing", "action": "create", "remote_id": 5},
            headers=WEBHOOK,
        )

        assert response.status_code == 202
        assert response.json() == {"status": "ignored", "job_id": None, "reason": "pull disabled"}
        assert (await queue.stats()).total == 0


# ── Local events ─────────────────────────────────────────────────────────────


class TestEvents:
    async def test_event_reaches_subscribed_module(self, client, queue):
        response = await client.post("/api/v1/events/item.saved", json={"args": [42]}, headers=WEBHOOK)

        assert response.status_code == 200
        assert response.json() == {"event": "item.saved", "handlers": 1}
        assert (await queue.stats()).pending == 1

    async def test_event_without_subscribers(self, client, queue):
        response = await client.post("/api/v1/events/nothing.happened", json={}, headers=WEBHOOK)

        assert response.json()["handlers"] == 0
        assert (await queue.stats()).total == 0

    async def test_pull_write_back_echo_queues_no_push(self, client, queue):
        response = await client.post(
            "/api/v1/events/item.saved",
            json={"args": [42]},
            headers={**WEBHOOK, "X-Sync-Origin": "x"},
        )

        assert response.status_code == 200
        assert response.json()["handlers"] == 1
        assert (await queue.stats()).total == 0

    async def test_echo_from_another_module_still_queues(self, client, queue):
        response = await client.post(
            "/api/v1/events/item.saved",
            json={"args": [42]},
            headers={**WEBHOOK, "X-Sync-Origin": "crm"},
        )

        assert response.status_code == 200
        assert (await queue.stats()).pending == 1

    async def test_requires_webhook_token(self, client):
        response = await client.post("/api/v1/events/item.saved", json={}, headers=ADMIN)
        assert response.status_code == 401


# ── Queue administration ─────────────────────────────────────────────────────


class TestQueueAdmin:
    async def test_webhook_token_is_not_admin(self, client):
        response = await client.get("/api/v1/queue/stats", headers=WEBHOOK)
        assert response.status_code == 401

    async def test_stats(self, client, queue):
        await queue.enqueue("x", "item", "create", local_id=1)

        response = await client.get("/api/v1/queue/stats", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["pending"] == 1

    async def test_dead_letters_and_retry(self, client, queue):
        job_id = await _dead_job(queue)

        dead = await client.get("/api/v1/queue/dead", headers=ADMIN)
        assert [job["id"] for job in dead.json()] == [job_id]
        assert dead.json()[0]["last_error"] == "rejected"

        retried = await client.post("/api/v1/queue/retry-dead", json={"job_ids": [job_id]}, headers=ADMIN)
        assert retried.json() == {"count": 1}
        assert (await queue.stats()).pending == 1

    async def test_retry_all_dead_without_body(self, client, queue):
        await _dead_job(queue)

        response = await client.post("/api/v1/queue/retry-dead", headers=ADMIN)

        assert response.json() == {"count": 1}

    async def test_get_job(self, client, queue):
        job_id = await queue.enqueue("x", "item", "create", local_id=1)

        found = await client.get(f"/api/v1/queue/jobs/{job_id}", headers=ADMIN)
        missing = await client.get("/api/v1/queue/jobs/999", headers=ADMIN)

        assert found.json()["local_id"] == "1"
        assert missing.status_code == 404

    async def test_cancel_pending_job(self, client, queue):
        job_id = await queue.enqueue("x", "item", "create", local_id=1)

        first = await client.delete(f"/api/v1/queue/jobs/{job_id}", headers=ADMIN)
        second = await client.delete(f"/api/v1/queue/jobs/{job_id}", headers=ADMIN)

        assert first.status_code == 204
        assert second.status_code == 404

    async def test_process_runs_one_pass(self, client, queue, local_store, remote):
        local_store.put("items", 42, {"name": "Widget"})
        await queue.enqueue("x", "item", "create", local_id=42)

        response = await client.post("/api/v1/queue/process", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["succeeded"] == 1
        assert remote.count("create") == 1

    async def test_process_without_worker(self, client, app):
        app.state.sync_worker = None

        response = await client.post("/api/v1/queue/process", headers=ADMIN)

        assert response.status_code == 503

    async def test_cleanup(self, client, queue):
        await _dead_job(queue)

        response = await client.post("/api/v1/queue/cleanup", params={"days_old": 1}, headers=ADMIN)

        assert response.json() == {"count": 0}


# ── Modules ──────────────────────────────────────────────────────────────────


class TestModules:
    async def test_lists_modules(self, client):
        response = await client.get("/api/v1/modules", headers=ADMIN)

        assert response.status_code == 200
        [module] = response.json()
        assert module["id"] == "x"
        assert module["booted"] is True
        assert module["entity_types"] == ["item"]
        assert module["dormant_reason"] is None

    async def test_reconcile(self, client, entity_map, remote):
        await entity_map.upsert("x", "item", 1, 901, "x.item")

        response = await client.post("/api/v1/modules/x/reconcile/item", params={"fix": "true"}, headers=ADMIN)

        body = response.json()
        assert body["orphaned"] == [{"local_id": "1", "remote_id": 901}]
        assert body["fixed"] == 1

    async def test_reconcile_unknown_entity(self, client):
        response = await client.post("/api/v1/modules/x/reconcile/widget", headers=ADMIN)
        assert response.status_code == 404

    async def test_reconcile_unknown_module(self, client):
        response = await client.post("/api/v1/modules/ghost/reconcile/item", headers=ADMIN)
        assert response.status_code == 404
