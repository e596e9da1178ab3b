"""
Integration tests for the HTTP API.

Runs the aiohttp application against a BackupService backed by in-memory
stores and checks the JSON envelopes and status codes of every route.
"""

import tempfile

import pytest
from aiohttp import test_utils

from vault.snapvault_server.api import create_http_app
from vault.snapvault_server.backup import BackupService
from vault.snapvault_server.config import SchedulerConfig
from vault.snapvault_server.scheduler import BackupScheduler
from vault.snapvault_server.storage import InMemoryObjectStorage
from vault.snapvault_server.store import InMemoryDocumentStore

COLLECTIONS = ["Customer", "Cab"]
UNKNOWN_ID = "2020-01-01-00-00-00"


class TestHttpApi:
    """Tests for the /v1 routes."""

    @pytest.fixture
    def store(self):
        store = InMemoryDocumentStore()
        store.seed("Customer", [{"name": "Ana"}])
        store.seed("Cab", [{"plate": "AB-123"}, {"plate": "CD-456"}])
        return store

    @pytest.fixture
    def service(self, store):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield BackupService(store, InMemoryObjectStorage(), tmpdir, COLLECTIONS)

    @pytest.fixture
    def scheduler(self, service):
        return BackupScheduler(service, SchedulerConfig(enabled=False))

    @pytest.fixture
    async def client(self, service, scheduler):
        client = test_utils.TestClient(test_utils.TestServer(create_http_app(service, scheduler)))
        await client.start_server()
        yield client
        await client.close()

    async def create(self, client, body=None):
        resp = await client.post("/v1/backups", json=body or {})
        assert resp.status == 201
        return (await resp.json())["backup"]

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/v1/health")

        assert resp.status == 200
        assert await resp.json() == {"healthy": True}

    @pytest.mark.asyncio
    async def test_create_backup(self, client):
        resp = await client.post("/v1/backups", json={"collections": ["Cab"]})

        assert resp.status == 201
        body = await resp.json()
        assert body["success"] is True
        assert body["backup"]["collections"] == ["Cab"]
        assert body["backup"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_create_without_body_backs_up_everything(self, client):
        resp = await client.post("/v1/backups")

        assert resp.status == 201
        assert (await resp.json())["backup"]["collections"] == COLLECTIONS

    @pytest.mark.asyncio
    async def test_failed_backup_is_not_success(self, client, store):
        store.inject_failure("Cab", "list_all")

        resp = await client.post("/v1/backups", json={"collections": ["Cab"]})

        body = await resp.json()
        assert body["success"] is False
        assert body["backup"]["status"] == "failed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"collections": "Cab"}, {"collections": [1]}, ["Cab"]])
    async def test_create_rejects_bad_body(self, client, body):
        resp = await client.post("/v1/backups", json=body)

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_malformed_json(self, client):
        resp = await client.post(
            "/v1/backups", data="{oops", headers={"Content-Type": "application/json"}
        )

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_list_and_get(self, client):
        backup = await self.create(client)

        resp = await client.get("/v1/backups")
        body = await resp.json()
        assert body["count"] == 1
        assert body["backups"][0]["id"] == backup["id"]

        resp = await client.get(f"/v1/backups/{backup['id']}")
        assert resp.status == 200
        assert (await resp.json())["backup"]["id"] == backup["id"]

    @pytest.mark.asyncio
    async def test_get_unknown(self, client):
        resp = await client.get(f"/v1/backups/{UNKNOWN_ID}")

        assert resp.status == 404
        body = await resp.json()
        assert body["success"] is False
        assert body["error_code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_validate(self, client):
        backup = await self.create(client)

        resp = await client.get(f"/v1/backups/{backup['id']}/validate")

        body = await resp.json()
        assert body["validation"]["valid"] is True
        assert body["validation"]["collections"]["Cab"]["recordCount"] == 2

    @pytest.mark.asyncio
    async def test_restore(self, client, store):
        backup = await self.create(client)
        store.seed("Cab", [])

        resp = await client.post(
            f"/v1/backups/{backup['id']}/restore",
            json={"collections": ["Cab"], "deleteExisting": True},
        )

        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        assert body["results"] == [{"collection": "Cab", "success": True, "recordCount": 2}]
        assert len(store.snapshot("Cab")) == 2

    @pytest.mark.asyncio
    async def test_restore_unknown(self, client):
        resp = await client.post(f"/v1/backups/{UNKNOWN_ID}/restore", json={})

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_delete(self, client):
        backup = await self.create(client)

        resp = await client.delete(f"/v1/backups/{backup['id']}?deleteRemote=true")
        assert resp.status == 200
        assert (await resp.json())["deleted"]["remote_objects"] == 3

        resp = await client.delete(f"/v1/backups/{backup['id']}")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_status(self, client):
        await self.create(client)

        resp = await client.get("/v1/backups/status")

        assert resp.status == 200
        status = (await resp.json())["status"]
        assert status["total"] == 1
        assert status["completed"] == 1
        assert status["scheduler"]["state"] == "stopped"
        assert status["scheduler"]["enabled"] is False

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, client, service, monkeypatch):
        async def broken(include_remote=False):
            raise RuntimeError("boom")

        monkeypatch.setattr(service, "list_backups", broken)

        resp = await client.get("/v1/backups")

        assert resp.status == 500
        assert (await resp.json())["error_code"] == "INTERNAL"
