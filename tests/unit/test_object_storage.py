"""
Unit tests for object storage backends.

Tests cover:
- Key scheme helpers
- In-memory storage semantics and failure injection
- S3 error mapping (with a stubbed client)
- Backend factory
"""

import tempfile
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from vault.snapvault_server.config import S3Config, ServerConfig, StorageBackend, StorageConfig
from vault.snapvault_server.errors import StorageError
from vault.snapvault_server.storage import (
    InMemoryObjectStorage,
    ObjectNotFoundError,
    ObjectStorage,
    S3ObjectStorage,
    backup_prefix,
    collection_key,
    create_object_storage,
    metadata_key,
)

BACKUP_ID = "2024-03-01-02-00-00"


class TestKeyScheme:
    """Tests for key helpers."""

    def test_collection_key(self):
        assert collection_key("backups", BACKUP_ID, "Cab") == f"backups/{BACKUP_ID}/Cab.json"

    def test_metadata_key(self):
        assert metadata_key("backups/", BACKUP_ID) == f"backups/{BACKUP_ID}/metadata.json"

    def test_prefix_ends_with_slash(self):
        """A prefix for one backup never matches a longer id."""
        prefix = backup_prefix("backups", BACKUP_ID)

        assert prefix == f"backups/{BACKUP_ID}/"
        assert not f"backups/{BACKUP_ID}-001/Cab.json".startswith(prefix)


class TestInMemoryObjectStorage:
    """Tests for InMemoryObjectStorage."""

    @pytest.fixture
    def workdir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def storage(self):
        return InMemoryObjectStorage()

    def test_implements_protocol(self, storage):
        assert isinstance(storage, ObjectStorage)

    @pytest.mark.asyncio
    async def test_upload_and_download(self, storage, workdir):
        source = workdir / "Cab.json"
        source.write_text('[{"plate": "AB-123"}]')
        key = collection_key(storage.prefix, BACKUP_ID, "Cab")

        await storage.upload(source, key)
        target = workdir / "restore" / "nested" / "Cab.json"
        await storage.download(key, target)

        assert target.read_text() == '[{"plate": "AB-123"}]'
        assert not target.with_name("Cab.json.part").exists()

    @pytest.mark.asyncio
    async def test_missing_object(self, storage, workdir):
        with pytest.raises(ObjectNotFoundError) as exc_info:
            await storage.download("backups/nope/Cab.json", workdir / "Cab.json")

        assert exc_info.value.key == "backups/nope/Cab.json"
        assert not (workdir / "Cab.json").exists()

    @pytest.mark.asyncio
    async def test_upload_missing_file(self, storage, workdir):
        with pytest.raises(StorageError):
            await storage.upload(workdir / "missing.json", "backups/x/missing.json")

    @pytest.mark.asyncio
    async def test_list_and_delete_prefix(self, storage):
        storage.put(f"backups/{BACKUP_ID}/Cab.json", b"[]")
        storage.put(f"backups/{BACKUP_ID}/metadata.json", b"{}")
        storage.put(f"backups/{BACKUP_ID}-001/Cab.json", b"[]")

        prefix = backup_prefix(storage.prefix, BACKUP_ID)

        assert await storage.list_keys(prefix) == [
            f"backups/{BACKUP_ID}/Cab.json",
            f"backups/{BACKUP_ID}/metadata.json",
        ]
        assert await storage.delete_prefix(prefix) == 2
        assert storage.keys() == [f"backups/{BACKUP_ID}-001/Cab.json"]

    @pytest.mark.asyncio
    async def test_inject_failure_by_suffix(self, storage, workdir):
        source = workdir / "metadata.json"
        source.write_text("{}")
        storage.inject_failure("metadata.json")

        with pytest.raises(StorageError):
            await storage.upload(source, metadata_key(storage.prefix, BACKUP_ID))

        await storage.upload(source, collection_key(storage.prefix, BACKUP_ID, "Cab"))
        storage.clear_failures()
        await storage.upload(source, metadata_key(storage.prefix, BACKUP_ID))

        assert storage.upload_count == 2


class _Body:
    def __init__(self, content):
        self._content = content

    async def read(self):
        return self._content


class _Paginator:
    def __init__(self, pages):
        self._pages = pages

    async def paginate(self, **kwargs):
        for page in self._pages:
            yield page


class FakeS3Client:
    """Minimal stand-in for an aiobotocore S3 client."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.delete_errors = []

    async def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = Body

    async def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": _Body(self.objects[Key])}

    def get_paginator(self, name):
        keys = sorted(self.objects)
        return _Paginator([{"Contents": [{"Key": k} for k in keys[:1]]}, {"Contents": [{"Key": k} for k in keys[1:]]}])

    async def delete_objects(self, Bucket, Delete):
        for obj in Delete["Objects"]:
            self.deleted.append(obj["Key"])
            self.objects.pop(obj["Key"], None)
        return {"Errors": self.delete_errors}


class TestS3ObjectStorage:
    """Tests for S3ObjectStorage against a stubbed client."""

    @pytest.fixture
    def client(self):
        return FakeS3Client()

    @pytest.fixture
    def storage(self, client):
        storage = S3ObjectStorage(S3Config(bucket="test-bucket", backup_prefix="snaps"))
        storage._s3_client = client
        return storage

    @pytest.mark.asyncio
    async def test_upload_and_read(self, storage, client):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = Path(tmpdir) / "Cab.json"
            source.write_bytes(b"[]")

            await storage.upload(source, "snaps/x/Cab.json")

        assert client.objects == {"snaps/x/Cab.json": b"[]"}
        assert await storage.read_bytes("snaps/x/Cab.json") == b"[]"

    @pytest.mark.asyncio
    async def test_no_such_key_maps_to_not_found(self, storage):
        with pytest.raises(ObjectNotFoundError):
            await storage.read_bytes("snaps/x/Cab.json")

    @pytest.mark.asyncio
    async def test_list_keys_across_pages(self, storage, client):
        client.objects = {"snaps/x/b.json": b"", "snaps/x/a.json": b""}

        assert await storage.list_keys("snaps/x/") == ["snaps/x/a.json", "snaps/x/b.json"]

    @pytest.mark.asyncio
    async def test_delete_prefix(self, storage, client):
        client.objects = {"snaps/x/a.json": b"", "snaps/x/b.json": b""}

        assert await storage.delete_prefix("snaps/x/") == 2
        assert client.objects == {}

    @pytest.mark.asyncio
    async def test_delete_prefix_reports_errors(self, storage, client):
        client.objects = {"snaps/x/a.json": b""}
        client.delete_errors = [{"Key": "snaps/x/a.json", "Code": "AccessDenied"}]

        with pytest.raises(StorageError):
            await storage.delete_prefix("snaps/x/")

    @pytest.mark.asyncio
    async def test_delete_empty_prefix(self, storage, client):
        assert await storage.delete_prefix("snaps/none/") == 0
        assert client.deleted == []


class TestCreateObjectStorage:
    """Tests for the backend factory."""

    def test_memory_uses_configured_prefix(self):
        config = ServerConfig(
            storage=StorageConfig(backend=StorageBackend.MEMORY),
            s3=S3Config(backup_prefix="snaps"),
        )

        storage = create_object_storage(config)

        assert isinstance(storage, InMemoryObjectStorage)
        assert storage.prefix == "snaps"

    def test_s3(self):
        storage = create_object_storage(ServerConfig(s3=S3Config(bucket="b")))

        assert isinstance(storage, S3ObjectStorage)
        assert storage.bucket == "b"
