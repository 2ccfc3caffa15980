import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from jose import jwt

from ragpipe.client.api import RagApiClient
from ragpipe.core.config import settings
from ragpipe.core.database import get_db
from ragpipe.main import app

from conftest import OTHER_USER_ID, USER_ID

HASH = "ab" * 32
METADATA = {
    "date": "480000",
    "dirname": "files/480000",
    "filename": "5f0c.txt",
    "path": "files/480000/5f0c.txt",
}
TEXT = "第一段内容。第二段内容。".encode("utf-8")


def _token(user_id, expires_in=timedelta(hours=1)):
    """模拟上游账号服务签发的令牌"""
    payload = {"sub": user_id, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _auth(user_id=USER_ID):
    return {"Authorization": f"Bearer {_token(user_id)}"}


def _fake_embeddings(texts):
    return [[1.0, 0.0] for _ in texts]


@pytest.fixture
async def client(session_factory, blob_store):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    with patch("ragpipe.services.file_service.get_blob_store", return_value=blob_store):
        async with httpx.AsyncClient(
            transport=transport, base_url="http://test/api/v1", headers=_auth()
        ) as c:
            yield c
    app.dependency_overrides.clear()


async def _create_file(client, name="notes.txt", file_hash=HASH, **extra):
    resp = await client.post("/files", json={
        "name": name,
        "file_type": "text/plain",
        "size": len(TEXT),
        "hash": file_hash,
        "url": METADATA["path"],
        "metadata": METADATA,
        **extra,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


@pytest.mark.integration
class TestAuth:

    async def test_invalid_token_is_rejected(self, client):
        resp = await client.get("/files", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        body = resp.json()
        assert body["detail"] == "无法验证凭据"
        assert body["request_id"] == resp.headers["X-Request-ID"]

    async def test_expired_token_is_rejected(self, client):
        token = _token(USER_ID, expires_in=timedelta(minutes=-1))
        resp = await client.get("/files", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_request_id_is_echoed(self, client):
        resp = await client.get("/files", headers={"X-Request-ID": "rid-1"})
        assert resp.status_code == 200
        assert resp.headers["X-Request-ID"] == "rid-1"


@pytest.mark.integration
class TestFilesApi:

    async def test_check_hash_before_and_after_create(self, client):
        resp = await client.post("/files/check-hash", json={"hash": HASH})
        assert resp.json() == {"is_exist": False, "metadata": None, "url": None}

        await _create_file(client)

        body = (await client.post("/files/check-hash", json={"hash": HASH})).json()
        assert body["is_exist"] is True
        assert body["url"] == METADATA["path"]
        assert body["metadata"] == METADATA

    async def test_check_hash_is_shared_across_users(self, client):
        await _create_file(client)
        resp = await client.post("/files/check-hash", json={"hash": HASH}, headers=_auth(OTHER_USER_ID))
        assert resp.json()["is_exist"] is True

    async def test_presign(self, client):
        resp = await client.post("/files/presign", json={"pathname": METADATA["path"]})
        assert resp.status_code == 200
        assert resp.json()["url"].startswith(f"http://minio.local/rag-files/{METADATA['path']}")

        resp = await client.post("/files/presign", json={"pathname": "files/../secrets"})
        assert resp.status_code == 400

    async def test_get_file_snapshot(self, client):
        file_id = await _create_file(client)

        body = (await client.get(f"/files/{file_id}")).json()
        assert body["id"] == file_id
        assert body["chunking_status"] is None
        assert body["chunk_count"] is None
        assert body["finish_embedding"] is False

        assert (await client.get("/files/9999")).status_code == 404
        assert (await client.get(f"/files/{file_id}", headers=_auth(OTHER_USER_ID))).status_code == 404

    async def test_list_and_delete(self, client):
        first = await _create_file(client, name="a.txt")
        await _create_file(client, name="b.txt")

        listing = (await client.get("/files")).json()
        assert listing["total"] == 2
        assert {f["name"] for f in listing["files"]} == {"a.txt", "b.txt"}

        assert (await client.delete(f"/files/{first}")).status_code == 204
        assert (await client.get(f"/files/{first}")).status_code == 404
        assert (await client.delete(f"/files/{first}")).status_code == 404
        # 另一条记录仍引用同一内容
        assert (await client.post("/files/check-hash", json={"hash": HASH})).json()["is_exist"] is True


@pytest.mark.integration
class TestParseTaskApi:

    async def test_submits_to_celery(self, client):
        file_id = await _create_file(client)
        with patch("ragpipe.api.v1.chunks._submit_celery_task", new=AsyncMock(return_value=None)) as submit:
            resp = await client.post("/chunks/tasks", json={"file_id": file_id})

        assert resp.status_code == 200
        body = resp.json()
        assert body["id"]
        assert body["sync"] is False
        submit.assert_awaited_once()

        snapshot = (await client.get(f"/files/{file_id}")).json()
        assert snapshot["chunking_status"] == "processing"
        assert snapshot["finish_embedding"] is False

    async def test_falls_back_to_sync_processing(self, client, blob_store):
        blob_store.get_bytes.return_value = TEXT
        file_id = await _create_file(client)
        with patch(
            "ragpipe.api.v1.chunks._submit_celery_task", new=AsyncMock(side_effect=asyncio.TimeoutError())
        ), patch(
            "ragpipe.services.processing_service.get_embeddings", new=AsyncMock(side_effect=_fake_embeddings)
        ):
            resp = await client.post("/chunks/tasks", json={"file_id": file_id})

        assert resp.status_code == 200
        assert resp.json()["sync"] is True

        snapshot = (await client.get(f"/files/{file_id}")).json()
        assert snapshot["chunking_status"] == "success"
        assert snapshot["embedding_status"] == "success"
        assert snapshot["finish_embedding"] is True
        assert snapshot["chunk_count"] == 1

        texts = (await client.get(f"/chunks/files/{file_id}/texts")).json()
        assert "第一段内容" in texts[0]["text"]

    async def test_unknown_file(self, client):
        resp = await client.post("/chunks/tasks", json={"file_id": 9999})
        assert resp.status_code == 404


@pytest.mark.integration
class TestChunksApi:

    async def test_search_and_listing(self, client, make_file, make_chunks):
        file = await make_file(name="guide.txt")
        ids = await make_chunks(file, n=3, vectors=[[0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])

        results = (await client.post("/chunks/search", json={"embedding": [1.0, 0.0]})).json()
        assert [r["id"] for r in results] == [ids[1], ids[2], ids[0]]
        assert results[0]["similarity"] == pytest.approx(1.0)

        chat = (await client.post("/chunks/search/chat", json={"embedding": [1.0, 0.0]})).json()
        assert chat[0]["filename"] == "guide.txt"
        assert chat[0]["file_id"] == file.id

        page = (await client.get(f"/chunks/files/{file.id}", params={"page": 0})).json()
        assert [c["index"] for c in page["chunks"]] == [0, 1, 2]
        assert page["page_size"] == 20

        counts = (await client.get("/chunks/counts", params={"file_ids": [file.id]})).json()
        assert counts == [{"id": file.id, "count": 3}]

        assert (await client.delete(f"/chunks/{ids[0]}")).status_code == 204
        assert (await client.delete(f"/chunks/{ids[0]}")).status_code == 204
        counts = (await client.get("/chunks/counts", params={"file_ids": [file.id]})).json()
        assert counts == [{"id": file.id, "count": 2}]

    async def test_search_requires_query_or_embedding(self, client):
        resp = await client.post("/chunks/search", json={"file_ids": [1]})
        assert resp.status_code == 422
        assert "errors" in resp.json()

    async def test_search_with_query_text(self, client, make_file, make_chunks):
        file = await make_file()
        ids = await make_chunks(file, n=2, vectors=[[0.0, 1.0], [1.0, 0.0]])
        with patch("ragpipe.api.v1.chunks.get_embedding", new=AsyncMock(return_value=[1.0, 0.0])) as embed:
            results = (await client.post("/chunks/search", json={"query": "hello"})).json()
        embed.assert_awaited_once_with("hello")
        assert results[0]["id"] == ids[1]


@pytest.mark.integration
class TestKnowledgeBasesApi:

    async def test_create_attach_and_list(self, client):
        resp = await client.post("/knowledge-bases", json={"name": "手册", "description": "产品手册"})
        assert resp.status_code == 201
        kb_id = resp.json()["id"]

        await _create_file(client, knowledge_base_id=kb_id)

        kbs = (await client.get("/knowledge-bases")).json()
        assert kbs["total"] == 1
        assert kbs["knowledge_bases"][0]["file_count"] == 1

        files = (await client.get(f"/knowledge-bases/{kb_id}/files")).json()
        assert files["total"] == 1
        assert files["files"][0]["name"] == "notes.txt"

        assert (await client.get("/knowledge-bases/9999/files")).status_code == 404

    async def test_create_file_with_unknown_knowledge_base(self, client):
        resp = await client.post("/files", json={
            "name": "x.txt",
            "file_type": "text/plain",
            "size": 1,
            "hash": HASH,
            "url": METADATA["path"],
            "knowledge_base_id": 9999,
        })
        assert resp.status_code == 400


@pytest.mark.integration
class TestRagApiClient:

    async def test_client_against_app(self, client):
        api = RagApiClient(client=client)

        assert (await api.check_file_hash(HASH))["is_exist"] is False
        url = await api.create_presigned_url(METADATA["path"])
        assert "X-Amz-Signature" in url

        created = await api.create_file({
            "name": "notes.txt",
            "file_type": "text/plain",
            "size": 10,
            "hash": HASH,
            "url": METADATA["path"],
            "metadata": METADATA,
        })
        snapshot = await api.get_file_item(str(created["id"]))
        assert snapshot.chunking_status is None

        await api.remove_file(str(created["id"]))
        assert await api.get_file_item(str(created["id"])) is None
        # 重复删除不报错
        await api.remove_file(str(created["id"]))
