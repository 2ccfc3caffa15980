import os
import tempfile

# 必须在导入 ragpipe 之前设置，settings 在导入时读取环境变量
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VECTOR_DB_TYPE", "exact")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "ragpipe-test.log"))
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from unittest.mock import MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import ragpipe.models  # noqa: F401
from ragpipe.core.database import Base
from ragpipe.models.chunk import ChunkType
from ragpipe.models.file import File
from ragpipe.services.blob_store import BlobStore
from ragpipe.services.chunk_service import ChunkService

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_store():
    """MinIO 客户端替身"""
    store = MagicMock(spec=BlobStore)
    store.presign.side_effect = lambda pathname: f"http://minio.local/rag-files/{pathname}?X-Amz-Signature=test"
    store.get_bytes.return_value = b""
    return store


@pytest.fixture
def make_file(db):
    async def _make(name="doc.txt", user_id=USER_ID, file_hash=None, file_type="text/plain", size=100):
        file = File(
            user_id=user_id,
            name=name,
            file_type=file_type,
            size=size,
            hash=file_hash or (name.encode().hex() * 64)[:64],
            url=f"files/480000/{name}",
            file_metadata={},
        )
        db.add(file)
        await db.commit()
        await db.refresh(file)
        return file
    return _make


@pytest.fixture
def make_chunks(db):
    """为文件写入 n 个分块；vectors 给出时同时写入向量（None 表示该分块没有向量）"""
    async def _make(file, n=None, texts=None, vectors=None, user_id=USER_ID, chunk_type=ChunkType.TEXT, metadata=None):
        texts = texts if texts is not None else [f"chunk {i}" for i in range(n)]
        service = ChunkService(db, user_id)
        ids = await service.bulk_create([
            {
                "file_id": file.id,
                "index": i,
                "type": chunk_type,
                "text": text,
                "chunk_metadata": dict(metadata or {}),
            }
            for i, text in enumerate(texts)
        ])
        if vectors is not None:
            await service.bulk_create_embeddings([
                {"chunk_id": cid, "embeddings": vec, "model": "test"}
                for cid, vec in zip(ids, vectors)
                if vec is not None
            ])
        return ids
    return _make
