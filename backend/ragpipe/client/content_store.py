"""
内容寻址存储：按 sha256 去重，未命中时经预签名地址上传
"""
import asyncio
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Callable, Dict, Optional

import httpx

from ragpipe.client.api import RagApiClient
from ragpipe.core.config import settings
from ragpipe.core.exceptions import UploadFailed

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

UPLOAD_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class StorageResult:
    """resolve 的结果。url 是对象存储中的路径，metadata 与 FileMetadata 字段一致"""
    url: str
    metadata: Dict[str, Any]
    already_existed: bool
    hash: str


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hour_bucket(now: Optional[float] = None) -> str:
    """以小时为单位的目录名：round(epoch 秒 / 3600)"""
    return str(round((time.time() if now is None else now) / 3600))


def build_pathname(name: str, now: Optional[float] = None) -> Dict[str, str]:
    """{S3_FILE_PATH}/{小时桶}/{uuid}.{扩展名}；文件名随机，避免和无关内容冲突"""
    ext = name.rsplit(".", 1)[-1] if "." in name else "bin"
    date = hour_bucket(now)
    dirname = f"{settings.S3_FILE_PATH}/{date}"
    filename = f"{uuid.uuid4()}.{ext}"
    return {"date": date, "dirname": dirname, "filename": filename, "path": f"{dirname}/{filename}"}


class HttpBlobUploader:
    """向预签名地址 PUT 字节，按块回调进度"""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, chunk_size: int = UPLOAD_CHUNK_SIZE):
        self._client = client
        self.chunk_size = chunk_size

    async def put(
        self,
        url: str,
        data: bytes,
        content_type: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        total = len(data)

        async def body() -> AsyncIterator[bytes]:
            if on_progress:
                on_progress(0, total)
            for start in range(0, total, self.chunk_size):
                piece = data[start : start + self.chunk_size]
                yield piece
                if on_progress:
                    on_progress(start + len(piece), total)

        # 显式 Content-Length，避免分块传输编码（S3 预签名 PUT 不接受）
        headers = {"Content-Type": content_type or "application/octet-stream", "Content-Length": str(total)}
        client = self._client or httpx.AsyncClient(timeout=settings.API_TIMEOUT)
        try:
            resp = await client.put(url, content=body(), headers=headers)
        except httpx.HTTPError as e:
            raise UploadFailed("文件上传失败", detail=str(e)) from e
        finally:
            if self._client is None:
                await client.aclose()
        if not resp.is_success:
            raise UploadFailed("文件上传失败", resp.status_code, resp.text)


class ContentStore:
    """哈希 -> 查重 -> 上传。不写数据库，文件记录由调用方创建。"""

    def __init__(self, api: RagApiClient, uploader: Optional[HttpBlobUploader] = None):
        self.api = api
        self.uploader = uploader or HttpBlobUploader()
        # 同一进程内相同内容并发 resolve 时共享一次上传
        self._inflight: Dict[str, asyncio.Future] = {}
        # 已上传但服务端可能尚未登记（文件记录创建前查重会未命中）
        self._uploaded: Dict[str, StorageResult] = {}

    async def resolve(
        self,
        data: bytes,
        name: str,
        mime_type: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StorageResult:
        file_hash = await asyncio.to_thread(hash_bytes, data)

        if file_hash in self._uploaded:
            return replace(self._uploaded[file_hash], already_existed=True)
        if file_hash in self._inflight:
            return await self._follow(file_hash)

        # 查询失败抛 HashCheckFailed，不能当作未命中
        check = await self.api.check_file_hash(file_hash)
        if check.get("is_exist"):
            metadata = check.get("metadata") or {}
            logger.info("命中去重 %s -> %s", file_hash[:12], check.get("url"))
            return StorageResult(
                url=check.get("url") or metadata.get("path"),
                metadata=metadata,
                already_existed=True,
                hash=file_hash,
            )

        # 查询期间同内容的上传可能已开始或已完成
        if file_hash in self._uploaded:
            return replace(self._uploaded[file_hash], already_existed=True)
        if file_hash in self._inflight:
            return await self._follow(file_hash)

        future = asyncio.get_running_loop().create_future()
        self._inflight[file_hash] = future
        try:
            result = await self._upload(data, name, mime_type, file_hash, on_progress)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # 没有跟随者时避免 "exception was never retrieved"
            future.exception()
            raise
        else:
            self._uploaded[file_hash] = result
            future.set_result(result)
            return result
        finally:
            del self._inflight[file_hash]

    async def _follow(self, file_hash: str) -> StorageResult:
        logger.info("相同内容正在上传，等待 %s", file_hash[:12])
        result = await asyncio.shield(self._inflight[file_hash])
        return replace(result, already_existed=True)

    async def _upload(
        self,
        data: bytes,
        name: str,
        mime_type: str,
        file_hash: str,
        on_progress: Optional[ProgressCallback],
    ) -> StorageResult:
        metadata = build_pathname(name)
        url = await self.api.create_presigned_url(metadata["path"])
        await self.uploader.put(url, data, mime_type, on_progress)
        logger.info("上传完成 %s -> %s (%s 字节)", name, metadata["path"], len(data))
        return StorageResult(url=metadata["path"], metadata=metadata, already_existed=False, hash=file_hash)

    def forget(self, file_hash: str) -> None:
        """服务端文件被删除后，对象可能已不存在，不能再复用本地记录的位置"""
        self._uploaded.pop(file_hash, None)
