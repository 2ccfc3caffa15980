"""
服务端 HTTP 客户端：上传流水线用到的全部接口
"""
import logging
from typing import Any, Dict, Optional

import httpx

from ragpipe.core.config import settings
from ragpipe.core.exceptions import HashCheckFailed, PipelineError, TransientPollError, UploadFailed
from ragpipe.schemas.upload import FileTasks

logger = logging.getLogger(__name__)


class RagApiClient:
    """对 /api/v1 的薄封装。

    各方法把 HTTP 失败转换为流水线异常，调用方不需要关心 httpx：
    哈希查询失败 -> HashCheckFailed，预签名失败 -> UploadFailed，
    状态查询失败 -> TransientPollError（404 返回 None，表示文件已被删除）。
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=timeout or settings.API_TIMEOUT,
        )
        self._client.headers.update(headers)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RagApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def check_file_hash(self, file_hash: str) -> Dict[str, Any]:
        """{is_exist, metadata?, url?}"""
        try:
            resp = await self._client.post("/files/check-hash", json={"hash": file_hash})
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            logger.warning("哈希查询失败 %s: %s", file_hash[:12], e)
            raise HashCheckFailed(file_hash, str(e)) from e

    async def create_presigned_url(self, pathname: str) -> str:
        try:
            resp = await self._client.post("/files/presign", json={"pathname": pathname})
            resp.raise_for_status()
            return resp.json()["url"]
        except httpx.HTTPStatusError as e:
            raise UploadFailed("获取上传地址失败", e.response.status_code, e.response.text) from e
        except httpx.HTTPError as e:
            raise UploadFailed("获取上传地址失败", detail=str(e)) from e

    async def create_file(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """创建文件记录，返回 {id, url}"""
        try:
            resp = await self._client.post("/files", json=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise PipelineError("创建文件记录失败", e.response.text) from e
        except httpx.HTTPError as e:
            raise PipelineError("创建文件记录失败", str(e)) from e

    async def create_parse_file_task(self, file_id: str) -> Optional[str]:
        """提交切分+向量化任务，返回任务 id；服务端未给出 id 时返回 None"""
        try:
            resp = await self._client.post("/chunks/tasks", json={"file_id": int(file_id)})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("创建解析任务失败 file_id=%s: %s", file_id, e)
            return None
        return resp.json().get("id")

    async def get_file_item(self, file_id: str) -> Optional[FileTasks]:
        """任务状态快照；文件不存在返回 None"""
        try:
            resp = await self._client.get(f"/files/{file_id}")
        except httpx.HTTPError as e:
            raise TransientPollError("查询任务状态失败", str(e)) from e
        if resp.status_code == 404:
            return None
        if resp.is_error:
            raise TransientPollError("查询任务状态失败", f"HTTP {resp.status_code}")
        return FileTasks.model_validate(resp.json())

    async def remove_file(self, file_id: str) -> None:
        resp = await self._client.delete(f"/files/{file_id}")
        if resp.status_code != 404:
            resp.raise_for_status()
