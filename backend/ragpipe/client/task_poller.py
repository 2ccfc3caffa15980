"""
解析任务轮询：提交切分+向量化任务后，固定间隔查询状态直到终态
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from ragpipe.client.api import RagApiClient
from ragpipe.core.config import settings
from ragpipe.core.exceptions import JobStartFailed, JobTerminalError, PollingTimedOut, TransientPollError
from ragpipe.models.file import AsyncTaskStatus
from ragpipe.schemas.upload import FileTasks

logger = logging.getLogger(__name__)

StartJob = Callable[[str], Awaitable[Optional[str]]]
OnUpdate = Callable[[FileTasks], None]


class TaskPoller:
    """单个文件的任务轮询。

    终止条件：
    - finish_embedding 为 True：返回最后一次快照
    - 切分或向量化为 error：抛 JobTerminalError
    - 文件已不存在（404）或 cancel_event 被设置：返回 None
    - 连续查询失败达到上限或总时长超限：抛 PollingTimedOut
    """

    def __init__(
        self,
        api: RagApiClient,
        interval: Optional[float] = None,
        max_consecutive_errors: Optional[int] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.interval = settings.POLL_INTERVAL if interval is None else interval
        self.max_consecutive_errors = (
            settings.POLL_MAX_CONSECUTIVE_ERRORS if max_consecutive_errors is None else max_consecutive_errors
        )
        self.timeout = settings.POLL_TIMEOUT if timeout is None else timeout
        self.clock = clock

    async def _wait(self, cancel_event: Optional[asyncio.Event]) -> bool:
        """等待一个轮询间隔；期间被取消返回 True"""
        if cancel_event is None:
            await asyncio.sleep(self.interval)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def run(
        self,
        file_id: str,
        start_job: StartJob,
        on_update: OnUpdate,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[FileTasks]:
        job_id = await start_job(file_id)
        if not job_id:
            raise JobStartFailed(file_id)
        logger.info("文件 %s 解析任务已创建 job_id=%s", file_id, job_id)

        started = self.clock()
        consecutive_errors = 0
        while True:
            if await self._wait(cancel_event):
                logger.info("文件 %s 已取消，停止轮询", file_id)
                return None
            if self.clock() - started > self.timeout:
                raise PollingTimedOut(file_id, f"超过 {self.timeout}s 未完成")

            try:
                snapshot = await self.api.get_file_item(file_id)
            except TransientPollError as e:
                consecutive_errors += 1
                logger.warning(
                    "查询文件 %s 状态失败（连续 %s 次）: %s", file_id, consecutive_errors, e.detail or e.message
                )
                if consecutive_errors >= self.max_consecutive_errors:
                    raise PollingTimedOut(file_id, f"连续 {consecutive_errors} 次查询失败")
                continue
            consecutive_errors = 0

            if snapshot is None:
                logger.info("文件 %s 已不存在，停止轮询", file_id)
                return None
            if cancel_event is not None and cancel_event.is_set():
                return None

            on_update(snapshot)

            if snapshot.finish_embedding:
                return snapshot
            if snapshot.chunking_status == AsyncTaskStatus.ERROR:
                raise JobTerminalError(
                    file_id, "chunking", snapshot.chunking_error.message if snapshot.chunking_error else None
                )
            if snapshot.embedding_status == AsyncTaskStatus.ERROR:
                raise JobTerminalError(
                    file_id, "embedding", snapshot.embedding_error.message if snapshot.embedding_error else None
                )
