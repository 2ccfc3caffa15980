"""
客户端上传流水线：去重上传 -> 创建文件记录 -> 解析任务轮询

每个文件一个协程并发执行，文件内部严格顺序。单个文件失败只把该条目置为 error，不影响同批其他文件。
"""
import asyncio
import base64
import logging
import mimetypes
from typing import Dict, List, Optional, Sequence

from ragpipe.client.api import RagApiClient
from ragpipe.client.content_store import ContentStore
from ragpipe.client.task_poller import TaskPoller
from ragpipe.client.upload_tracker import UploadFileStore, UploadTracker
from ragpipe.core.exceptions import JobTerminalError, PipelineError
from ragpipe.schemas.upload import FileTasks, LocalFile, UploadFileItem

logger = logging.getLogger(__name__)


def _error_message(e: Exception) -> str:
    if isinstance(e, JobTerminalError):
        return e.error_message or e.message
    if isinstance(e, PipelineError):
        return f"{e.message}: {e.detail}" if e.detail else e.message
    return str(e) or type(e).__name__


class UploadPipeline:
    """一次会话内的文件上传与解析"""

    def __init__(
        self,
        api: RagApiClient,
        store: Optional[UploadFileStore] = None,
        content_store: Optional[ContentStore] = None,
        poller: Optional[TaskPoller] = None,
        knowledge_base_id: Optional[int] = None,
    ):
        self.api = api
        self.store = store or UploadFileStore()
        self.tracker = UploadTracker(self.store)
        self.content_store = content_store or ContentStore(api)
        self.poller = poller or TaskPoller(api)
        self.knowledge_base_id = knowledge_base_id
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._server_ids: Dict[str, str] = {}  # 服务端文件 id -> 内容哈希

    def _make_item(self, file: LocalFile) -> UploadFileItem:
        if not file.type:
            guessed, _ = mimetypes.guess_type(file.name)
            file = file.model_copy(update={"type": guessed or "application/octet-stream"})

        base64_url = None
        # 只有图片和视频需要预览
        if file.is_previewable:
            base64_url = f"data:{file.type};base64,{base64.b64encode(file.data).decode('ascii')}"

        # 同名文件在列表中需要可区分
        item_id = file.name
        n = 1
        while self.store.get(item_id) is not None:
            n += 1
            item_id = f"{file.name} ({n})"
        return UploadFileItem(id=item_id, file=file, base64_url=base64_url)

    async def upload_files(self, files: Sequence[LocalFile]) -> List[UploadFileItem]:
        """并发处理一批文件，全部结束（成功、失败或被移除）后返回当前列表"""
        items = []
        for file in files:
            item = self._make_item(file)
            items.append(item)
            # 逐个加入，保证后续同名判断能看到前面的条目
            self.store.add_files([item])
        await asyncio.gather(*(self._run(item.id) for item in items))
        return self.store.items

    async def _run(self, item_id: str) -> Optional[str]:
        """执行单个条目的流水线，返回条目最终的 id"""
        item = self.store.get(item_id)
        if item is None:
            return None
        file = item.file
        cancel_event = self._cancel_events.setdefault(item_id, asyncio.Event())
        current_id = item_id
        try:
            result = await self.content_store.resolve(
                file.data,
                file.name,
                file.type,
                on_progress=lambda loaded, total: self.tracker.on_progress(item_id, loaded, total),
            )
            if cancel_event.is_set():
                return current_id
            if result.already_existed:
                self.tracker.mark_deduplicated(item_id, result.url)
            else:
                self.tracker.finish_upload(item_id, result.url)

            created = await self.api.create_file({
                "name": file.name,
                "file_type": file.type,
                "size": file.size,
                "hash": result.hash,
                "url": result.url,
                "metadata": result.metadata,
                "knowledge_base_id": self.knowledge_base_id,
            })
            file_id = str(created["id"])
            self._server_ids[file_id] = result.hash
            self.tracker.assign_id(item_id, file_id)
            current_id = file_id
            if not cancel_event.is_set():
                self._cancel_events[file_id] = self._cancel_events.pop(item_id, cancel_event)
            else:
                # 创建记录期间条目被移除
                await self._remove_server_file(file_id)
                return current_id

            # 图片不需要切分与向量化
            if file.is_image:
                self.tracker.succeed(file_id)
                return current_id

            # 空的任务信息表示任务即将开始
            self.tracker.update_tasks(file_id, FileTasks())
            snapshot = await self.poller.run(
                file_id,
                self.api.create_parse_file_task,
                lambda tasks: self.tracker.update_tasks(file_id, tasks),
                cancel_event,
            )
            if snapshot is not None:
                self.tracker.succeed(file_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("文件 %s 处理失败: %s", file.name, _error_message(e))
            self.tracker.fail(current_id, _error_message(e))
        return current_id

    async def _remove_server_file(self, file_id: str) -> None:
        file_hash = self._server_ids.pop(file_id, None)
        if file_hash is None:
            return
        # 删除可能连带删除存储对象，之后相同内容需要重新上传
        self.content_store.forget(file_hash)
        await self.api.remove_file(file_id)

    async def remove_file(self, item_id: str) -> None:
        """移除条目并停止其轮询；已创建的文件记录同时从服务端删除"""
        event = self._cancel_events.pop(item_id, None)
        if event is not None:
            event.set()
        self.store.remove_file(item_id)
        await self._remove_server_file(item_id)

    async def retry(self, item_id: str) -> Optional[UploadFileItem]:
        """手动重试出错的条目，从头执行整条流水线"""
        if self.tracker.reset(item_id) is None:
            return None
        self._cancel_events.pop(item_id, None)
        # 上一轮创建的记录作废，重试会重新创建
        await self._remove_server_file(item_id)
        current_id = await self._run(item_id)
        return self.store.get(current_id) if current_id else None

    def clear(self) -> None:
        for event in self._cancel_events.values():
            event.set()
        self._cancel_events.clear()
        self.store.clear()
