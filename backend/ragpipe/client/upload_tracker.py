"""
上传条目状态机

pending -> uploading -> processing -> success
pending -> processing（命中去重，跳过传输）
pending / uploading / processing -> error
success 与 error 为终态。
"""
import logging
import time
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from ragpipe.core.exceptions import InvalidStatusTransition
from ragpipe.schemas.upload import FileTasks, UploadFileItem, UploadState, UploadStatus

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[UploadStatus, FrozenSet[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.UPLOADING, UploadStatus.PROCESSING, UploadStatus.ERROR}),
    UploadStatus.UPLOADING: frozenset({UploadStatus.PROCESSING, UploadStatus.ERROR}),
    UploadStatus.PROCESSING: frozenset({UploadStatus.SUCCESS, UploadStatus.ERROR}),
    UploadStatus.SUCCESS: frozenset(),
    UploadStatus.ERROR: frozenset(),
}

# 传输到 100% 不代表服务端已处理完，成功之前最多显示 99.9
MAX_DISPLAY_PROGRESS = 99.9

Listener = Callable[[List[UploadFileItem]], None]


def display_progress(loaded: int, total: int) -> float:
    if total <= 0:
        return MAX_DISPLAY_PROGRESS
    progress = round(loaded / total * 100, 1)
    return MAX_DISPLAY_PROGRESS if progress >= 100 else progress


class UploadFileStore:
    """会话级的上传列表。每次变更替换条目对象，并通知监听者。"""

    def __init__(self):
        self._items: List[UploadFileItem] = []
        self._listeners: List[Listener] = []

    @property
    def items(self) -> List[UploadFileItem]:
        return list(self._items)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self) -> None:
        snapshot = self.items
        for listener in list(self._listeners):
            listener(snapshot)

    def get(self, item_id: str) -> Optional[UploadFileItem]:
        return next((item for item in self._items if item.id == item_id), None)

    def add_files(self, items: Iterable[UploadFileItem]) -> None:
        self._items.extend(items)
        self._emit()

    def update_file(self, item_id: str, **changes) -> Optional[UploadFileItem]:
        """按 id 更新条目；条目不存在（已被移除）时返回 None"""
        for i, item in enumerate(self._items):
            if item.id == item_id:
                self._items[i] = item.model_copy(update=changes)
                self._emit()
                return self._items[i]
        return None

    def remove_file(self, item_id: str) -> Optional[UploadFileItem]:
        item = self.get(item_id)
        if item is not None:
            self._items.remove(item)
            self._emit()
        return item

    def clear(self) -> None:
        self._items = []
        self._emit()


class UploadTracker:
    """驱动 UploadFileStore 中条目的状态迁移与进度计算"""

    def __init__(self, store: UploadFileStore, clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.clock = clock
        self._started_at: Dict[str, float] = {}

    def _transition(self, item_id: str, target: UploadStatus, **changes) -> Optional[UploadFileItem]:
        item = self.store.get(item_id)
        if item is None:
            logger.debug("条目 %s 已移除，忽略迁移到 %s", item_id, target.value)
            return None
        if target not in _TRANSITIONS[item.status]:
            raise InvalidStatusTransition(item_id, item.status.value, target.value)
        return self.store.update_file(item_id, status=target, **changes)

    def begin_upload(self, item_id: str) -> Optional[UploadFileItem]:
        self._started_at[item_id] = self.clock()
        return self._transition(item_id, UploadStatus.UPLOADING, upload_state=UploadState())

    def on_progress(self, item_id: str, loaded: int, total: int) -> Optional[UploadFileItem]:
        """传输进度事件。首个事件把条目从 pending 切到 uploading。"""
        item = self.store.get(item_id)
        if item is None:
            return None
        if item.status == UploadStatus.PENDING:
            self.begin_upload(item_id)
        elif item.status != UploadStatus.UPLOADING:
            return item

        now = self.clock()
        elapsed = now - self._started_at.get(item_id, now)
        speed = loaded / elapsed if elapsed > 0 else 0.0
        rest_time = (total - loaded) / speed if speed > 0 else 0.0
        return self.store.update_file(
            item_id,
            upload_state=UploadState(progress=display_progress(loaded, total), speed=speed, rest_time=rest_time),
        )

    def finish_upload(self, item_id: str, file_url: str) -> Optional[UploadFileItem]:
        self._started_at.pop(item_id, None)
        return self._transition(item_id, UploadStatus.PROCESSING, file_url=file_url)

    def mark_deduplicated(self, item_id: str, file_url: str) -> Optional[UploadFileItem]:
        return self._transition(
            item_id,
            UploadStatus.PROCESSING,
            file_url=file_url,
            upload_state=UploadState(progress=100, speed=0, rest_time=0),
        )

    def assign_id(self, item_id: str, file_id: str) -> Optional[UploadFileItem]:
        """文件记录创建后，条目 id 换成服务端文件 id"""
        return self.store.update_file(item_id, id=file_id)

    def update_tasks(self, item_id: str, tasks: FileTasks) -> Optional[UploadFileItem]:
        return self.store.update_file(item_id, tasks=tasks)

    def succeed(self, item_id: str) -> Optional[UploadFileItem]:
        item = self.store.get(item_id)
        speed = item.upload_state.speed if item and item.upload_state else 0.0
        return self._transition(
            item_id,
            UploadStatus.SUCCESS,
            upload_state=UploadState(progress=100, speed=speed, rest_time=0),
        )

    def fail(self, item_id: str, message: str) -> Optional[UploadFileItem]:
        self._started_at.pop(item_id, None)
        return self._transition(item_id, UploadStatus.ERROR, error=message)

    def reset(self, item_id: str) -> Optional[UploadFileItem]:
        """手动重试：出错的条目回到 pending，清空进度与任务信息"""
        item = self.store.get(item_id)
        if item is None:
            return None
        if item.status != UploadStatus.ERROR:
            raise InvalidStatusTransition(item_id, item.status.value, UploadStatus.PENDING.value)
        return self.store.update_file(
            item_id, status=UploadStatus.PENDING, upload_state=None, tasks=None, error=None, file_url=None
        )
