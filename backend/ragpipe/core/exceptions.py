"""
上传与入库流水线的异常类型
"""
from typing import Optional


class PipelineError(Exception):
    """流水线异常基类"""

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class HashCheckFailed(PipelineError):
    """文件哈希查询失败。不能当作「不存在」处理，否则会重复上传。"""

    def __init__(self, file_hash: str, detail: Optional[str] = None):
        self.file_hash = file_hash
        super().__init__(f"文件哈希校验失败: {file_hash[:12]}", detail)


class UploadFailed(PipelineError):
    """传输失败（非 2xx 或网络错误），不自动重试"""

    def __init__(self, message: str = "文件上传失败", status_code: Optional[int] = None, detail: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message, detail)


class JobStartFailed(PipelineError):
    """切分+向量化任务未返回任务 id"""

    def __init__(self, file_id: str, detail: Optional[str] = None):
        self.file_id = file_id
        super().__init__(f"文件 {file_id} 的解析任务创建失败", detail)


class TransientPollError(PipelineError):
    """轮询任务状态时的临时错误，记录后继续轮询"""


class JobTerminalError(PipelineError):
    """切分或向量化阶段以 error 结束"""

    def __init__(self, file_id: str, stage: str, error_message: Optional[str] = None):
        self.file_id = file_id
        self.stage = stage
        self.error_message = error_message
        super().__init__(f"文件 {file_id} {stage} 阶段失败", error_message)


class PollingTimedOut(PipelineError):
    """连续查询失败次数或轮询总时长超出上限"""

    def __init__(self, file_id: str, detail: Optional[str] = None):
        self.file_id = file_id
        super().__init__(f"文件 {file_id} 任务状态轮询超时", detail)


class InvalidStatusTransition(PipelineError):
    """上传条目状态机的非法迁移"""

    def __init__(self, item_id: str, current: str, target: str):
        self.item_id = item_id
        self.current = current
        self.target = target
        super().__init__(f"{item_id}: 不允许从 {current} 迁移到 {target}")
