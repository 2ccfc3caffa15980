"""
Celery 任务模块：文件解析（切分 + 向量化）
"""
from ragpipe.tasks.file_tasks import parse_file_task

__all__ = ["parse_file_task"]
