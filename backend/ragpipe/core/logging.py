"""
日志配置：控制台 + 滚动文件
"""
import logging
import sys
from logging.handlers import RotatingFileHandler

from ragpipe.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def setup_logging(level: str = None) -> None:
    """初始化根日志器。API 的 lifespan 与 Celery worker 启动时各调用一次，重复调用无副作用。"""
    global _configured
    if _configured:
        return
    level_name = (level or settings.LOG_LEVEL or "INFO").upper()
    root = logging.getLogger()
    root.setLevel(level_name)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    try:
        settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.LOG_FILE,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        logging.warning("日志文件 %s 不可写，仅输出到控制台: %s", settings.LOG_FILE, e)

    # 第三方库日志过于冗长
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
