"""
Celery应用配置
"""
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from ragpipe.core.config import settings
from ragpipe.core.logging import setup_logging


def _ensure_rediss_ssl_cert_reqs(url: str, default: str = "CERT_NONE") -> str:
    """rediss:// URL 必须带 ssl_cert_reqs 参数，否则 Celery Redis 后端会报错。"""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = [default]
    return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))


celery_app = Celery(
    "ragpipe",
    broker=_ensure_rediss_ssl_cert_reqs(settings.celery_broker),
    backend=_ensure_rediss_ssl_cert_reqs(settings.celery_backend),
    include=["ragpipe.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # 解析任务占内存（PDF/表格），小容器上默认按 CPU 数起进程会 OOM
    worker_concurrency=2,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    """接管 worker 日志，与 API 进程使用同一套 handler"""
    setup_logging()
