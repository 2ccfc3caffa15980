"""
对象存储：MinIO 预签名上传地址、读取与删除
"""
import logging
from datetime import timedelta
from typing import Optional

from minio import Minio
from minio.error import S3Error

from ragpipe.core.config import settings

logger = logging.getLogger(__name__)


class BlobStore:
    """MinIO 封装，对外只暴露路径级操作"""

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or settings.MINIO_BUCKET_NAME
        self._bucket_checked = False

    @property
    def client(self) -> Minio:
        if self._client is None:
            self._client = Minio(
                settings.MINIO_ENDPOINT,
                access_key=settings.MINIO_ACCESS_KEY,
                secret_key=settings.MINIO_SECRET_KEY,
                secure=settings.MINIO_SECURE,
            )
        return self._client

    def ensure_bucket(self) -> None:
        """确保 bucket 存在"""
        if self._bucket_checked:
            return
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
            self._bucket_checked = True
        except S3Error as e:
            logger.warning("检查/创建 bucket %s 失败: %s", self.bucket, e)

    def presign(self, pathname: str) -> str:
        """生成限时可写的 PUT 地址，客户端直接上传，字节不经过应用服务器"""
        self.ensure_bucket()
        return self.client.presigned_put_object(
            self.bucket,
            pathname,
            expires=timedelta(seconds=settings.PRESIGNED_URL_EXPIRE_SECONDS),
        )

    def get_bytes(self, pathname: str) -> bytes:
        """读取完整对象内容"""
        response = self.client.get_object(self.bucket, pathname)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def remove(self, pathname: str) -> None:
        """删除对象；不存在时忽略"""
        try:
            self.client.remove_object(self.bucket, pathname)
        except S3Error as e:
            if e.code != "NoSuchKey":
                raise
            logger.info("对象 %s 不存在，跳过删除", pathname)


_blob_store_cache: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """进程内复用同一个 MinIO 客户端"""
    global _blob_store_cache
    if _blob_store_cache is None:
        _blob_store_cache = BlobStore()
    return _blob_store_cache
