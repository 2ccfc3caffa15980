"""
应用配置：从环境变量读取配置
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """应用配置类"""

    # 项目根目录
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT.parent / ".env"),  # 从项目根目录读取 .env
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API配置
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "RAG 文档入库与检索服务"
    CORS_ORIGINS: List[str] = ["*"]

    # 数据库配置（PostgreSQL 用 postgresql+asyncpg://，本地/测试可用 sqlite+aiosqlite://）
    DATABASE_URL: str = "sqlite+aiosqlite:///./ragpipe.db"
    DATABASE_ECHO: bool = False

    # Redis配置
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery配置（不填则与 REDIS_URL 一致）
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""
    # 提交任务超时（秒），超时则降级为同步执行
    CELERY_SUBMIT_TIMEOUT: float = 10.0

    # 向量检索后端：pgvector=数据库内 <=> 排序；exact=取出候选行后用 numpy 精确计算
    VECTOR_DB_TYPE: str = "exact"

    # MinIO配置
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ACCESS_KEY: str = "minioadmin"
    MINIO_SECRET_KEY: str = "minioadmin"
    MINIO_SECURE: bool = False
    MINIO_BUCKET_NAME: str = "rag-files"
    # 对象路径前缀：{S3_FILE_PATH}/{小时桶}/{uuid}.{ext}
    S3_FILE_PATH: str = "files"
    PRESIGNED_URL_EXPIRE_SECONDS: int = 3600

    # 安全配置
    JWT_SECRET_KEY: str = "your-jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"

    # 向量模型配置（OpenAI 兼容 /embeddings 接口）
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIM: int = 1024
    EMBEDDING_BATCH_SIZE: int = 20
    EMBEDDING_TIMEOUT: float = 90.0

    # 文件上传配置
    MAX_FILE_SIZE: int = 104857600  # 100MB

    # 文本分块配置
    CHUNK_SIZE: int = 500  # 目标块大小（字符数）
    CHUNK_OVERLAP: int = 50  # 重叠字符数
    CHUNK_MAX_EXPAND_RATIO: float = 1.3  # 最大扩展比例（允许超出 chunk_size 的最大倍数）

    # 分块查询与检索
    CHUNK_PAGE_SIZE: int = 20
    SEMANTIC_SEARCH_LIMIT: int = 30
    CHAT_SEARCH_LIMIT: int = 5

    # 客户端上传流水线
    API_BASE_URL: str = "http://localhost:8000/api/v1"
    API_TIMEOUT: float = 60.0
    POLL_INTERVAL: float = 2.0  # 轮询任务状态的间隔（秒）
    POLL_MAX_CONSECUTIVE_ERRORS: int = 30  # 连续查询失败上限，超出视为轮询超时
    POLL_TIMEOUT: float = 1800.0  # 单个文件轮询总时长上限（秒）

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Path = PROJECT_ROOT / "logs" / "ragpipe.log"

    @property
    def celery_broker(self) -> str:
        """Broker 地址，未单独配置时与 REDIS_URL 一致"""
        return self.CELERY_BROKER_URL or self.REDIS_URL

    @property
    def celery_backend(self) -> str:
        """Result backend 地址，未单独配置时与 REDIS_URL 一致"""
        return self.CELERY_RESULT_BACKEND or self.REDIS_URL


# 创建全局配置实例
settings = Settings()
