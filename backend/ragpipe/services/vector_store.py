"""
向量检索后端：pgvector（数据库内排序）/ exact（numpy 精确计算）

两种后端返回同样的行：chunks 左连接 embeddings，没有向量的分块 similarity 为 None 且排在最后。
similarity = 1 - cosine_distance(向量, 查询向量)。
"""
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ragpipe.core.config import settings
from ragpipe.core.database import is_postgres
from ragpipe.models.chunk import Chunk, Embedding
from ragpipe.models.file import File

logger = logging.getLogger(__name__)


def _base_columns(with_file: bool) -> list:
    columns = [Chunk.id, Chunk.index.label("chunk_index"), Chunk.chunk_metadata, Chunk.type, Chunk.text]
    if with_file:
        columns += [File.id.label("file_id"), File.name.label("filename")]
    return columns


def _apply_filters(stmt, user_id: str, file_ids: Optional[Sequence[int]], with_file: bool):
    stmt = stmt.outerjoin(Embedding, Embedding.chunk_id == Chunk.id)
    if with_file:
        stmt = stmt.outerjoin(File, File.id == Chunk.file_id)
    stmt = stmt.where(Chunk.user_id == user_id)
    if file_ids is not None:
        stmt = stmt.where(Chunk.file_id.in_(list(file_ids)))
    return stmt


def _row_to_dict(row, similarity: Optional[float], with_file: bool) -> Dict[str, Any]:
    item = {
        "id": row.id,
        "index": row.chunk_index,
        "metadata": row.chunk_metadata or {},
        "type": row.type,
        "text": row.text,
        "similarity": similarity,
    }
    if with_file:
        item["file_id"] = row.file_id
        item["filename"] = row.filename
    return item


class PgVectorStore:
    """PostgreSQL + pgvector：用 <=> 余弦距离在数据库内排序"""

    name = "pgvector"

    async def search(
        self,
        db: AsyncSession,
        query_vector: List[float],
        user_id: str,
        file_ids: Optional[Sequence[int]] = None,
        limit: int = 30,
        with_file: bool = False,
    ) -> List[Dict[str, Any]]:
        similarity = (1 - Embedding.embeddings.cosine_distance(query_vector)).label("similarity")
        stmt = select(*_base_columns(with_file), similarity)
        stmt = _apply_filters(stmt, user_id, file_ids, with_file)
        # PostgreSQL 的 DESC 默认 NULLS FIRST，这里显式放到最后
        stmt = stmt.order_by(similarity.desc().nulls_last()).limit(limit)
        result = await db.execute(stmt)
        return [
            _row_to_dict(row, None if row.similarity is None else float(row.similarity), with_file)
            for row in result.all()
        ]


class ExactVectorStore:
    """取出候选行后用 numpy 计算余弦相似度；非 PostgreSQL 数据库使用"""

    name = "exact"

    @staticmethod
    def cosine_similarities(vectors: np.ndarray, query: np.ndarray) -> np.ndarray:
        """逐行 1 - cosine_distance；零向量结果为 nan"""
        norms = np.linalg.norm(vectors, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            return (vectors @ query) / norms

    async def search(
        self,
        db: AsyncSession,
        query_vector: List[float],
        user_id: str,
        file_ids: Optional[Sequence[int]] = None,
        limit: int = 30,
        with_file: bool = False,
    ) -> List[Dict[str, Any]]:
        stmt = select(*_base_columns(with_file), Embedding.embeddings)
        stmt = _apply_filters(stmt, user_id, file_ids, with_file)
        rows = (await db.execute(stmt)).all()
        if not rows:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        embedded = [i for i, row in enumerate(rows) if row.embeddings is not None]
        scores: Dict[int, Optional[float]] = {}
        if embedded:
            matrix = np.asarray([rows[i].embeddings for i in embedded], dtype=np.float64)
            if matrix.shape[1] != query.shape[0]:
                raise ValueError(f"查询向量维度 {query.shape[0]} 与存储维度 {matrix.shape[1]} 不一致")
            for i, score in zip(embedded, self.cosine_similarities(matrix, query)):
                scores[i] = None if math.isnan(score) else float(score)

        # 稳定排序：有分数的按分数降序，无分数的保持原顺序排在最后
        order = sorted(
            range(len(rows)),
            key=lambda i: (scores.get(i) is None, -(scores.get(i) or 0.0)),
        )
        return [_row_to_dict(rows[i], scores.get(i), with_file) for i in order[:limit]]


_vector_client_cache: Optional[Any] = None


def get_vector_client():
    """根据 VECTOR_DB_TYPE 返回对应后端；非 PostgreSQL 数据库强制使用 exact。"""
    global _vector_client_cache
    if _vector_client_cache is None:
        if settings.VECTOR_DB_TYPE == "pgvector" and is_postgres():
            _vector_client_cache = PgVectorStore()
        else:
            if settings.VECTOR_DB_TYPE == "pgvector":
                logger.warning("pgvector 需要 PostgreSQL，当前数据库改用 exact 检索")
            _vector_client_cache = ExactVectorStore()
    return _vector_client_cache
