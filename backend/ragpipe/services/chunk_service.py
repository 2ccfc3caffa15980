"""
分块服务：分块与向量的写入、分页查询、计数、文本还原与语义检索
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from ragpipe.core.config import settings
from ragpipe.models.chunk import Chunk, ChunkType, Embedding
from ragpipe.services.vector_store import get_vector_client

logger = logging.getLogger(__name__)

TABLE_HTML_LABEL = "content in Table html is below:"


def map_chunk_text(text: Optional[str], chunk_type: Optional[str], metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    """还原分块的可读文本；Table 类型拼接表格 HTML"""
    if chunk_type == ChunkType.TABLE:
        html = (metadata or {}).get("text_as_html") or ""
        return f"{text}\n\n{TABLE_HTML_LABEL}\n{html}\n"
    return text


class ChunkService:
    """分块服务类，所有操作限定在 user_id 范围内"""

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    async def create(self, params: Dict[str, Any]) -> Chunk:
        chunk = Chunk(user_id=self.user_id, **params)
        self.db.add(chunk)
        await self.db.commit()
        await self.db.refresh(chunk)
        return chunk

    async def bulk_create(self, params: List[Dict[str, Any]]) -> List[int]:
        """单次批量插入，返回按输入顺序的分块 id。

        (file_id, index) 唯一性由调用方保证。
        """
        if not params:
            return []
        rows = [{"user_id": self.user_id, **p} for p in params]
        result = await self.db.execute(insert(Chunk).returning(Chunk.id, Chunk.index.label("chunk_index"), Chunk.file_id), rows)
        # RETURNING 的行序不保证与输入一致，按 (file_id, index) 对回去
        ids = {(r.file_id, r.chunk_index): r.id for r in result.all()}
        await self.db.commit()
        return [ids[(p["file_id"], p["index"])] for p in params]

    async def bulk_create_embeddings(self, rows: List[Dict[str, Any]]) -> None:
        """批量写入向量：[{chunk_id, embeddings, model}]"""
        if not rows:
            return
        await self.db.execute(
            insert(Embedding),
            [{"user_id": self.user_id, **r} for r in rows],
        )
        await self.db.commit()

    async def delete_chunk(self, chunk_id: int) -> None:
        """删除单个分块（及其向量）；不存在时不报错"""
        owned = select(Chunk.id).where(Chunk.id == chunk_id, Chunk.user_id == self.user_id)
        await self.db.execute(delete(Embedding).where(Embedding.chunk_id.in_(owned)))
        await self.db.execute(delete(Chunk).where(Chunk.id == chunk_id, Chunk.user_id == self.user_id))
        await self.db.commit()

    async def delete_by_file(self, file_id: int, commit: bool = True) -> None:
        """删除文件的全部分块与向量（重新解析或删除文件时）"""
        chunk_ids = select(Chunk.id).where(Chunk.file_id == file_id)
        await self.db.execute(delete(Embedding).where(Embedding.chunk_id.in_(chunk_ids)))
        await self.db.execute(delete(Chunk).where(Chunk.file_id == file_id))
        if commit:
            await self.db.commit()

    async def list_by_file(self, file_id: int, page: int = 0) -> List[Dict[str, Any]]:
        """按 index 升序分页，每页 CHUNK_PAGE_SIZE 条；page 从 0 开始"""
        page_size = settings.CHUNK_PAGE_SIZE
        result = await self.db.execute(
            select(Chunk)
            .where(Chunk.file_id == file_id, Chunk.user_id == self.user_id)
            .order_by(Chunk.index.asc())
            .offset(max(page, 0) * page_size)
            .limit(page_size)
        )
        items = []
        for chunk in result.scalars().all():
            metadata = chunk.chunk_metadata or {}
            items.append({
                "id": chunk.id,
                "index": chunk.index,
                "type": chunk.type,
                "text": chunk.text,
                "metadata": metadata,
                "page_number": metadata.get("page_number"),
                "created_at": chunk.created_at,
                "updated_at": chunk.updated_at,
            })
        return items

    async def text_for_file(self, file_id: int) -> List[Dict[str, Any]]:
        """[{id, text}]，文本为空的分块不返回"""
        result = await self.db.execute(
            select(Chunk.id, Chunk.text, Chunk.type, Chunk.chunk_metadata)
            .where(Chunk.file_id == file_id, Chunk.user_id == self.user_id)
            .order_by(Chunk.index.asc())
        )
        items = [
            {"id": row.id, "text": map_chunk_text(row.text, row.type, row.chunk_metadata)}
            for row in result.all()
        ]
        return [item for item in items if item["text"]]

    async def count_by_files(self, file_ids: Sequence[int]) -> List[Dict[str, int]]:
        """[{id: file_id, count}]；空列表直接返回，不查库"""
        if not file_ids:
            return []
        result = await self.db.execute(
            select(Chunk.file_id, func.count(Chunk.id))
            .where(Chunk.file_id.in_(list(file_ids)), Chunk.user_id == self.user_id)
            .group_by(Chunk.file_id)
        )
        return [{"id": file_id, "count": count} for file_id, count in result.all()]

    async def count_by_file(self, file_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Chunk.id)).where(Chunk.file_id == file_id, Chunk.user_id == self.user_id)
        )
        return result.scalar() or 0

    async def semantic_search(
        self, embedding: List[float], file_ids: Optional[Sequence[int]] = None
    ) -> List[Dict[str, Any]]:
        """通用语义检索，前 SEMANTIC_SEARCH_LIMIT 条。

        file_ids 为 None 不过滤；给出空列表时没有可检索的文件，直接返回空。
        """
        if file_ids is not None and len(file_ids) == 0:
            return []
        return await get_vector_client().search(
            self.db,
            embedding,
            user_id=self.user_id,
            file_ids=file_ids,
            limit=settings.SEMANTIC_SEARCH_LIMIT,
        )

    async def semantic_search_for_chat(
        self, embedding: List[float], file_ids: Optional[Sequence[int]] = None
    ) -> List[Dict[str, Any]]:
        """对话上下文检索，前 CHAT_SEARCH_LIMIT 条，返回还原后的文本。空列表等同于不过滤。"""
        rows = await get_vector_client().search(
            self.db,
            embedding,
            user_id=self.user_id,
            file_ids=file_ids or None,
            limit=settings.CHAT_SEARCH_LIMIT,
            with_file=True,
        )
        return [
            {
                "id": row["id"],
                "index": row["index"],
                "file_id": row["file_id"],
                "filename": row["filename"],
                "similarity": row["similarity"],
                "text": map_chunk_text(row["text"], row["type"], row["metadata"]),
            }
            for row in rows
        ]
