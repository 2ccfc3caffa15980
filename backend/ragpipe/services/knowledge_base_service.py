"""
知识库服务：创建知识库、列表（含文件数）、库内文件
"""
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ragpipe.models.file import File
from ragpipe.models.knowledge_base import KnowledgeBase, KnowledgeBaseFile
from ragpipe.schemas.file import FileItem
from ragpipe.schemas.knowledge_base import (
    KnowledgeBaseCreate,
    KnowledgeBaseFileListResponse,
    KnowledgeBaseListResponse,
    KnowledgeBaseResponse,
)
from ragpipe.services.chunk_service import ChunkService


class KnowledgeBaseService:
    """知识库服务类"""

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    async def create_knowledge_base(self, kb_data: KnowledgeBaseCreate) -> KnowledgeBaseResponse:
        """创建知识库"""
        kb = KnowledgeBase(
            user_id=self.user_id,
            name=kb_data.name,
            description=kb_data.description
        )
        self.db.add(kb)
        await self.db.commit()
        await self.db.refresh(kb)
        return KnowledgeBaseResponse.model_validate(kb)

    async def get_knowledge_base(self, kb_id: int) -> Optional[KnowledgeBase]:
        """获取知识库"""
        return await self.db.scalar(
            select(KnowledgeBase).where(
                KnowledgeBase.id == kb_id,
                KnowledgeBase.user_id == self.user_id
            )
        )

    async def get_knowledge_bases(self, page: int = 1, page_size: int = 20) -> KnowledgeBaseListResponse:
        """获取知识库列表"""
        offset = (page - 1) * page_size

        total = await self.db.scalar(
            select(func.count()).select_from(KnowledgeBase).where(KnowledgeBase.user_id == self.user_id)
        )
        file_count = (
            select(func.count(KnowledgeBaseFile.id))
            .where(KnowledgeBaseFile.knowledge_base_id == KnowledgeBase.id)
            .correlate(KnowledgeBase)
            .scalar_subquery()
            .label("file_count")
        )
        result = await self.db.execute(
            select(KnowledgeBase, file_count)
            .where(KnowledgeBase.user_id == self.user_id)
            .order_by(KnowledgeBase.created_at.desc(), KnowledgeBase.id.desc())
            .offset(offset)
            .limit(page_size)
        )
        items = []
        for kb, count in result.all():
            item = KnowledgeBaseResponse.model_validate(kb)
            item.file_count = count or 0
            items.append(item)

        return KnowledgeBaseListResponse(
            knowledge_bases=items,
            total=total or 0,
            page=page,
            page_size=page_size
        )

    async def get_files_in_knowledge_base(
        self, kb_id: int, page: int = 1, page_size: int = 20
    ) -> KnowledgeBaseFileListResponse:
        """知识库内的文件列表（含分块数）"""
        if not await self.get_knowledge_base(kb_id):
            raise ValueError("知识库不存在")
        offset = (page - 1) * page_size
        total = await self.db.scalar(
            select(func.count()).select_from(KnowledgeBaseFile).where(KnowledgeBaseFile.knowledge_base_id == kb_id)
        )
        result = await self.db.execute(
            select(File)
            .join(KnowledgeBaseFile, KnowledgeBaseFile.file_id == File.id)
            .where(KnowledgeBaseFile.knowledge_base_id == kb_id, File.user_id == self.user_id)
            .order_by(KnowledgeBaseFile.created_at.desc(), KnowledgeBaseFile.id.desc())
            .offset(offset)
            .limit(page_size)
        )
        files = result.scalars().all()
        counts = await ChunkService(self.db, self.user_id).count_by_files([f.id for f in files])
        count_map = {c["id"]: c["count"] for c in counts}
        items = []
        for f in files:
            item = FileItem.model_validate(f)
            item.chunk_count = count_map.get(f.id, 0)
            items.append(item)
        return KnowledgeBaseFileListResponse(files=items, total=total or 0, page=page, page_size=page_size)
