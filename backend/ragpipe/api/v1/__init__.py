"""
API v1 路由
"""
from fastapi import APIRouter
from ragpipe.api.v1 import files, chunks, knowledge_bases

api_router = APIRouter()

# 注册子路由
api_router.include_router(files.router, prefix="/files", tags=["文件"])
api_router.include_router(chunks.router, prefix="/chunks", tags=["分块与检索"])
api_router.include_router(knowledge_bases.router, prefix="/knowledge-bases", tags=["知识库"])
