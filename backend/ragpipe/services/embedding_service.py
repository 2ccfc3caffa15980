"""
嵌入服务：调用 OpenAI 兼容的 /embeddings 接口获取文本向量
"""
import logging
import httpx
from typing import List
from ragpipe.core.config import settings

logger = logging.getLogger(__name__)


async def _request_embeddings(client: httpx.AsyncClient, inputs: List[str]) -> List[List[float]]:
    """单批请求，按返回的 index 还原顺序"""
    url = f"{settings.OPENAI_BASE_URL.rstrip('/')}/embeddings"
    headers = {
        "Authorization": f"Bearer {settings.OPENAI_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {"model": settings.EMBEDDING_MODEL, "input": inputs, "dimensions": settings.EMBEDDING_DIM}
    try:
        response = await client.post(url, headers=headers, json=payload)
        response.raise_for_status()
        result = response.json()
    except httpx.HTTPStatusError as e:
        logger.error("Embedding API HTTP 错误: %s - %s", e.response.status_code, e.response.text)
        raise ValueError(f"Embedding API 调用失败: {e.response.status_code} - {e.response.text}")
    except httpx.HTTPError as e:
        logger.error("Embedding API 调用异常: %s", e)
        raise ValueError(f"Embedding API 调用失败: {e}")
    data = sorted(result.get("data", []), key=lambda d: d.get("index", 0))
    if len(data) != len(inputs):
        raise ValueError(f"向量数量 {len(data)} 与输入数量 {len(inputs)} 不匹配")
    return [d["embedding"] for d in data]


async def get_embeddings(texts: List[str]) -> List[List[float]]:
    """批量文本获取向量，每批 EMBEDDING_BATCH_SIZE 条。"""
    if not texts:
        return []
    inputs = [t.strip()[:8192] if t and t.strip() else " " for t in texts]
    batch_size = max(1, settings.EMBEDDING_BATCH_SIZE)
    all_embeddings: List[List[float]] = []
    async with httpx.AsyncClient(timeout=settings.EMBEDDING_TIMEOUT) as client:
        for i in range(0, len(inputs), batch_size):
            batch = inputs[i : i + batch_size]
            all_embeddings.extend(await _request_embeddings(client, batch))
    return all_embeddings


async def get_embedding(text: str) -> List[float]:
    """单条文本获取向量（检索时对 query 向量化）。"""
    if not text or not text.strip():
        raise ValueError("query 不能为空")
    embeddings = await get_embeddings([text])
    return embeddings[0]
