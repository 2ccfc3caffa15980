"""
文档解析：从文件字节提取元素（正文 / 表格），再切分为分块
"""
import html
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ragpipe.core.config import settings
from ragpipe.models.chunk import ChunkType

logger = logging.getLogger(__name__)

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_KIND_BY_MIME = {
    MIME_PDF: "pdf",
    MIME_DOCX: "docx",
    MIME_PPTX: "pptx",
    MIME_XLSX: "xlsx",
}

_KIND_BY_EXT = {
    "pdf": "pdf",
    "docx": "docx",
    "pptx": "pptx",
    "xlsx": "xlsx",
    "txt": "text",
    "md": "text",
    "markdown": "text",
    "csv": "text",
    "json": "text",
    "html": "text",
    "htm": "text",
}

_SENTENCE_PATTERN = re.compile(r"([。！？\n]+|[.!?\n]+)")


@dataclass
class Element:
    """解析出的文档元素"""
    type: str
    text: str
    page_number: Optional[int] = None
    text_as_html: Optional[str] = None


@dataclass
class ChunkDraft:
    """待入库的分块"""
    index: int
    type: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def detect_kind(file_type: str, filename: str = "") -> Optional[str]:
    """由 MIME（优先）或扩展名判断解析方式"""
    ft = (file_type or "").lower()
    if ft in _KIND_BY_MIME:
        return _KIND_BY_MIME[ft]
    if ft.startswith("text/"):
        return "text"
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _KIND_BY_EXT.get(ext)


def rows_to_html(rows: List[List[Any]]) -> str:
    """二维单元格渲染为 HTML 表格"""
    body = "".join(
        "<tr>" + "".join(f"<td>{html.escape(str(cell) if cell is not None else '')}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return f"<table>{body}</table>"


def _rows_to_text(rows: List[List[Any]]) -> str:
    return "\n".join(
        " | ".join(str(cell).strip() for cell in row if cell is not None and str(cell).strip())
        for row in rows
    ).strip()


def _table_element(rows: List[List[Any]], page_number: Optional[int] = None) -> Optional[Element]:
    rows = [row for row in rows if any(cell is not None and str(cell).strip() for cell in row)]
    if not rows:
        return None
    return Element(ChunkType.TABLE, _rows_to_text(rows), page_number, rows_to_html(rows))


def _extract_pdf(content: bytes) -> List[Element]:
    from PyPDF2 import PdfReader
    reader = PdfReader(io.BytesIO(content))
    elements = []
    for page_number, page in enumerate(reader.pages, start=1):
        text = (page.extract_text() or "").strip()
        if text:
            elements.append(Element(ChunkType.TEXT, text, page_number))
    return elements


def _extract_docx(content: bytes) -> List[Element]:
    from docx import Document
    doc = Document(io.BytesIO(content))
    elements = []
    paragraphs = [p.text.strip() for p in doc.paragraphs if p.text.strip()]
    if paragraphs:
        elements.append(Element(ChunkType.TEXT, "\n".join(paragraphs)))
    for table in doc.tables:
        element = _table_element([[cell.text.strip() for cell in row.cells] for row in table.rows])
        if element:
            elements.append(element)
    return elements


def _extract_pptx(content: bytes) -> List[Element]:
    from pptx import Presentation
    prs = Presentation(io.BytesIO(content))
    elements = []
    for slide_number, slide in enumerate(prs.slides, start=1):
        parts = []
        for shape in slide.shapes:
            if shape.has_table:
                element = _table_element(
                    [[cell.text.strip() for cell in row.cells] for row in shape.table.rows],
                    slide_number,
                )
                if element:
                    elements.append(element)
            elif getattr(shape, "text", "") and shape.text.strip():
                parts.append(shape.text.strip())
        if parts:
            elements.append(Element(ChunkType.TEXT, "\n".join(parts), slide_number))
    return elements


def _extract_xlsx(content: bytes) -> List[Element]:
    from openpyxl import load_workbook
    wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    elements = []
    try:
        for sheet_number, name in enumerate(wb.sheetnames, start=1):
            rows = [list(row) for row in wb[name].iter_rows(values_only=True)]
            element = _table_element(rows, sheet_number)
            if element:
                elements.append(element)
    finally:
        wb.close()
    return elements


def extract_elements(content: bytes, file_type: str, filename: str = "") -> List[Element]:
    """按文件类型提取元素；不支持的类型抛 ValueError"""
    kind = detect_kind(file_type, filename)
    if kind == "pdf":
        return _extract_pdf(content)
    if kind == "docx":
        return _extract_docx(content)
    if kind == "pptx":
        return _extract_pptx(content)
    if kind == "xlsx":
        return _extract_xlsx(content)
    if kind == "text":
        text = content.decode("utf-8", errors="ignore").strip()
        return [Element(ChunkType.TEXT, text)] if text else []
    raise ValueError(f"不支持解析的文件类型: {file_type or filename}")


def _split_sentences(text: str) -> List[str]:
    """按中英文句末标点与换行切句，标点保留在句尾"""
    sentences = []
    current = ""
    for part in _SENTENCE_PATTERN.split(text):
        if _SENTENCE_PATTERN.fullmatch(part):
            if current.strip():
                sentences.append(current.strip() + part.strip())
            current = ""
        else:
            current += part
    if current.strip():
        sentences.append(current.strip())
    return sentences


def chunk_text(text: str, chunk_size: int = 500, overlap: int = 50, max_expand_ratio: float = 1.3) -> List[str]:
    """按句子切分并合并，不截断句子。

    块长度以 chunk_size 为目标，为保持句子完整允许扩展到 chunk_size * max_expand_ratio；
    新块以上一块末尾不超过 overlap 字符的完整句子开头。
    """
    if not text or not text.strip() or chunk_size <= 0:
        return []
    sentences = _split_sentences(text)
    if not sentences:
        return []

    max_chunk_size = int(chunk_size * max_expand_ratio)
    chunks: List[str] = []
    current: List[str] = []
    current_length = 0

    for sentence in sentences:
        # 超长句子按逗号、分号再切
        pieces = [sentence]
        if len(sentence) > max_chunk_size:
            pieces = [s.strip() for s in re.split(r"[，；,;]+", sentence) if s.strip()]

        for piece in pieces:
            if len(piece) > max_chunk_size:
                # 子句仍然过长，按固定长度硬切
                if current:
                    chunks.append(" ".join(current))
                    current, current_length = [], 0
                chunks.extend(piece[i : i + chunk_size] for i in range(0, len(piece), chunk_size))
                continue

            new_length = current_length + len(piece) + (1 if current else 0)
            if new_length <= max_chunk_size:
                current.append(piece)
                current_length = new_length
                continue

            overlap_sentences: List[str] = []
            overlap_length = 0
            if len(current) > 1:
                for sent in reversed(current):
                    if overlap_length + len(sent) > overlap:
                        break
                    overlap_sentences.insert(0, sent)
                    overlap_length += len(sent) + 1
            chunks.append(" ".join(current))
            current = overlap_sentences + [piece]
            current_length = sum(len(s) for s in current) + len(current) - 1

    if current:
        chunks.append(" ".join(current))
    return chunks


def build_chunks(
    elements: List[Element],
    chunk_size: Optional[int] = None,
    overlap: Optional[int] = None,
    max_expand_ratio: Optional[float] = None,
) -> List[ChunkDraft]:
    """元素转为有序分块。表格整体作为一个 Table 分块，正文按句切分。"""
    chunk_size = chunk_size or settings.CHUNK_SIZE
    overlap = settings.CHUNK_OVERLAP if overlap is None else overlap
    max_expand_ratio = max_expand_ratio or settings.CHUNK_MAX_EXPAND_RATIO

    drafts: List[ChunkDraft] = []
    for element in elements:
        metadata: Dict[str, Any] = {}
        if element.page_number is not None:
            metadata["page_number"] = element.page_number
        if element.type == ChunkType.TABLE:
            drafts.append(ChunkDraft(
                index=len(drafts),
                type=ChunkType.TABLE,
                text=element.text,
                metadata={**metadata, "text_as_html": element.text_as_html},
            ))
            continue
        for piece in chunk_text(element.text, chunk_size, overlap, max_expand_ratio):
            drafts.append(ChunkDraft(index=len(drafts), type=ChunkType.TEXT, text=piece, metadata=dict(metadata)))
    return drafts
