import pytest

from ragpipe.models.chunk import ChunkType
from ragpipe.services.document_service import (
    MIME_PDF,
    Element,
    build_chunks,
    chunk_text,
    detect_kind,
    extract_elements,
    rows_to_html,
)


@pytest.mark.unit
class TestDetectKind:

    def test_mime_wins_over_extension(self):
        assert detect_kind(MIME_PDF, "notes.txt") == "pdf"

    def test_text_mime(self):
        assert detect_kind("text/markdown", "readme") == "text"

    def test_extension_fallback(self):
        assert detect_kind("application/octet-stream", "sheet.XLSX") == "xlsx"

    def test_unknown(self):
        assert detect_kind("image/png", "photo.png") is None


@pytest.mark.unit
class TestChunkText:

    def test_empty_text(self):
        assert chunk_text("   ") == []

    def test_short_text_is_one_chunk(self):
        assert chunk_text("第一句。第二句。", chunk_size=100) == ["第一句。 第二句。"]

    def test_sentences_are_not_split(self):
        text = "".join(f"这是第{i}个句子，内容比较长一些。" for i in range(30))
        chunks = chunk_text(text, chunk_size=60, overlap=0, max_expand_ratio=1.3)
        assert len(chunks) > 1
        for chunk in chunks:
            assert len(chunk) <= 78
            for sentence in chunk.split(" "):
                assert sentence.endswith("。")

    def test_overlap_repeats_trailing_sentence(self):
        text = "Alpha one. Beta two. Gamma three. Delta four. Epsilon five."
        chunks = chunk_text(text, chunk_size=25, overlap=12, max_expand_ratio=1.0)
        assert len(chunks) >= 2
        last_of_first = chunks[0].split(" ")[-2:]
        assert chunks[1].startswith(" ".join(last_of_first)) or chunks[1].startswith(last_of_first[-1])

    def test_overlong_sentence_is_hard_split(self):
        chunks = chunk_text("x" * 250, chunk_size=100, overlap=0, max_expand_ratio=1.0)
        assert chunks == ["x" * 100, "x" * 100, "x" * 50]


@pytest.mark.unit
class TestBuildChunks:

    def test_indexes_are_sequential_and_tables_kept_whole(self):
        elements = [
            Element(ChunkType.TEXT, "第一页。", page_number=1),
            Element(ChunkType.TABLE, "a | b", page_number=2, text_as_html="<table></table>"),
            Element(ChunkType.TEXT, "第三页。", page_number=3),
        ]

        drafts = build_chunks(elements, chunk_size=100, overlap=0, max_expand_ratio=1.0)

        assert [d.index for d in drafts] == [0, 1, 2]
        assert [d.type for d in drafts] == [ChunkType.TEXT, ChunkType.TABLE, ChunkType.TEXT]
        assert drafts[1].metadata == {"page_number": 2, "text_as_html": "<table></table>"}
        assert drafts[2].metadata == {"page_number": 3}


@pytest.mark.unit
class TestExtractElements:

    def test_plain_text(self):
        elements = extract_elements("你好，世界。".encode("utf-8"), "text/plain", "a.txt")
        assert [(e.type, e.text) for e in elements] == [(ChunkType.TEXT, "你好，世界。")]

    def test_empty_text_has_no_elements(self):
        assert extract_elements(b"  \n ", "text/plain", "a.txt") == []

    def test_unsupported_type_raises(self):
        with pytest.raises(ValueError):
            extract_elements(b"\x89PNG", "image/png", "a.png")

    def test_rows_to_html_escapes_cells(self):
        assert rows_to_html([["<b>", None]]) == "<table><tr><td>&lt;b&gt;</td><td></td></tr></table>"
