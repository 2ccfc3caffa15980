from unittest.mock import AsyncMock, MagicMock

import pytest

from ragpipe.models.chunk import ChunkType
from ragpipe.services.chunk_service import TABLE_HTML_LABEL, ChunkService, map_chunk_text

from conftest import OTHER_USER_ID, USER_ID


@pytest.mark.unit
class TestMapChunkText:

    def test_text_chunk_is_returned_as_is(self):
        assert map_chunk_text("hello", ChunkType.TEXT, {"text_as_html": "<p>x</p>"}) == "hello"

    def test_table_chunk_appends_html(self):
        html = "<table><tr><td>a</td></tr></table>"
        result = map_chunk_text("a", ChunkType.TABLE, {"text_as_html": html})
        assert result == f"a\n\n{TABLE_HTML_LABEL}\n{html}\n"
        assert result == "a\n\ncontent in Table html is below:\n<table><tr><td>a</td></tr></table>\n"

    def test_table_chunk_without_html(self):
        assert map_chunk_text("a", ChunkType.TABLE, {}) == f"a\n\n{TABLE_HTML_LABEL}\n\n"
        assert "None" not in map_chunk_text("a", ChunkType.TABLE, None)


@pytest.mark.unit
class TestChunkStore:

    async def test_bulk_create_returns_ids_in_input_order(self, db, make_file):
        file = await make_file()
        service = ChunkService(db, USER_ID)
        ids = await service.bulk_create([
            {"file_id": file.id, "index": i, "type": ChunkType.TEXT, "text": f"t{i}", "chunk_metadata": {}}
            for i in (2, 0, 1)
        ])
        assert len(ids) == 3 and len(set(ids)) == 3
        rows = await service.list_by_file(file.id)
        by_index = {row["index"]: row["id"] for row in rows}
        assert ids == [by_index[2], by_index[0], by_index[1]]

    async def test_bulk_create_empty_list(self, db):
        assert await ChunkService(db, USER_ID).bulk_create([]) == []

    async def test_create_single_chunk(self, db, make_file):
        file = await make_file()
        chunk = await ChunkService(db, USER_ID).create(
            {"file_id": file.id, "index": 0, "type": ChunkType.TEXT, "text": "only", "chunk_metadata": {}}
        )
        assert chunk.id is not None
        assert chunk.user_id == USER_ID

    async def test_pagination_partitions_chunks_in_index_order(self, db, make_file, make_chunks):
        file = await make_file()
        await make_chunks(file, n=45)
        service = ChunkService(db, USER_ID)

        pages = [await service.list_by_file(file.id, page) for page in range(4)]

        assert [len(p) for p in pages] == [20, 20, 5, 0]
        indexes = [row["index"] for page in pages for row in page]
        assert indexes == list(range(45))

    async def test_list_surfaces_page_number_and_hides_owner(self, db, make_file, make_chunks):
        file = await make_file()
        await make_chunks(file, texts=["p1"], metadata={"page_number": 3})
        rows = await ChunkService(db, USER_ID).list_by_file(file.id)
        assert rows[0]["page_number"] == 3
        assert "file_id" not in rows[0]
        assert "user_id" not in rows[0]

    async def test_text_for_file_applies_table_rule_and_drops_empty(self, db, make_file, make_chunks):
        file = await make_file()
        service = ChunkService(db, USER_ID)
        await service.bulk_create([
            {"file_id": file.id, "index": 0, "type": ChunkType.TEXT, "text": "intro", "chunk_metadata": {}},
            {"file_id": file.id, "index": 1, "type": ChunkType.TEXT, "text": "", "chunk_metadata": {}},
            {
                "file_id": file.id,
                "index": 2,
                "type": ChunkType.TABLE,
                "text": "a | b",
                "chunk_metadata": {"text_as_html": "<table></table>"},
            },
        ])

        texts = await service.text_for_file(file.id)

        assert [t["text"] for t in texts] == [
            "intro",
            "a | b\n\ncontent in Table html is below:\n<table></table>\n",
        ]

    async def test_count_by_files(self, db, make_file, make_chunks):
        a = await make_file("a.txt")
        b = await make_file("b.txt")
        empty = await make_file("c.txt")
        await make_chunks(a, n=3)
        await make_chunks(b, n=5)
        service = ChunkService(db, USER_ID)

        counts = await service.count_by_files([a.id, b.id, empty.id])

        assert sorted(counts, key=lambda c: c["id"]) == [{"id": a.id, "count": 3}, {"id": b.id, "count": 5}]
        assert await service.count_by_file(b.id) == 5
        assert await service.count_by_file(empty.id) == 0

    async def test_counts_are_scoped_to_owner(self, db, make_file, make_chunks):
        theirs = await make_file("theirs.txt", user_id=OTHER_USER_ID)
        await make_chunks(theirs, n=2, user_id=OTHER_USER_ID)

        mine = ChunkService(db, USER_ID)
        assert await mine.count_by_files([theirs.id]) == []
        assert await mine.count_by_file(theirs.id) == 0
        assert await ChunkService(db, OTHER_USER_ID).count_by_files([theirs.id]) == [{"id": theirs.id, "count": 2}]

    async def test_count_by_files_empty_input_does_not_query(self):
        session = MagicMock()
        session.execute = AsyncMock()
        assert await ChunkService(session, USER_ID).count_by_files([]) == []
        session.execute.assert_not_called()

    async def test_delete_chunk_is_scoped_to_owner(self, db, make_file, make_chunks):
        file = await make_file()
        ids = await make_chunks(file, n=2, vectors=[[1.0, 0.0], [0.0, 1.0]])

        await ChunkService(db, OTHER_USER_ID).delete_chunk(ids[0])
        assert await ChunkService(db, USER_ID).count_by_file(file.id) == 2

        await ChunkService(db, USER_ID).delete_chunk(ids[0])
        rows = await ChunkService(db, USER_ID).list_by_file(file.id)
        assert [r["id"] for r in rows] == [ids[1]]

    async def test_delete_missing_chunk_is_noop(self, db):
        await ChunkService(db, USER_ID).delete_chunk(999999)

    async def test_delete_by_file_removes_chunks(self, db, make_file, make_chunks):
        file = await make_file()
        other = await make_file("other.txt")
        await make_chunks(file, n=4, vectors=[[1.0, 0.0]] * 4)
        await make_chunks(other, n=2)
        service = ChunkService(db, USER_ID)

        await service.delete_by_file(file.id)

        assert await service.count_by_file(file.id) == 0
        assert await service.count_by_file(other.id) == 2
