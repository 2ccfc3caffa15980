import pytest

from ragpipe.client.upload_tracker import UploadFileStore, UploadTracker, display_progress
from ragpipe.core.exceptions import InvalidStatusTransition
from ragpipe.schemas.upload import FileTasks, LocalFile, UploadFileItem, UploadStatus


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def _tracker(*names):
    store = UploadFileStore()
    store.add_files([UploadFileItem(id=name, file=LocalFile(name=name, type="text/plain", data=b"x")) for name in names])
    clock = FakeClock()
    return store, UploadTracker(store, clock=clock), clock


@pytest.mark.unit
class TestDisplayProgress:

    def test_raw_100_shows_99_9(self):
        assert display_progress(1000, 1000) == 99.9

    def test_rounds_to_one_decimal(self):
        assert display_progress(1, 3) == 33.3

    def test_never_reaches_100_before_success(self):
        total = 997
        shown = [display_progress(loaded, total) for loaded in range(0, total + 1, 7)] + [display_progress(total, total)]
        assert max(shown) == 99.9
        assert shown == sorted(shown)


@pytest.mark.unit
class TestUploadFileStore:

    def test_update_and_remove(self):
        store, _, _ = _tracker("a.txt", "b.txt")
        seen = []
        unsubscribe = store.subscribe(lambda items: seen.append([i.id for i in items]))

        store.update_file("a.txt", id="42")
        store.remove_file("b.txt")
        unsubscribe()
        store.clear()

        assert seen == [["42", "b.txt"], ["42"]]
        assert store.items == []

    def test_update_missing_returns_none(self):
        store, _, _ = _tracker()
        assert store.update_file("nope", status=UploadStatus.ERROR) is None


@pytest.mark.unit
class TestUploadTracker:

    def test_first_progress_event_starts_upload(self):
        store, tracker, clock = _tracker("a.txt")

        tracker.on_progress("a.txt", 0, 1000)
        assert store.get("a.txt").status == UploadStatus.UPLOADING

        clock.now += 2
        item = tracker.on_progress("a.txt", 500, 1000)
        assert item.upload_state.progress == 50.0
        assert item.upload_state.speed == 250.0
        assert item.upload_state.rest_time == 2.0

    def test_transport_completion_displays_99_9_until_success(self):
        store, tracker, clock = _tracker("a.txt")
        tracker.on_progress("a.txt", 0, 1000)
        clock.now += 1
        tracker.on_progress("a.txt", 1000, 1000)
        assert store.get("a.txt").upload_state.progress == 99.9

        tracker.finish_upload("a.txt", "files/1/a.txt")
        item = store.get("a.txt")
        assert item.status == UploadStatus.PROCESSING
        assert item.upload_state.progress == 99.9
        assert item.file_url == "files/1/a.txt"

        item = tracker.succeed("a.txt")
        assert item.status == UploadStatus.SUCCESS
        assert item.upload_state.progress == 100
        assert item.upload_state.rest_time == 0

    def test_dedup_skips_uploading(self):
        store, tracker, _ = _tracker("a.txt")
        seen = []
        store.subscribe(lambda items: seen.append(items[0].status))

        item = tracker.mark_deduplicated("a.txt", "files/1/a.txt")

        assert item.status == UploadStatus.PROCESSING
        assert item.upload_state.progress == 100
        assert item.upload_state.rest_time == 0
        assert UploadStatus.UPLOADING not in seen

    def test_tasks_snapshot_and_id_swap(self):
        store, tracker, _ = _tracker("a.txt")
        tracker.mark_deduplicated("a.txt", "files/1/a.txt")
        tracker.assign_id("a.txt", "7")
        tracker.update_tasks("7", FileTasks(chunk_count=3, finish_embedding=True))

        item = store.get("7")
        assert item.tasks.chunk_count == 3
        assert store.get("a.txt") is None

    @pytest.mark.parametrize(
        "setup, target",
        [
            ([], "succeed"),
            (["begin_upload"], "succeed"),
            (["mark_deduplicated", "succeed"], "fail"),
        ],
    )
    def test_illegal_transitions(self, setup, target):
        _, tracker, _ = _tracker("a.txt")
        for step in setup:
            if step == "mark_deduplicated":
                tracker.mark_deduplicated("a.txt", "files/1/a.txt")
            else:
                getattr(tracker, step)("a.txt")

        with pytest.raises(InvalidStatusTransition):
            if target == "fail":
                tracker.fail("a.txt", "boom")
            else:
                getattr(tracker, target)("a.txt")

    def test_error_is_terminal_until_reset(self):
        store, tracker, _ = _tracker("a.txt")
        tracker.begin_upload("a.txt")
        tracker.fail("a.txt", "上传失败")
        assert store.get("a.txt").error == "上传失败"
        with pytest.raises(InvalidStatusTransition):
            tracker.begin_upload("a.txt")

        item = tracker.reset("a.txt")
        assert item.status == UploadStatus.PENDING
        assert item.error is None

    def test_events_for_removed_item_are_ignored(self):
        store, tracker, _ = _tracker("a.txt")
        store.remove_file("a.txt")
        assert tracker.on_progress("a.txt", 10, 100) is None
        assert tracker.fail("a.txt", "late") is None
