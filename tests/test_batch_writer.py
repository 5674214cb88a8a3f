import pytest

from services.batch_writer import Draft, ImportProgressEvent, ProgressCounter, chunked, write_in_chunks


def _drafts(n):
    return [Draft(values={"n": i}, source_rows=(i + 1,)) for i in range(n)]


def test_chunked_splits_in_order():
    assert [(start, list(chunk)) for start, chunk in chunked([1, 2, 3, 4, 5], 2)] == [
        (0, [1, 2]), (2, [3, 4]), (4, [5]),
    ]
    with pytest.raises(ValueError):
        list(chunked([1], 0))


async def test_failing_chunk_is_attributed_to_every_row_in_it():
    written = []

    async def insert(rows):
        if any(r["n"] == 3 for r in rows):
            raise RuntimeError("value too long for column")
        written.extend(r["n"] for r in rows)

    events = []
    progress = ProgressCounter(5, events.append)
    report = await write_in_chunks(_drafts(5), insert, label="Orders", progress=progress, chunk_size=2)

    assert written == [0, 1, 4]
    assert report.written == 3
    assert report.failed == 2
    assert [e.row for e in report.errors] == [3, 4]
    assert report.errors[0].message == "Orders: value too long for column"
    assert events == [
        ImportProgressEvent(2, 5, 0),
        ImportProgressEvent(4, 5, 2),
        ImportProgressEvent(5, 5, 2),
    ]


async def test_multi_row_drafts_attribute_all_source_rows():
    async def insert(rows):
        raise RuntimeError("boom")

    drafts = [Draft(values={}, source_rows=(1, 2, 3)), Draft(values={}, source_rows=(4,))]
    progress = ProgressCounter(2)
    report = await write_in_chunks(drafts, insert, label="Orders", progress=progress, chunk_size=50)

    assert sorted(e.row for e in report.errors) == [1, 2, 3, 4]
    assert progress.errors_so_far == 4


async def test_broken_progress_listener_does_not_stop_writes():
    async def insert(rows):
        return len(rows)

    def listener(event):
        raise ValueError("listener blew up")

    progress = ProgressCounter(3, listener)
    report = await write_in_chunks(_drafts(3), insert, label="Customers", progress=progress, chunk_size=1)
    assert report.written == 3
    assert progress.rows_done == 3


async def test_async_listener_is_awaited():
    seen = []

    async def listener(event):
        seen.append(event.as_dict())

    async def insert(rows):
        return len(rows)

    progress = ProgressCounter(1, listener)
    await write_in_chunks(_drafts(1), insert, label="Customers", progress=progress)
    assert seen == [{"rows_done": 1, "rows_total": 1, "errors_so_far": 0}]
