"""
Batch Writer
Persists drafts in fixed-size chunks. A chunk either lands whole or is
recorded as errored against every source row it covers.
"""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from settings import IMPORT_CHUNK_SIZE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportProgressEvent:
    rows_done: int
    rows_total: int
    errors_so_far: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "rows_done": self.rows_done,
            "rows_total": self.rows_total,
            "errors_so_far": self.errors_so_far,
        }


ProgressCallback = Callable[[ImportProgressEvent], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class RowError:
    row: int  # 1-based data row number
    message: str
    field: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "field": self.field, "message": self.message}


@dataclass
class Draft:
    """A record ready for insert plus the source rows it was built from."""
    values: Dict[str, Any]
    source_rows: Tuple[int, ...]


@dataclass
class WriteReport:
    written: int = 0
    failed: int = 0
    written_drafts: List[Draft] = field(default_factory=list)
    failed_drafts: List[Draft] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)


class ProgressCounter:
    """Cumulative progress across every write stage of one run."""

    def __init__(self, rows_total: int, callback: Optional[ProgressCallback] = None):
        self.rows_total = rows_total
        self.rows_done = 0
        self.errors: List[RowError] = []
        self.errored_rows: Set[int] = set()
        self._callback = callback

    def add_total(self, count: int) -> None:
        self.rows_total += count

    @property
    def errors_so_far(self) -> int:
        return len(self.errored_rows)

    def record_errors(self, errors: Sequence[RowError]) -> None:
        for err in errors:
            self.errors.append(err)
            self.errored_rows.add(err.row)

    def snapshot(self) -> ImportProgressEvent:
        return ImportProgressEvent(
            rows_done=min(self.rows_done, self.rows_total),
            rows_total=self.rows_total,
            errors_so_far=self.errors_so_far,
        )

    async def advance(self, count: int) -> None:
        self.rows_done += count
        await self.emit()

    async def emit(self) -> None:
        if self._callback is None:
            return
        event = self.snapshot()
        try:
            result = self._callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # A broken listener must not break the import
            logger.exception("Progress callback failed at %s", event.as_dict())


def chunked(items: Sequence[Any], size: int) -> Iterator[Tuple[int, Sequence[Any]]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield start, items[start:start + size]


def _error_message(exc: Exception) -> str:
    orig = getattr(exc, "orig", None)
    text = str(orig) if orig is not None else str(exc)
    return text.strip().splitlines()[0] if text.strip() else exc.__class__.__name__


async def write_in_chunks(
    drafts: Sequence[Draft],
    insert: Callable[[List[Dict[str, Any]]], Awaitable[Any]],
    *,
    label: str,
    progress: ProgressCounter,
    chunk_size: Optional[int] = None,
    on_chunk_error: Optional[Callable[[Sequence[Draft], Exception], Awaitable[None]]] = None,
) -> WriteReport:
    """Insert drafts chunk by chunk, strictly in order.

    Any exception raised while writing a chunk is caught here and attributed
    to every source row of that chunk; later chunks still run.
    """
    size = chunk_size or IMPORT_CHUNK_SIZE
    report = WriteReport()

    for start, chunk in chunked(drafts, size):
        try:
            await insert([dict(d.values) for d in chunk])
        except Exception as exc:
            message = f"{label}: {_error_message(exc)}"
            logger.warning(
                "%s chunk %d-%d failed: %s", label, start + 1, start + len(chunk), message
            )
            rows = sorted({r for d in chunk for r in d.source_rows})
            chunk_errors = [RowError(row=r, message=message) for r in rows]
            report.errors.extend(chunk_errors)
            report.failed += len(chunk)
            report.failed_drafts.extend(chunk)
            progress.record_errors(chunk_errors)
            if on_chunk_error is not None:
                try:
                    await on_chunk_error(chunk, exc)
                except Exception:
                    logger.exception("%s chunk recovery failed", label)
        else:
            report.written += len(chunk)
            report.written_drafts.extend(chunk)
        await progress.advance(len(chunk))

    return report
