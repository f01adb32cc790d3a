from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from .cursor import TargetCursor
from .models import Difference, DiffRecord, SourceQuery, TargetEntry

logger = logging.getLogger(__name__)


class QueryOrderError(ValueError):
    """A query arrived with a key smaller than the previous one."""


def join_key(root_key: str, suffix: str) -> str:
    if not root_key:
        return suffix
    return f"{root_key.rstrip('/')}/{suffix.lstrip('/')}"


def relative_suffix(root_key: str, key: str) -> str:
    if not root_key:
        return key
    prefix = f"{root_key.rstrip('/')}/"
    if not key.startswith(prefix):
        raise ValueError(f"Key {key!r} is outside root {root_key!r}")
    return key[len(prefix) :]


def key_position(key: str) -> tuple[str, ...]:
    """Sort position of ``key``: its path components.

    A directory key (trailing ``/``) shares its position with a file of the
    same name, and a directory's children follow it before any sibling whose
    name merely starts with the directory name (``x/``, ``x/a``, ``x.txt``).
    """
    return tuple(key.rstrip("/").split("/"))


def _classify_match(query: SourceQuery, target: TargetEntry) -> Difference:
    if query.is_regular and not target.is_regular:
        # Source entries are never directories.
        return Difference.TYPE
    if query.is_regular and target.is_regular:
        if query.size != target.size:
            return Difference.SIZE
        if query.mtime_ns > target.mtime_ns:
            return Difference.TIME_NEWER
        if query.mtime_ns < target.mtime_ns:
            return Difference.TIME_OLDER
    # Non-regular sources match any target entry with the same key.
    return Difference.NONE


class DifferenceSession:
    """Merge-join of sorted source queries against one sorted target stream.

    Callers must issue queries in non-decreasing ``key_position`` order and
    must not call ``classify`` concurrently. The target stream is consumed
    forward only and is never rewound; a session serves exactly one
    comparison root.
    """

    def __init__(
        self,
        target_stream: Iterable[TargetEntry],
        root_key: str = "",
        *,
        join: Callable[[str, str], str] = join_key,
        check_order: bool = True,
    ) -> None:
        self.cursor = TargetCursor(target_stream)
        self.root_key = root_key
        self.join = join
        self.check_order = check_order
        self._last_key: str | None = None
        self._last_position: tuple[str, ...] | None = None

    @property
    def exhausted(self) -> bool:
        return self.cursor.exhausted

    @property
    def current(self) -> TargetEntry | None:
        return self.cursor.current

    def classify(
        self, suffix: str, is_regular: bool, size: int, mtime_ns: int
    ) -> Difference:
        return self.classify_query(
            SourceQuery(
                root_key=self.root_key,
                suffix=suffix,
                is_regular=is_regular,
                size=size,
                mtime_ns=mtime_ns,
            )
        )

    def classify_query(self, query: SourceQuery) -> Difference:
        expected = self.join(query.root_key, query.suffix)
        position = key_position(expected)
        if self.check_order:
            if self._last_position is not None and position < self._last_position:
                raise QueryOrderError(
                    f"Query {expected!r} arrived after {self._last_key!r}"
                )
            self._last_key = expected
            self._last_position = position

        if self.cursor.exhausted:
            return Difference.ONLY_SOURCE

        current = self.cursor.current
        if current is None:
            current = self.cursor.advance()
        while current is not None:
            current_position = key_position(current.key)
            if position < current_position:
                return Difference.ONLY_SOURCE
            if position == current_position:
                return _classify_match(query, current)
            current = self.cursor.advance()
        return Difference.ONLY_SOURCE


def create_session(
    target_stream: Iterable[TargetEntry],
    root_key: str = "",
    *,
    check_order: bool = True,
) -> DifferenceSession:
    return DifferenceSession(target_stream, root_key, check_order=check_order)


def diff_entries(
    source_entries: Iterable[TargetEntry],
    session: DifferenceSession,
    source_root_key: str = "",
    *,
    include_identical: bool = True,
    progress_cb: Callable[[str, int], None] | None = None,
) -> list[DiffRecord]:
    records: list[DiffRecord] = []
    for seen, entry in enumerate(source_entries, start=1):
        relpath = relative_suffix(source_root_key, entry.key)
        if progress_cb is not None:
            progress_cb(relpath, seen)
        difference = session.classify(
            relpath, entry.is_regular, entry.size, entry.mtime_ns
        )
        if difference == Difference.NONE and not include_identical:
            continue
        records.append(
            DiffRecord(
                relpath=relpath,
                difference=difference,
                is_regular=entry.is_regular,
                source_size=entry.size,
                source_mtime_ns=entry.mtime_ns,
            )
        )
    logger.debug(
        "recorded %d diff records, read %d target entries",
        len(records),
        session.cursor.fetched,
    )
    return records


def count_differences(records: Iterable[DiffRecord]) -> dict[Difference, int]:
    counts = {difference: 0 for difference in Difference}
    for record in records:
        counts[record.difference] += 1
    return counts
