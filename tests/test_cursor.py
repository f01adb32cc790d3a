from __future__ import annotations

import pytest

from treemirror.cursor import StreamFetchError, TargetCursor

from conftest import RecordingStream, mk_entry


def test_advance_walks_stream_then_latches_exhausted() -> None:
    stream = RecordingStream([mk_entry("a"), mk_entry("b")])
    cursor = TargetCursor(stream)
    assert cursor.current is None

    assert cursor.advance() == mk_entry("a")
    assert cursor.advance() == mk_entry("b")
    assert cursor.current == mk_entry("b")
    assert cursor.advance() is None
    assert cursor.exhausted
    assert cursor.fetched == 2

    pulls = stream.pulls
    assert cursor.advance() is None
    assert stream.pulls == pulls


def test_fetch_error_propagates_without_moving() -> None:
    stream = RecordingStream([mk_entry("a"), mk_entry("b")], fail_at=1)
    cursor = TargetCursor(stream)
    first = cursor.advance()

    with pytest.raises(StreamFetchError, match="record 1"):
        cursor.advance()

    assert cursor.current is first
    assert cursor.exhausted is False
    assert cursor.fetched == 1


def test_other_errors_are_not_wrapped() -> None:
    def broken():
        yield mk_entry("a")
        raise KeyError("boom")

    cursor = TargetCursor(broken())
    cursor.advance()
    with pytest.raises(KeyError):
        cursor.advance()
