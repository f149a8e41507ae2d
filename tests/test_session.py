import asyncio
import os

from tcpdrop.errors import (
    ConnectionLost,
    FileOpenFailure,
    MalformedHeader,
    ReadError,
)
from tcpdrop.files import FileSink
from tcpdrop.metrics import SessionMetrics
from tcpdrop.protocol import FileDescriptor, encode_header, encode_sentinel
from tcpdrop.session import (
    ReceiverSession,
    SenderSession,
    SessionState,
    SessionTable,
)
from tests.helpers import FakeWriter, ScriptedReader, split_every


def receive(tmp_path, reader, chunk_size=1024, idle_timeout=None):
    """Run a ReceiverSession over reader; returns (record, events, writer)."""
    events = []
    writer = FakeWriter()

    async def scenario():
        table = SessionTable()
        record = table.open(role="receiver", peer="test")
        session = ReceiverSession(
            record.session_id,
            table,
            reader() if callable(reader) else reader,
            writer,
            FileSink(str(tmp_path)),
            SessionMetrics(record.session_id),
            chunk_size=chunk_size,
            idle_timeout=idle_timeout,
            on_file_complete=lambda sid, d, loc: events.append(("complete", d.path, d.size)),
            on_file_failed=lambda sid, d, exc: events.append(("failed", d.path, type(exc))),
            on_sentinel=lambda sid: events.append(("sentinel",)),
        )
        return await session.run()

    record = asyncio.run(scenario())
    return record, events, writer


def frame(path, body):
    return encode_header(path, len(body)) + body


# ---------------------------------------------------------------------------
# ReceiverSession
# ---------------------------------------------------------------------------

def test_header_and_body_in_one_read(tmp_path):
    record, events, writer = receive(tmp_path, ScriptedReader([frame("a.txt", b"hello")]))

    assert record.state is SessionState.COMPLETE
    assert (tmp_path / "a.txt").read_bytes() == b"hello"
    assert events == [("complete", "a.txt", 5)]
    assert writer.closed


def test_leftover_body_bytes_are_counted_not_reread(tmp_path):
    # First read carries the header plus 3 of the 10 body bytes.
    reader = ScriptedReader([encode_header("a.txt", 10) + b"abc", b"defghij"])

    record, events, _ = receive(tmp_path, reader)

    assert (tmp_path / "a.txt").read_bytes() == b"abcdefghij"
    # header read, then only the 7 missing bytes, then the end-of-stream probe
    assert reader.requests == [1024, 7, 1024]
    assert record.files_done == 1


def test_whole_body_arrives_with_header(tmp_path):
    reader = ScriptedReader([frame("a.txt", b"0123456789")])
    receive(tmp_path, reader)
    assert (tmp_path / "a.txt").read_bytes() == b"0123456789"
    assert reader.requests == [1024, 1024]


def test_pipelined_frames_and_sentinel_in_one_read(tmp_path):
    data = frame("a.txt", b"first") + frame("sub/b.txt", b"second!") + encode_sentinel()

    record, events, _ = receive(tmp_path, ScriptedReader([data]))

    assert events == [
        ("complete", "a.txt", 5),
        ("complete", "sub/b.txt", 7),
        ("sentinel",),
    ]
    assert (tmp_path / "a.txt").read_bytes() == b"first"
    assert (tmp_path / "sub" / "b.txt").read_bytes() == b"second!"
    assert record.saw_sentinel
    assert record.files_done == 2
    assert record.state is SessionState.COMPLETE


def test_header_split_over_many_small_reads(tmp_path):
    data = frame("dir/c.bin", os.urandom(50)) + encode_sentinel()
    body = data[len(encode_header("dir/c.bin", 50)):][:50]

    record, events, _ = receive(tmp_path, ScriptedReader(split_every(data, 3)), chunk_size=3)

    assert record.state is SessionState.COMPLETE
    assert (tmp_path / "dir" / "c.bin").read_bytes() == body
    assert events[-1] == ("sentinel",)


def test_zero_length_file(tmp_path):
    record, events, _ = receive(tmp_path, ScriptedReader([encode_header("empty.txt", 0)]))

    assert record.state is SessionState.COMPLETE
    assert (tmp_path / "empty.txt").exists()
    assert (tmp_path / "empty.txt").stat().st_size == 0
    assert events == [("complete", "empty.txt", 0)]
    assert not record.saw_sentinel


def test_sentinel_only_opens_no_file(tmp_path):
    record, events, _ = receive(tmp_path, ScriptedReader([encode_sentinel()]))

    assert record.state is SessionState.COMPLETE
    assert record.saw_sentinel
    assert events == [("sentinel",)]
    assert list(tmp_path.iterdir()) == []


def test_clean_eof_without_frames(tmp_path):
    record, events, _ = receive(tmp_path, ScriptedReader([]))
    assert record.state is SessionState.COMPLETE
    assert events == []


def test_malformed_size_fails_session(tmp_path):
    record, events, writer = receive(tmp_path, ScriptedReader([b"a.txt\nNaN\n\n"]))

    assert record.state is SessionState.FAILED
    assert isinstance(record.error, MalformedHeader)
    assert events == []
    assert not (tmp_path / "a.txt").exists()
    assert writer.closed


def test_eof_inside_body_is_connection_lost(tmp_path):
    reader = ScriptedReader([encode_header("a.txt", 10) + b"abcd"])

    record, events, _ = receive(tmp_path, reader)

    assert record.state is SessionState.FAILED
    assert isinstance(record.error, ConnectionLost)
    assert events == [("failed", "a.txt", ConnectionLost)]


def test_eof_inside_header_is_connection_lost(tmp_path):
    record, _, _ = receive(tmp_path, ScriptedReader([b"a.txt\n5"]))
    assert record.state is SessionState.FAILED
    assert isinstance(record.error, ConnectionLost)


def test_path_escaping_output_dir_is_refused(tmp_path):
    out = tmp_path / "out"
    record, events, _ = receive(out, ScriptedReader([frame("../evil.txt", b"x")]))

    assert record.state is SessionState.FAILED
    assert isinstance(record.error, FileOpenFailure)
    assert events == [("failed", "../evil.txt", FileOpenFailure)]
    assert not (tmp_path / "evil.txt").exists()


def test_idle_timeout_fails_stalled_session(tmp_path):
    def stalled():
        reader = asyncio.StreamReader()
        reader.feed_data(encode_header("a.txt", 10) + b"ab")
        return reader

    record, events, _ = receive(tmp_path, stalled, idle_timeout=0.05)

    assert record.state is SessionState.FAILED
    assert isinstance(record.error, ConnectionLost)
    assert events == [("failed", "a.txt", ConnectionLost)]


# ---------------------------------------------------------------------------
# SenderSession
# ---------------------------------------------------------------------------

def send(descriptors, send_sentinel=True, chunk_size=1024):
    events = []
    writer = FakeWriter()

    async def scenario():
        table = SessionTable()
        record = table.open(role="sender", peer="test")
        session = SenderSession(
            record.session_id,
            table,
            asyncio.StreamReader(),
            writer,
            SessionMetrics(record.session_id),
            chunk_size,
            lambda sid, d, loc: events.append(("complete", d.path)),
            lambda sid, d, exc: events.append(("failed", d.path, type(exc))),
        )
        results = [await session.send(d) for d in descriptors]
        return results, await session.finish(send_sentinel)

    results, record = asyncio.run(scenario())
    return results, record, events, writer


def test_sender_writes_header_body_and_sentinel(tmp_path):
    src = tmp_path / "a.txt"
    src.write_bytes(b"hello world")

    results, record, events, writer = send(
        [FileDescriptor(path="a.txt", size=11, source=str(src))]
    )

    assert results == [True]
    assert writer.data == b"a.txt\n11\n\nhello world" + encode_sentinel()
    assert record.state is SessionState.COMPLETE
    assert events == [("complete", "a.txt")]
    assert writer.closed


def test_sender_pipelines_frames_on_one_session(tmp_path):
    (tmp_path / "a").write_bytes(b"AAA")
    (tmp_path / "b").write_bytes(b"")

    results, record, _, writer = send([
        FileDescriptor(path="x/a", size=3, source=str(tmp_path / "a")),
        FileDescriptor(path="x/b", size=0, source=str(tmp_path / "b")),
    ], send_sentinel=False)

    assert results == [True, True]
    assert writer.data == b"x/a\n3\n\nAAAx/b\n0\n\n"
    assert record.files_done == 2


def test_sender_missing_source_fails_session(tmp_path):
    results, record, events, writer = send(
        [FileDescriptor(path="gone.txt", size=4, source=str(tmp_path / "gone.txt"))]
    )

    assert results == [False]
    assert record.state is SessionState.FAILED
    assert isinstance(record.error, FileOpenFailure)
    assert events == [("failed", "gone.txt", FileOpenFailure)]
    assert writer.data == b""


def test_sender_truncated_source_is_read_error(tmp_path):
    src = tmp_path / "short.bin"
    src.write_bytes(b"abc")

    results, record, events, _ = send([FileDescriptor(path="short.bin", size=100, source=str(src))])

    assert results == [False]
    assert isinstance(record.error, ReadError)
    assert events == [("failed", "short.bin", ReadError)]


def test_session_table_ids_are_unique():
    table = SessionTable()
    a = table.open(role="sender")
    b = table.open(role="sender")
    assert a.session_id != b.session_id
    assert len(table) == 2
    table.remove(a.session_id)
    assert table.get(a.session_id) is None
    assert [r.session_id for r in table] == [b.session_id]
