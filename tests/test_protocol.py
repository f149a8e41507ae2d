import pytest

from tcpdrop.errors import IncompleteHeader, MalformedHeader
from tcpdrop.protocol import (
    MAX_HEADER_SIZE,
    SENTINEL,
    FileDescriptor,
    decode_header,
    encode_header,
    encode_sentinel,
    is_sentinel,
)


def test_encode_header_format():
    assert encode_header("a.txt", 5) == b"a.txt\n5\n\n"
    assert encode_header("dir/b.bin", 1048576) == b"dir/b.bin\n1048576\n\n"


def test_decode_header_with_body_following():
    path, size, consumed = decode_header(b"a.txt\n5\n\nhello")
    assert (path, size, consumed) == ("a.txt", 5, 9)


def test_decode_header_without_blank_line_is_incomplete():
    with pytest.raises(IncompleteHeader):
        decode_header(b"a.txt\n5\n")


def test_decode_empty_buffer_is_incomplete():
    with pytest.raises(IncompleteHeader):
        decode_header(b"")


def test_decode_accepts_bytearray():
    buf = bytearray(b"x\n3\n\nabc")
    assert decode_header(buf) == ("x", 3, 5)


def test_sentinel_roundtrip():
    raw = encode_sentinel()
    path, size, consumed = decode_header(raw)
    assert is_sentinel(path, size)
    assert consumed == len(raw)
    assert SENTINEL.is_sentinel


def test_zero_length_file_is_not_sentinel():
    path, size, _ = decode_header(encode_header("empty.txt", 0))
    assert size == 0
    assert not is_sentinel(path, size)
    assert not FileDescriptor(path="empty.txt", size=0).is_sentinel


def test_unicode_path_roundtrip():
    raw = encode_header("données/ü.txt", 12)
    assert decode_header(raw)[:2] == ("données/ü.txt", 12)


@pytest.mark.parametrize("raw", [
    b"a.txt\nNaN\n\n",
    b"a.txt\n-1\n\n",
    b"a.txt\n+5\n\n",
    b"a.txt\n5 \n\n",
    b"a.txt\n1_000\n\n",
    b"a.txt\n\n\n",
    b"a.txt\n\n",
    b"a\nb\n5\n\n",
    b"\n5\n\n",
    b"\xff\xfe\n5\n\n",
    b"a.txt\n18446744073709551616\n\n",
])
def test_malformed_headers(raw):
    with pytest.raises(MalformedHeader):
        decode_header(raw)


def test_max_size_is_accepted():
    assert decode_header(b"big\n18446744073709551615\n\n")[1] == 2 ** 64 - 1


def test_runaway_header_is_malformed():
    with pytest.raises(MalformedHeader):
        decode_header(b"x" * (MAX_HEADER_SIZE + 1))


def test_long_partial_header_under_limit_is_incomplete():
    with pytest.raises(IncompleteHeader):
        decode_header(b"x" * (MAX_HEADER_SIZE - 1))


def test_oversized_header_in_one_read_is_malformed():
    with pytest.raises(MalformedHeader):
        decode_header(b"x" * MAX_HEADER_SIZE + b"\n1\n\nbody")


def test_header_at_the_limit_is_accepted():
    path = "x" * (MAX_HEADER_SIZE - 4)
    header = encode_header(path, 1)
    assert len(header) == MAX_HEADER_SIZE
    assert decode_header(header + b"!") == (path, 1, MAX_HEADER_SIZE)


def test_encode_rejects_oversized_header():
    with pytest.raises(MalformedHeader):
        encode_header("x" * MAX_HEADER_SIZE, 1)


@pytest.mark.parametrize("path,size", [
    ("bad\nname", 1),
    ("a.txt", -1),
    ("a.txt", 2 ** 64),
    ("", 3),
])
def test_encode_rejects_unrepresentable_frames(path, size):
    with pytest.raises(MalformedHeader):
        encode_header(path, size)


def test_descriptor_location_defaults_to_path():
    assert FileDescriptor(path="a.txt", size=1).location == "a.txt"
    assert FileDescriptor(path="a.txt", size=1, source="/tmp/x").location == "/tmp/x"
