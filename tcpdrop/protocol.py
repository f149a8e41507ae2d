"""
tcpdrop/protocol.py

Text wire protocol for tcpdrop file transfers.

Frame layout:
┌──────────────┬──────────────────────────────────────────────────────────┐
│ Field        │ Description                                              │
├──────────────┼──────────────────────────────────────────────────────────┤
│ path         │ UTF-8 file path, no newline                              │
│ "\\n"         │ field separator                                          │
│ size         │ decimal byte count, 0 <= size < 2**64                    │
│ "\\n\\n"       │ header terminator (blank line)                           │
├──────────────┼──────────────────────────────────────────────────────────┤
│ body         │ exactly <size> raw bytes of file content                 │
└──────────────┴──────────────────────────────────────────────────────────┘

There is no version field, no checksum and no end-of-body marker: the
declared size is the only delimiter. Several frames on one connection are
simply concatenated.

The sentinel frame (empty path, size 0) tells the receiver that no more
files follow on this connection.
"""

from dataclasses import dataclass
from typing import Optional

from tcpdrop.errors import IncompleteHeader, MalformedHeader

# ------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------
FIELD_SEP      = b"\n"
HEADER_END     = b"\n\n"
ENCODING       = "utf-8"
MAX_FILE_SIZE  = 2 ** 64 - 1
MAX_HEADER_SIZE = 64 * 1024     # a header longer than this is never valid


@dataclass(frozen=True)
class FileDescriptor:
    """
    One file to transfer.

    path is what travels on the wire; source is where the sender reads the
    bytes from and defaults to path.
    """
    path: str
    size: int
    source: Optional[str] = None

    @property
    def location(self) -> str:
        return self.source if self.source is not None else self.path

    @property
    def is_sentinel(self) -> bool:
        return is_sentinel(self.path, self.size)


SENTINEL = FileDescriptor(path="", size=0)


# ------------------------------------------------------------------
# Header encode / decode
# ------------------------------------------------------------------

def encode_header(path: str, size: int) -> bytes:
    """
    Build the header that precedes a file body.

    Raises:
        MalformedHeader: the path or size can not be represented on the wire
    """
    if "\n" in path:
        raise MalformedHeader(f"Path contains a newline: {path!r}")
    if not isinstance(size, int) or size < 0 or size > MAX_FILE_SIZE:
        raise MalformedHeader(f"Size out of range: {size!r}")
    if not path and size != 0:
        raise MalformedHeader("Empty path is reserved for the sentinel frame")

    header = f"{path}\n{size}\n\n".encode(ENCODING)
    if len(header) > MAX_HEADER_SIZE:
        raise MalformedHeader(f"Header longer than {MAX_HEADER_SIZE} bytes")
    return header


def encode_sentinel() -> bytes:
    return encode_header(SENTINEL.path, SENTINEL.size)


def is_sentinel(path: str, size: int) -> bool:
    return path == "" and size == 0


def decode_header(buffer: bytes) -> tuple[str, int, int]:
    """
    Decode the header at the start of buffer.

    Returns:
        (path, size, consumed) where consumed is the header length in bytes;
        anything after it in buffer is body.

    Raises:
        IncompleteHeader: no "\\n\\n" in buffer yet
        MalformedHeader:  the header is not "<path>\\n<size>\\n\\n"
    """
    end = buffer.find(HEADER_END)
    if end < 0:
        if len(buffer) > MAX_HEADER_SIZE:
            raise MalformedHeader(
                f"No header terminator within {MAX_HEADER_SIZE} bytes"
            )
        raise IncompleteHeader(f"Header incomplete after {len(buffer)} bytes")
    if end + len(HEADER_END) > MAX_HEADER_SIZE:
        raise MalformedHeader(f"Header longer than {MAX_HEADER_SIZE} bytes")

    fields = bytes(buffer[:end]).split(FIELD_SEP)
    if len(fields) != 2:
        raise MalformedHeader(f"Expected 2 header fields, got {len(fields)}")

    raw_path, raw_size = fields
    try:
        path = raw_path.decode(ENCODING)
    except UnicodeDecodeError as exc:
        raise MalformedHeader(f"Path is not valid UTF-8: {exc}") from exc

    # isdigit() alone accepts non-ASCII digits; int() accepts signs and "_"
    if not raw_size or not raw_size.isascii() or not raw_size.isdigit():
        raise MalformedHeader(f"Size field is not a decimal integer: {raw_size!r}")
    size = int(raw_size)
    if size > MAX_FILE_SIZE:
        raise MalformedHeader(f"Size field out of range: {size}")
    if not path and size != 0:
        raise MalformedHeader(f"Empty path with non-zero size {size}")

    return path, size, end + len(HEADER_END)
