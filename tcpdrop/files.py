"""
tcpdrop/files.py

Filesystem collaborators of the transfer engine:

  walk_descriptors — turns files/directories given on the command line
                     into the FileDescriptors the sender queues
  FileSink         — maps a received wire path to a writable local file
                     under the receiver's output directory
"""

import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterable, Iterator

from tcpdrop.errors import FileOpenFailure
from tcpdrop.protocol import FileDescriptor

logger = logging.getLogger(__name__)

_DRIVE = re.compile(r"^[A-Za-z]:")


def walk_descriptors(paths: Iterable[str]) -> Iterator[FileDescriptor]:
    """
    Yield a FileDescriptor for every regular file under paths.

    Wire paths are relative to each argument's parent directory and always
    use "/" so that "docs" sends "docs/a.txt", "docs/sub/b.bin", ...

    Raises:
        FileNotFoundError: an argument does not exist
    """
    for item in paths:
        root = Path(item)
        if root.is_file():
            yield _descriptor(root, root.parent)
        elif root.is_dir():
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames.sort()
                for name in sorted(filenames):
                    yield _descriptor(Path(dirpath) / name, root.parent)
        else:
            raise FileNotFoundError(f"File not found: {item}")


def _descriptor(file_path: Path, base: Path) -> FileDescriptor:
    wire_path = file_path.relative_to(base).as_posix()
    return FileDescriptor(
        path=wire_path,
        size=file_path.stat().st_size,
        source=str(file_path),
    )


def open_source(descriptor: FileDescriptor) -> BinaryIO:
    """Open the sender-side file for a descriptor."""
    try:
        return open(descriptor.location, "rb")
    except OSError as exc:
        raise FileOpenFailure(f"Cannot open {descriptor.location}: {exc}") from exc


class FileSink:
    """
    Receives files under a single root directory.

    Wire paths are treated as relative: intermediate directories are
    created, while absolute paths and ".." components are refused.
    """

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def resolve(self, wire_path: str) -> Path:
        """
        Raises:
            FileOpenFailure: the path would escape the root or names nothing
        """
        normalized = wire_path.replace("\\", "/")
        parts = PurePosixPath(normalized).parts
        if not parts or normalized.startswith("/") or _DRIVE.match(normalized):
            raise FileOpenFailure(f"Refusing non-relative path {wire_path!r}")
        if any(part == ".." for part in parts):
            raise FileOpenFailure(f"Refusing path outside output dir {wire_path!r}")

        cleaned = [part for part in parts if part != "."]
        if not cleaned:
            raise FileOpenFailure(f"Path names no file: {wire_path!r}")
        return self.root.joinpath(*cleaned)

    def open(self, wire_path: str, size: int) -> tuple[BinaryIO, Path]:
        """
        Create (or truncate) the destination file for an incoming frame.

        Returns:
            (handle, local path)
        """
        target = self.resolve(wire_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fh = open(target, "wb")
        except OSError as exc:
            raise FileOpenFailure(f"Cannot open {target}: {exc}") from exc

        logger.debug("Sink opened %s for %d bytes", target, size)
        return fh, target
