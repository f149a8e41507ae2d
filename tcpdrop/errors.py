"""
tcpdrop/errors.py

Error kinds raised by the transfer engine.

Every failure is local to one session: the session catches it, records it,
and reports it upward. Only UnreachableHost ends a whole sender run.
"""


class TransferError(Exception):
    """Base class for all tcpdrop transfer failures."""


class UnreachableHost(TransferError):
    """Every resolved endpoint refused or timed out."""


class ConnectionLost(TransferError):
    """The socket failed, closed, or went idle before the transfer completed."""


class FrameError(TransferError):
    pass


class IncompleteHeader(FrameError):
    """No header delimiter yet; read more and decode again."""


class MalformedHeader(FrameError):
    """The header violates the wire format."""


class ReadError(TransferError):
    """The local source file could not deliver the declared bytes."""


class WriteError(TransferError):
    """The local destination file rejected a write."""


class FileOpenFailure(TransferError):
    """A source or destination file could not be opened."""
