"""Exception types raised by the reader, bookmark and sink layers."""


class EveShipperError(Exception):
    """Base class for all eveshipper errors."""


class EndOfData(Exception):
    """No complete line is available yet; the reader has caught up."""


class FileOpenError(EveShipperError):
    def __init__(self, path: str, cause: Exception | None = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to open {path}: {cause}")


class MalformedEventError(EveShipperError):
    """A line could not be decoded into an event.

    Carries the raw line and its line number so the caller can log it and
    decide whether to skip the line or abort.
    """

    def __init__(self, line: str, lineno: int, cause: Exception | None = None):
        self.line = line
        self.lineno = lineno
        self.cause = cause
        super().__init__(f"Failed to parse event at line {lineno}: {cause}: {line!r}")


class NoBookmarkError(EveShipperError):
    """The bookmark file is missing or could not be decoded."""


class BookmarkIOError(EveShipperError):
    """The bookmark file could not be written."""


class SinkSubmitError(EveShipperError):
    pass


class SinkCommitError(EveShipperError):
    pass


class ConfigError(EveShipperError):
    pass
