"""Line oriented EVE readers.

LineReader gives byte-offset tracked access to one open file and never
returns a partially written line. FollowingReader builds on it to follow a
file across truncation and rename based rotation, addressing its position
by line number.
"""

import logging
import os
from dataclasses import dataclass
from typing import Iterator

from eveshipper.errors import EndOfData, FileOpenError, MalformedEventError
from eveshipper.eve import EveEvent, decode_event
from eveshipper.identity import identity_of, same_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Position:
    path: str
    line_number: int
    file_size: int
    identity: dict | None = None


class LineReader:
    def __init__(self, path: str):
        self.path = path
        try:
            self._file = open(path, "rb")
        except OSError as err:
            raise FileOpenError(path, err) from err

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        if not self._file.closed:
            self._file.close()

    def next_line(self) -> bytes | None:
        """Return the next complete line including its newline.

        Returns None when no complete line is available. If a partial line
        was read the file position is moved back to where the line starts so
        it is read again in full once the writer finishes it.
        """
        offset = self._file.tell()
        line = self._file.readline()
        if not line:
            return None
        if not line.endswith(b"\n"):
            logger.debug("Partial line at offset %d in %s, rewinding", offset, self.path)
            self._file.seek(offset)
            return None
        return line

    def stat(self) -> os.stat_result:
        """Stat the open handle, not the path."""
        return os.fstat(self._file.fileno())

    def file_size(self) -> int:
        return self.stat().st_size

    def current_offset(self) -> int:
        return self._file.tell()

    def set_offset(self, offset: int):
        self._file.seek(offset)


class FollowingReader:
    """Follows a growing EVE file, reopening it when it is rotated.

    ``lineno`` counts complete lines consumed from the currently open file
    and goes back to 0 whenever the file is truncated or replaced.
    """

    def __init__(self, path: str):
        self.path = path
        self.lineno = 0
        self.size = 0
        self._reader = LineReader(path)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self._reader.close()

    def reopen(self):
        logger.debug("Reopening %s", self.path)
        self._reader.close()
        self._reader = LineReader(self.path)
        self.lineno = 0
        self.size = 0

    def stat(self) -> os.stat_result:
        return self._reader.stat()

    def is_new_file(self) -> bool:
        """True if the path now names a different file than the open one."""
        try:
            open_st = self._reader.stat()
            disk_st = os.stat(self.path)
        except FileNotFoundError:
            # Renamed away and not yet recreated.
            return False
        same = same_file(open_st, disk_st)
        if same is None:
            return disk_st.st_size < self._reader.current_offset()
        return not same

    def _check_truncation(self):
        size = self._reader.file_size()
        if size < self.size or size < self._reader.current_offset():
            logger.info("Truncation detected on %s (now %d bytes), reading from start",
                        self.path, size)
            self._reader.set_offset(0)
            self.lineno = 0
        self.size = size

    def next_record(self) -> EveEvent | None:
        """Return the next decoded event, or None when caught up.

        Raises MalformedEventError for a line that does not decode; that line
        still counts as consumed.
        """
        while True:
            self._check_truncation()

            line = self._reader.next_line()
            if line is None:
                if self.is_new_file():
                    logger.info("Rotation detected on %s, reopening", self.path)
                    self.reopen()
                    continue
                return None

            self.lineno += 1
            if not line.strip():
                continue

            try:
                return decode_event(line)
            except ValueError as err:
                raw = line.decode("utf-8", errors="replace").rstrip("\r\n")
                raise MalformedEventError(raw, self.lineno, err) from err

    def records(self) -> Iterator[EveEvent]:
        """Yield events until the reader catches up with the writer."""
        while True:
            event = self.next_record()
            if event is None:
                return
            yield event

    def position(self) -> Position:
        return Position(
            path=self.path,
            line_number=self.lineno,
            file_size=self.size,
            identity=identity_of(self.stat()),
        )

    def skip_to(self, lineno: int):
        """Consume ``lineno`` lines without decoding them.

        Only valid before any reading has been done; a no-op otherwise.
        Raises EndOfData if the file holds fewer lines.
        """
        if self.lineno != 0:
            return
        self.size = self._reader.file_size()
        while lineno > 0:
            if self._reader.next_line() is None:
                raise EndOfData(f"{self.path} has only {self.lineno} complete lines")
            lineno -= 1
            self.lineno += 1

    def skip_to_end(self) -> int:
        """Consume every complete line currently in the file. Returns the count."""
        self.size = self._reader.file_size()
        skipped = 0
        while self._reader.next_line() is not None:
            self.lineno += 1
            skipped += 1
        return skipped

    def lag(self) -> int:
        """Bytes between the read position and the end of the open file."""
        return self._reader.file_size() - self._reader.current_offset()
