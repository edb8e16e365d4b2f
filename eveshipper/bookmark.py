"""Bookmarks: durable record of how far a FollowingReader has progressed.

A bookmark is a single JSON object, rewritten in full on every update::

    {"path": "/var/log/suricata/eve.json", "offset": 1234, "size": 567890,
     "sys": {"inode": 1311317}}

``offset`` is a line number, not a byte offset. ``sys`` is null on platforms
without a stable file identity.
"""

import hashlib
import json
import logging
import os
import tempfile

from eveshipper.errors import BookmarkIOError, EndOfData, NoBookmarkError
from eveshipper.identity import identity_of, same_identity
from eveshipper.reader import FollowingReader, Position

logger = logging.getLogger(__name__)


def get_bookmark_path(input_path: str, directory: str | None = None) -> str:
    """Bookmark filename for ``input_path``.

    With a directory, the name is the md5 of the input path so any number of
    inputs can share one directory; otherwise the bookmark sits next to the
    input file.
    """
    if not directory:
        return f"{input_path}.bookmark"
    digest = hashlib.md5(input_path.encode("utf-8")).hexdigest()
    return os.path.join(directory, f"{digest}.bookmark")


def position_to_dict(position: Position) -> dict:
    return {
        "path": position.path,
        "offset": position.line_number,
        "size": position.file_size,
        "sys": position.identity,
    }


def position_from_dict(data: dict) -> Position:
    path = data["path"]
    offset = data["offset"]
    size = data.get("size", 0)
    if not isinstance(path, str):
        raise TypeError("path must be a string")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise TypeError("offset must be a non-negative integer")
    if isinstance(size, bool) or not isinstance(size, int):
        raise TypeError("size must be an integer")
    sys_info = data.get("sys")
    return Position(
        path=path,
        line_number=offset,
        file_size=size,
        identity=sys_info if isinstance(sys_info, dict) else None,
    )


class Bookmarker:
    def __init__(self, reader: FollowingReader, directory: str | None = None,
                 filename: str | None = None):
        self.reader = reader
        self.filename = filename or get_bookmark_path(reader.path, directory)

    def get_bookmark(self) -> Position:
        return self.reader.position()

    def read(self) -> Position:
        """Load the stored bookmark. Raises NoBookmarkError if absent or corrupt."""
        try:
            with open(self.filename, "r", encoding="utf-8") as f:
                data = json.load(f)
            return position_from_dict(data)
        except FileNotFoundError as err:
            raise NoBookmarkError(f"No bookmark at {self.filename}") from err
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as err:
            raise NoBookmarkError(f"Unreadable bookmark {self.filename}: {err}") from err

    def write(self, position: Position):
        """Replace the bookmark file with ``position``.

        Written to a temp file in the same directory then renamed over the
        old bookmark.
        """
        directory = os.path.dirname(os.path.abspath(self.filename))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(position_to_dict(position), f)
                    f.write("\n")
                os.replace(tmp, self.filename)
            except Exception:
                os.unlink(tmp)
                raise
        except OSError as err:
            raise BookmarkIOError(f"Failed to write bookmark {self.filename}: {err}") from err
        logger.debug("Wrote bookmark %s at line %d", self.filename, position.line_number)

    def update_bookmark(self):
        self.write(self.get_bookmark())

    def is_valid(self, bookmark: Position) -> bool:
        if bookmark.path != self.reader.path:
            logger.debug("Bookmark is for %s, not %s", bookmark.path, self.reader.path)
            return False

        st = self.reader.stat()
        # A smaller file than when bookmarked means it was truncated while
        # we were not running.
        if st.st_size < bookmark.file_size:
            logger.debug("File is smaller than bookmarked size (%d < %d)",
                         st.st_size, bookmark.file_size)
            return False

        if not same_identity(bookmark.identity, identity_of(st)):
            logger.debug("Current file does not match bookmarked identity")
            return False

        return True

    def init(self, end: bool):
        """Position the reader from the stored bookmark, then write it back.

        Without a usable bookmark the reader starts at the end of the file
        if ``end`` is set, otherwise at the beginning. The closing write
        fails fast (BookmarkIOError) when the bookmark location is not
        writable.
        """
        try:
            bookmark = self.read()
        except NoBookmarkError as err:
            logger.info("Failed to read bookmark: %s", err)
            bookmark = None

        if bookmark is not None and self.is_valid(bookmark):
            logger.info("Valid bookmark found, skipping to line %d", bookmark.line_number)
            try:
                self.reader.skip_to(bookmark.line_number)
            except EndOfData as err:
                logger.error("Failed to skip to line %d, will skip to end of file: %s",
                             bookmark.line_number, err)
                self.reader.skip_to_end()
        else:
            if bookmark is not None:
                logger.info("Stale bookmark found")
            if end:
                logger.info("Will start reading at end of file")
                self.reader.skip_to_end()
            else:
                logger.info("Will start reading at beginning of file")

        self.update_bookmark()
