"""Filesystem notifications that wake an idle reader early."""

import logging
import os
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class FileChangeNotifier(FileSystemEventHandler):
    """Sets ``changed`` whenever the watched file is written, created or moved.

    The observer watches the file's parent directory so rename-and-recreate
    rotation is seen as well as in-place appends.
    """

    def __init__(self, path: str, changed: threading.Event | None = None):
        super().__init__()
        self._path = os.path.abspath(path)
        self.changed = changed or threading.Event()
        self._observer = None

    def _matches(self, event) -> bool:
        if event.is_directory:
            return False
        paths = [event.src_path, getattr(event, "dest_path", "")]
        return any(p and os.path.abspath(os.fsdecode(p)) == self._path for p in paths)

    def on_modified(self, event):
        if self._matches(event):
            self.changed.set()

    def on_created(self, event):
        if self._matches(event):
            logger.debug("Watched file created: %s", self._path)
            self.changed.set()

    def on_moved(self, event):
        if self._matches(event):
            logger.debug("Watched file moved: %s", self._path)
            self.changed.set()

    def start(self):
        directory = os.path.dirname(self._path)
        self._observer = Observer()
        self._observer.schedule(self, directory, recursive=False)
        self._observer.start()
        logger.debug("Watching directory %s for changes to %s", directory, self._path)

    def stop(self):
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
