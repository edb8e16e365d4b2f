"""EveFileProcessor: tails one EVE file into a sink with bookmarked progress.

Events are read in file order, run through the filter chain, submitted to
the sink one at a time and committed in batches. The bookmark is only moved
forward after the sink has committed the batch it covers, so a crash or a
failed commit means events are delivered again, never lost.
"""

import logging
import os
import threading
import time

from eveshipper.bookmark import Bookmarker
from eveshipper.errors import (
    BookmarkIOError,
    FileOpenError,
    MalformedEventError,
    SinkCommitError,
    SinkSubmitError,
)
from eveshipper.filters import CustomFieldFilter, EveFilter, FilterChain
from eveshipper.metrics import Metrics
from eveshipper.reader import FollowingReader
from eveshipper.sinks import EventSink
from eveshipper.watcher import FileChangeNotifier

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000


class EveFileProcessor:
    def __init__(
        self,
        filename: str,
        sink: EventSink,
        bookmark_directory: str | None = None,
        bookmark: bool = True,
        end: bool = False,
        oneshot: bool = False,
        batch_size: int = BATCH_SIZE,
        poll_interval: float = 1.0,
        retry_interval: float = 1.0,
        stats_interval: float = 60.0,
        filters: list[EveFilter] | None = None,
        custom_fields: dict | None = None,
        watch: bool = False,
    ):
        self.filename = filename
        self.sink = sink
        self.bookmark_directory = bookmark_directory
        self.bookmark = bookmark
        self.end = end
        self.oneshot = oneshot
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.retry_interval = retry_interval
        self.stats_interval = stats_interval
        self.watch = watch
        self.metrics = Metrics()

        self._filters = FilterChain(filters or ())
        # Applied after the enrichment filters so custom values always win.
        self._custom_fields = FilterChain(
            CustomFieldFilter(name, value) for name, value in (custom_fields or {}).items()
        )
        self._stop = threading.Event()
        # Set by stop() and by the file watcher to cut the idle sleep short.
        self._wakeup = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_stats = time.monotonic()

    @property
    def total(self) -> int:
        """Events committed to the sink since the processor was created."""
        return self.metrics.total

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_filter(self, f: EveFilter):
        self._filters.add(f)

    def add_custom_field(self, field: str, value):
        self._custom_fields.add(CustomFieldFilter(field, value))

    def start(self):
        """Run the processor on a background thread and return immediately."""
        if self.running:
            raise RuntimeError(f"Processor for {self.filename} is already running")
        self._stop.clear()
        self._wakeup.clear()
        self._thread = threading.Thread(
            target=self.run, name=f"eve-{os.path.basename(self.filename)}", daemon=True,
        )
        self._thread.start()

    def request_stop(self):
        """Ask the processing loop to exit at its next check without waiting."""
        self._stop.set()
        self._wakeup.set()

    def stop(self):
        """Stop the background thread and wait for it to exit."""
        self.request_stop()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def run(self):
        """Open, process and reopen the file until stopped.

        In oneshot mode returns once the file has been read to the end and
        committed; errors propagate instead of being retried.
        """
        self._last_stats = time.monotonic()
        notifier = None
        if self.watch and not self.oneshot:
            notifier = FileChangeNotifier(self.filename, self._wakeup)
            notifier.start()

        try:
            while not self._stop.is_set():
                if self._run_session():
                    break
                if self._stop.wait(self.retry_interval):
                    break
        finally:
            if notifier is not None:
                notifier.stop()
            logger.info("Stopped processing %s: %d events committed",
                        self.filename, self.metrics.total)

    def _run_session(self) -> bool:
        """One open-to-failure pass over the file. Returns True when finished."""
        try:
            reader = FollowingReader(self.filename)
        except FileOpenError as err:
            if self.oneshot:
                raise
            logger.warning("Failed to open %s (will try again): %s", self.filename, err.cause)
            return False

        try:
            bookmarker = None
            if self.bookmark:
                bookmarker = Bookmarker(reader, self.bookmark_directory)
                bookmarker.init(self.end)
            elif self.end:
                skipped = reader.skip_to_end()
                logger.info("Skipped %d lines jumping to end of %s", skipped, self.filename)
            return self._process(reader, bookmarker)
        except BookmarkIOError as err:
            if self.oneshot:
                raise
            logger.warning("Failed to initialize bookmark (will try again): %s", err)
            return False
        except (OSError, FileOpenError) as err:
            if self.oneshot:
                raise
            logger.error("Processing error on %s, will retry: %s", self.filename, err)
            return False
        finally:
            reader.close()

    def _process(self, reader: FollowingReader, bookmarker: Bookmarker | None) -> bool:
        count = 0
        # Lines consumed since the last bookmark write that never reached the sink.
        skipped = 0

        while True:
            eof = False
            event = None

            try:
                event = reader.next_record()
                eof = event is None
            except MalformedEventError as err:
                self.metrics.record_malformed()
                skipped += 1
                logger.error("Skipping malformed event in %s at line %d: %s",
                             self.filename, err.lineno, err.cause)

            if eof:
                self.metrics.record_eof()
            elif event is not None:
                self._filters.apply(event)
                self._custom_fields.apply(event)
                try:
                    self.sink.submit(event)
                    count += 1
                except SinkSubmitError as err:
                    self.metrics.record_submit_failure()
                    skipped += 1
                    logger.error("Failed to submit event: %s", err)

            if (eof and count > 0) or count >= self.batch_size:
                position = reader.position()
                start = time.monotonic()
                if not self._commit():
                    # Stopped mid-retry; the batch will be re-read from the
                    # last bookmark on restart.
                    return True
                logger.debug("Committed %d events in %.3fs", count, time.monotonic() - start)
                self.metrics.record_committed(count)
                count = 0
                skipped = 0
                self._write_bookmark(bookmarker, position)
            elif eof and skipped > 0:
                # Nothing is pending in the sink, so the bookmark can move
                # past trailing lines that were dropped.
                skipped = 0
                self._write_bookmark(bookmarker, reader.position())

            self._maybe_log_stats(reader)

            if eof and self.oneshot:
                return True

            if self._stop.is_set():
                return True

            if eof:
                self._wakeup.wait(self.poll_interval)
                self._wakeup.clear()

    def _write_bookmark(self, bookmarker: Bookmarker | None, position):
        if bookmarker is None:
            return
        try:
            bookmarker.write(position)
        except BookmarkIOError as err:
            logger.error("%s", err)

    def _commit(self) -> bool:
        """Commit the sink until it succeeds. Returns False if stopped first."""
        while True:
            try:
                self.sink.commit()
                return True
            except SinkCommitError as err:
                self.metrics.record_commit_failure()
                if self._stop.is_set():
                    logger.warning("Stop requested, abandoning commit: %s", err)
                    return False
                logger.error("Failed to commit events, will try again: %s", err)
            if self._stop.wait(self.retry_interval):
                logger.warning("Stop requested, abandoning commit")
                return False

    def _maybe_log_stats(self, reader: FollowingReader):
        now = time.monotonic()
        if now - self._last_stats < self.stats_interval:
            return
        stats = self.metrics.snapshot_and_reset()
        logger.info(
            "%s: total: %d; last interval: %d; EOFs: %d; lag: %d bytes",
            self.filename, stats["total"], stats["committed"], stats["eofs"], reader.lag(),
        )
        if stats["commit_failures"] or stats["submit_failures"] or stats["malformed"]:
            logger.info(
                "%s: commit failures: %d; submit failures: %d; malformed: %d",
                self.filename, stats["commit_failures"], stats["submit_failures"],
                stats["malformed"],
            )
        self._last_stats = now
