"""Event sinks: where submitted events go when a batch is committed.

Every sink buffers serialized events on ``submit()`` and flushes them on
``commit()``. A failed commit keeps the buffer, so calling ``commit()`` again
retries the same batch.
"""

import json
import logging
import os
import sys
from typing import Protocol, TextIO, runtime_checkable

import requests

from eveshipper.errors import SinkCommitError, SinkSubmitError

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSink(Protocol):
    @property
    def pending(self) -> int: ...

    def submit(self, event: dict) -> None: ...

    def commit(self): ...


class BufferedSink:
    """Shared NDJSON buffering for the concrete sinks."""

    def __init__(self):
        self._buffer: list[str] = []

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def submit(self, event: dict) -> None:
        try:
            self._buffer.append(json.dumps(event, separators=(",", ":")))
        except (TypeError, ValueError) as err:
            raise SinkSubmitError(f"Failed to serialize event: {err}") from err

    def _payload(self) -> str:
        return "".join(line + "\n" for line in self._buffer)

    def commit(self):
        raise NotImplementedError


class StdoutSink(BufferedSink):
    """Writes each committed batch to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None):
        super().__init__()
        self._stream = stream

    def commit(self) -> dict:
        count = len(self._buffer)
        stream = self._stream or sys.stdout
        try:
            stream.write(self._payload())
            stream.flush()
        except (OSError, ValueError) as err:
            raise SinkCommitError(f"Failed to write events: {err}") from err
        self._buffer.clear()
        return {"count": count}


class FileSink(BufferedSink):
    """Appends each committed batch to an NDJSON file and fsyncs it."""

    def __init__(self, path: str):
        super().__init__()
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def commit(self) -> dict:
        count = len(self._buffer)
        if count == 0:
            return {"count": 0}
        try:
            directory = os.path.dirname(os.path.abspath(self._path))
            os.makedirs(directory, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(self._payload())
                f.flush()
                os.fsync(f.fileno())
        except OSError as err:
            raise SinkCommitError(f"Failed to write {self._path}: {err}") from err
        self._buffer.clear()
        return {"count": count}


class HttpSink(BufferedSink):
    """Posts each committed batch as NDJSON to an EveBox server's submit API."""

    SUBMIT_PATH = "api/1/submit"
    VERSION_PATH = "api/1/version"

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        password: str | None = None,
        verify: bool = True,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        super().__init__()
        self._base_url = base_url.rstrip("/") + "/"
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.verify = verify
        if username or password:
            self._session.auth = (username or "", password or "")

    def _url(self, path: str) -> str:
        return self._base_url + path

    def get_version(self) -> dict:
        response = self._session.get(self._url(self.VERSION_PATH), timeout=self._timeout)
        response.raise_for_status()
        return response.json()

    def commit(self) -> dict:
        if not self._buffer:
            return {}
        count = len(self._buffer)
        try:
            response = self._session.post(
                self._url(self.SUBMIT_PATH),
                data=self._payload().encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except requests.RequestException as err:
            raise SinkCommitError(f"Failed to post {count} events: {err}") from err

        if response.status_code > 200:
            raise SinkCommitError(
                f"Unexpected status: {response.status_code} {response.reason}"
            )

        # The server has the batch at this point; never resend it.
        self._buffer.clear()
        try:
            return response.json()
        except ValueError:
            logger.warning("Server accepted %d events but returned a non-JSON body", count)
            return {}

    def close(self):
        self._session.close()
