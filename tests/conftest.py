import json
import os

import pytest

from eveshipper.errors import SinkCommitError, SinkSubmitError

RAW_EVENT = (
    '{"timestamp":"2016-09-15T11:23:20.197956-0600","flow_id":943590776193120,'
    '"event_type":"alert","src_ip":"82.165.177.154","src_port":80,'
    '"dest_ip":"10.16.1.11","dest_port":59852,"proto":"TCP",'
    '"http":{"hostname":"www.testmyids.com","url":"/","http_user_agent":"curl/7.47.1",'
    '"http_method":"GET","protocol":"HTTP/1.1","status":200,"length":39},'
    '"host":"fw","alert":{"action":"allowed","gid":1,"signature_id":10000000,"rev":1,'
    '"signature":"","category":"Potentially Bad Traffic","severity":2}}'
)


def make_event(seq: int, **extra) -> str:
    """A minimal EVE line identified by ``seq``."""
    event = {
        "timestamp": f"2024-01-15T08:23:{seq % 60:02d}.000000+0000",
        "event_type": "alert",
        "seq": seq,
    }
    event.update(extra)
    return json.dumps(event)


class EveWriter:
    """Writes to an EVE file the way Suricata does: append, flush, sync."""

    def __init__(self, path: str):
        self.path = path
        self._file = open(path, "wb")

    def write(self, text: str):
        self._file.write(text.encode("utf-8"))
        self._file.flush()
        os.fsync(self._file.fileno())

    def write_line(self, line: str = RAW_EVENT):
        self.write(line + "\n")

    def write_events(self, start: int, count: int):
        for seq in range(start, start + count):
            self.write_line(make_event(seq))

    def truncate(self):
        self._file.truncate(0)
        self._file.seek(0)

    def close(self):
        if not self._file.closed:
            self._file.close()


class RecordingSink:
    """In-memory sink that can be told to fail commits or submits."""

    def __init__(self, fail_commits: int = 0, always_fail: bool = False,
                 reject=None, on_commit=None):
        self.submitted: list[dict] = []
        self.batches: list[list[dict]] = []
        self.commit_attempts = 0
        self._pending: list[dict] = []
        self._fail_commits = fail_commits
        self._always_fail = always_fail
        self._reject = reject
        self._on_commit = on_commit

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def committed(self) -> list[dict]:
        return [event for batch in self.batches for event in batch]

    def submit(self, event: dict) -> None:
        if self._reject is not None and self._reject(event):
            raise SinkSubmitError(f"rejected {event.get('seq')}")
        self.submitted.append(event)
        self._pending.append(event)

    def commit(self):
        self.commit_attempts += 1
        if self._on_commit is not None:
            self._on_commit(self)
        if self._always_fail or self.commit_attempts <= self._fail_commits:
            raise SinkCommitError(f"commit attempt {self.commit_attempts} failed")
        self.batches.append(self._pending)
        self._pending = []
        return {"count": len(self.batches[-1])}


@pytest.fixture
def eve_path(tmp_path) -> str:
    return str(tmp_path / "eve.json")


@pytest.fixture
def writer(eve_path):
    w = EveWriter(eve_path)
    yield w
    w.close()
