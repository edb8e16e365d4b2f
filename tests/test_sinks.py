"""Tests for the stdout, file and HTTP sinks."""

import base64
import io
import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from eveshipper.errors import SinkCommitError, SinkSubmitError
from eveshipper.sinks import EventSink, FileSink, HttpSink, StdoutSink


class FakeEveBox:
    """Loopback stand-in for the EveBox submit API."""

    def __init__(self):
        self.requests: list[dict] = []
        self.status = 200
        self.body = b'{"count": 0}'
        owner = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                owner.requests.append({"method": "GET", "path": self.path,
                                       "headers": dict(self.headers)})
                self._reply(200, b'{"version": "0.17.0", "revision": "abc"}')

            def do_POST(self):
                length = int(self.headers.get("Content-Length", 0))
                body = self.rfile.read(length)
                owner.requests.append({"method": "POST", "path": self.path,
                                       "headers": dict(self.headers), "body": body})
                self._reply(owner.status, owner.body)

            def _reply(self, status, body):
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format, *args):
                pass

        self.server = HTTPServer(("127.0.0.1", 0), Handler)
        self.url = f"http://127.0.0.1:{self.server.server_address[1]}"
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self):
        self._thread.start()

    def stop(self):
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def evebox():
    server = FakeEveBox()
    server.start()
    yield server
    server.stop()


def _free_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def test_sinks_satisfy_protocol(tmp_path):
    assert isinstance(StdoutSink(io.StringIO()), EventSink)
    assert isinstance(FileSink(str(tmp_path / "out.json")), EventSink)
    assert isinstance(HttpSink("http://127.0.0.1:1"), EventSink)


def test_protocol_requires_pending():
    class NoPending:
        def submit(self, event):
            pass

        def commit(self):
            pass

    assert not isinstance(NoPending(), EventSink)


class TestStdoutSink:
    def test_commit_writes_ndjson(self):
        stream = io.StringIO()
        sink = StdoutSink(stream)
        sink.submit({"seq": 1})
        sink.submit({"seq": 2, "tags": []})
        assert stream.getvalue() == ""

        assert sink.commit() == {"count": 2}
        assert stream.getvalue() == '{"seq":1}\n{"seq":2,"tags":[]}\n'
        assert sink.pending == 0

    def test_unserializable_event(self):
        sink = StdoutSink(io.StringIO())
        with pytest.raises(SinkSubmitError):
            sink.submit({"bad": object()})
        assert sink.pending == 0

    def test_closed_stream_keeps_batch(self):
        stream = io.StringIO()
        sink = StdoutSink(stream)
        sink.submit({"seq": 1})
        stream.close()
        with pytest.raises(SinkCommitError):
            sink.commit()
        assert sink.pending == 1


class TestFileSink:
    def test_appends_batches(self, tmp_path):
        path = tmp_path / "out" / "events.json"
        sink = FileSink(str(path))
        sink.submit({"seq": 1})
        assert sink.commit() == {"count": 1}
        sink.submit({"seq": 2})
        sink.submit({"seq": 3})
        assert sink.commit() == {"count": 2}

        lines = path.read_text().splitlines()
        assert [json.loads(line)["seq"] for line in lines] == [1, 2, 3]

    def test_empty_commit_creates_nothing(self, tmp_path):
        path = tmp_path / "events.json"
        assert FileSink(str(path)).commit() == {"count": 0}
        assert not path.exists()

    def test_unwritable_keeps_batch(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        sink = FileSink(str(blocker / "events.json"))
        sink.submit({"seq": 1})
        with pytest.raises(SinkCommitError):
            sink.commit()
        assert sink.pending == 1


class TestHttpSink:
    def test_commit_posts_ndjson(self, evebox):
        sink = HttpSink(evebox.url)
        sink.submit({"seq": 1})
        sink.submit({"seq": 2})
        assert sink.commit() == {"count": 0}

        (request,) = evebox.requests
        assert request["method"] == "POST"
        assert request["path"] == "/api/1/submit"
        assert request["headers"]["Content-Type"] == "application/json"
        assert request["body"] == b'{"seq":1}\n{"seq":2}\n'
        assert sink.pending == 0
        sink.close()

    def test_base_url_with_path(self, evebox):
        sink = HttpSink(evebox.url + "/evebox/")
        sink.submit({"seq": 1})
        sink.commit()
        assert evebox.requests[0]["path"] == "/evebox/api/1/submit"
        sink.close()

    def test_empty_commit_sends_nothing(self, evebox):
        sink = HttpSink(evebox.url)
        assert sink.commit() == {}
        assert evebox.requests == []
        sink.close()

    def test_server_error_keeps_batch_for_retry(self, evebox):
        sink = HttpSink(evebox.url)
        sink.submit({"seq": 1})
        evebox.status = 500
        with pytest.raises(SinkCommitError):
            sink.commit()
        assert sink.pending == 1

        evebox.status = 200
        sink.commit()
        assert [r["body"] for r in evebox.requests] == [b'{"seq":1}\n'] * 2
        assert sink.pending == 0
        sink.close()

    def test_any_status_above_200_fails(self, evebox):
        sink = HttpSink(evebox.url)
        sink.submit({"seq": 1})
        evebox.status = 201
        with pytest.raises(SinkCommitError):
            sink.commit()
        sink.close()

    def test_non_json_response_still_clears(self, evebox):
        evebox.body = b"ok"
        sink = HttpSink(evebox.url)
        sink.submit({"seq": 1})
        assert sink.commit() == {}
        assert sink.pending == 0
        sink.close()

    def test_connection_refused(self):
        sink = HttpSink(f"http://127.0.0.1:{_free_port()}", timeout=2)
        sink.submit({"seq": 1})
        with pytest.raises(SinkCommitError):
            sink.commit()
        assert sink.pending == 1
        sink.close()

    def test_basic_auth(self, evebox):
        sink = HttpSink(evebox.url, username="agent", password="secret")
        sink.submit({"seq": 1})
        sink.commit()
        expected = "Basic " + base64.b64encode(b"agent:secret").decode()
        assert evebox.requests[0]["headers"]["Authorization"] == expected
        sink.close()

    def test_get_version(self, evebox):
        sink = HttpSink(evebox.url)
        assert sink.get_version()["version"] == "0.17.0"
        assert evebox.requests[0]["path"] == "/api/1/version"
        sink.close()
