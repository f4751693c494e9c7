"""
Tests for HTTPServer: fallback answers, failure isolation, and a few
end-to-end requests over a real socket.
"""

import io
import socket
import threading
from pathlib import Path

import pytest

from httpchain import HTTPServer, ServerConfig, create_app
from httpchain.handlers import StaticFile
from httpchain.http import HTTPResponse
from httpchain.middleware import Continue, LoggingMiddleware, TERMINATE

from conftest import LiveServer, make_request, make_response, split_response


@pytest.fixture
def server(config: ServerConfig) -> HTTPServer:
    return HTTPServer(config)


class TestHandle:
    """Tests for HTTPServer.handle() without sockets."""

    def test_no_stages_gives_404(self, server: HTTPServer):
        response, sink = make_response()

        assert server.handle(make_request("/anything"), response) is True

        status, headers, body = split_response(sink.getvalue())
        assert status == "HTTP/1.1 404 Not Found"
        assert body == b"Not Found"

    def test_all_stages_continue_gives_404(self, server: HTTPServer):
        calls = []

        @server.use
        def note(request, response, context):
            calls.append(request.target)
            return Continue(request, response, context)

        response, sink = make_response()
        server.handle(make_request("/x"), response)

        assert calls == ["/x"]
        assert response.status == 404

    def test_stage_answer_is_kept(self, server: HTTPServer):
        @server.use
        def hello(request, response, context):
            response.send(b"hello")
            return TERMINATE

        response, sink = make_response()
        server.handle(make_request("/"), response)

        status, _, body = split_response(sink.getvalue())
        assert status == "HTTP/1.1 200 OK"
        assert body == b"hello"

    def test_terminate_without_answer_gives_404(self, server: HTTPServer, caplog):
        server.use(lambda request, response, context: TERMINATE)
        response, _ = make_response()

        server.handle(make_request("/"), response)

        assert response.status == 404
        assert "without answering" in caplog.text

    def test_fresh_context_per_request(self, config: ServerConfig):
        contexts = []
        server = HTTPServer(config, context_factory=list)

        @server.use
        def remember(request, response, context):
            context.append(request.target)
            contexts.append(context)
            return Continue(request, response, context)

        server.handle(make_request("/1"), make_response()[0])
        server.handle(make_request("/2"), make_response()[0])

        assert contexts == [["/1"], ["/2"]]
        assert contexts[0] is not contexts[1]

    def test_custom_context_factory(self, config: ServerConfig):
        seen = []
        server = HTTPServer(config, context_factory=lambda: {"user": None})

        @server.use
        def check(request, response, context):
            seen.append(context)
            return Continue(request, response, context)

        server.handle(make_request("/"), make_response()[0])

        assert seen == [{"user": None}]

    def test_explicit_context(self, server: HTTPServer):
        seen = []
        server.use(lambda req, res, ctx: seen.append(ctx) or Continue(req, res, ctx))

        context = ["given"]
        server.handle(make_request("/"), make_response()[0], context)

        assert seen[0] is context

    def test_stage_exception_gives_500(self, server: HTTPServer):
        calls = []

        def boom(request, response, context):
            raise RuntimeError("stage blew up")

        def after(request, response, context):
            calls.append("after")
            return Continue(request, response, context)

        server.use(boom)
        server.use(after)
        response, sink = make_response()

        assert server.handle(make_request("/"), response) is True

        status, _, body = split_response(sink.getvalue())
        assert status == "HTTP/1.1 500 Internal Server Error"
        assert b"blew up" not in body
        assert calls == []

    def test_server_survives_failing_request(self, server: HTTPServer):
        """One failing request does not affect the next one."""
        @server.use
        def flaky(request, response, context):
            if request.target == "/bad":
                raise ValueError("bad")
            response.send(b"fine")
            return TERMINATE

        bad, _ = make_response()
        good, sink = make_response()

        server.handle(make_request("/bad"), bad)
        server.handle(make_request("/good"), good)

        assert bad.status == 500
        assert split_response(sink.getvalue())[2] == b"fine"

    def test_invalid_outcome_gives_500(self, server: HTTPServer):
        server.use(lambda req, res, ctx: "oops")
        response, _ = make_response()

        server.handle(make_request("/"), response)

        assert response.status == 500

    def test_failure_after_head_closes_connection(self, server: HTTPServer):
        """Once bytes are out, no error page can follow; the connection goes."""
        class BrokenSink:
            def __init__(self):
                self.writes = 0

            def write(self, data):
                self.writes += 1
                if self.writes > 1:
                    raise BrokenPipeError("client went away")
                return len(data)

            def flush(self):
                pass

        @server.use
        def stream(request, response, context):
            response.send(b"body")
            return TERMINATE

        response = HTTPResponse(BrokenSink())

        assert server.handle(make_request("/"), response) is False
        assert response.headers_sent

    def test_file_removed_before_open_gives_500(self, server: HTTPServer, static_root: Path, monkeypatch):
        """The file passes the existence check, then vanishes before open()."""
        import httpchain.handlers.static as static_module

        monkeypatch.setattr(static_module, "_is_regular_file", lambda path: True)
        server.use(StaticFile("/public", static_root))
        response, sink = make_response()

        server.handle(make_request("/public/vanished.txt"), response)

        assert split_response(sink.getvalue())[0] == "HTTP/1.1 500 Internal Server Error"

    def test_static_then_fallback(self, server: HTTPServer, static_root: Path):
        server.use(LoggingMiddleware())
        server.use(StaticFile("/public", static_root))

        hit, hit_sink = make_response()
        miss, _ = make_response()

        server.handle(make_request("/public/readme.txt"), hit)
        server.handle(make_request("/public/nope.txt"), miss)

        assert hit.status == 200
        assert split_response(hit_sink.getvalue())[2] == b"hello from readme\n"
        assert miss.status == 404

    def test_truncated_file_closes_connection(self, server: HTTPServer, tmp_path: Path):
        path = tmp_path / "shrink.bin"
        path.write_bytes(b"x" * 100)

        class TruncatingSink(io.BytesIO):
            def write(self, data):
                if self.tell() == 0:
                    with open(path, "r+b") as f:
                        f.truncate(10)
                return super().write(data)

        @server.use
        def serve(request, response, context):
            response.send_file(path)
            return TERMINATE

        response = HTTPResponse(TruncatingSink())

        assert server.handle(make_request("/"), response) is False
        assert response.headers_sent


class TestUse:
    """Tests for pipeline building."""

    def test_use_chains_for_instances(self, server: HTTPServer, static_root: Path):
        result = server.use(LoggingMiddleware()).use(StaticFile("/public", static_root))

        assert result is server
        assert [stage.name for stage in server.pipeline] == [
            "LoggingMiddleware", "StaticFile(/public)"
        ]

    def test_use_as_decorator_returns_function(self, server: HTTPServer):
        @server.use
        def stage(request, response, context):
            return TERMINATE

        assert callable(stage)
        assert stage.__name__ == "stage"
        assert len(server.pipeline) == 1

    def test_create_app_mounts(self, config: ServerConfig, static_root: Path, tmp_path: Path):
        other = tmp_path / "other"
        other.mkdir()
        config.static_mounts = [("/public", str(static_root)), ("/other", str(other))]

        app = create_app(config)

        assert [stage.name for stage in app.pipeline] == [
            "LoggingMiddleware", "StaticFile(/public)", "StaticFile(/other)"
        ]

    def test_create_app_without_access_log(self, config: ServerConfig, static_root: Path):
        config.static_mounts = [("/public", str(static_root))]

        app = create_app(config, access_log=False)

        assert [stage.name for stage in app.pipeline] == ["StaticFile(/public)"]

    def test_create_app_missing_directory(self, config: ServerConfig, tmp_path: Path):
        config.static_mounts = [("/public", str(tmp_path / "missing"))]

        with pytest.raises(ValueError):
            create_app(config)

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            HTTPServer(ServerConfig(port=-5))


class TestLiveServer:
    """End-to-end over a real socket."""

    def test_serves_static_file(self, live_server):
        status, headers, body = split_response(live_server.get("/public/readme.txt"))

        assert status == "HTTP/1.1 200 OK"
        assert headers["content-length"] == "18"
        assert headers["connection"] == "close"
        assert body == b"hello from readme\n"

    def test_index_file(self, live_server):
        _, _, body = split_response(live_server.get("/public/docs/"))
        assert body == b"<h1>docs</h1>"

    def test_unknown_path_404(self, live_server):
        status, _, _ = split_response(live_server.get("/nothing/here"))
        assert status == "HTTP/1.1 404 Not Found"

    def test_traversal_404(self, live_server):
        raw = live_server.get("/public/%2e%2e/secret.txt")

        assert split_response(raw)[0] == "HTTP/1.1 404 Not Found"
        assert b"top secret" not in raw

    def test_head(self, live_server):
        status, headers, body = split_response(live_server.get("/public/readme.txt", method="HEAD"))

        assert status == "HTTP/1.1 200 OK"
        assert headers["content-length"] == "18"
        assert body == b""

    def test_post_falls_through_to_404(self, live_server):
        raw = live_server.request(
            b"POST /public/readme.txt HTTP/1.1\r\n"
            b"Host: 127.0.0.1\r\n"
            b"Content-Length: 3\r\n"
            b"Connection: close\r\n"
            b"\r\n"
            b"abc"
        )
        assert split_response(raw)[0] == "HTTP/1.1 404 Not Found"

    def test_malformed_request_400(self, live_server):
        raw = live_server.request(b"NOT A REQUEST\r\n\r\n")
        assert split_response(raw)[0] == "HTTP/1.1 400 Bad Request"

    def test_keep_alive_serves_two_requests(self, live_server):
        request = (
            b"GET /public/readme.txt HTTP/1.1\r\n"
            b"Host: 127.0.0.1\r\n"
            b"\r\n"
        )
        closing = (
            b"GET /public/docs/ HTTP/1.1\r\n"
            b"Host: 127.0.0.1\r\n"
            b"Connection: close\r\n"
            b"\r\n"
        )

        raw = live_server.request(request + closing)

        assert raw.count(b"HTTP/1.1 200 OK") == 2
        assert b"Connection: keep-alive" in raw
        assert raw.endswith(b"<h1>docs</h1>")

    def test_bound_port_reported(self, live_server):
        assert live_server.port != 0

        with socket.create_connection(("127.0.0.1", live_server.port), timeout=5.0):
            pass


class TestConcurrentChains:
    """Chains for different requests run in parallel without sharing context."""

    def test_parallel_requests_get_their_own_context(self, config: ServerConfig):
        server = HTTPServer(config)
        both_in_flight = threading.Barrier(2, timeout=5.0)

        @server.use
        def remember_target(request, response, context):
            context.append(request.target)
            both_in_flight.wait()
            return Continue(request, response, context)

        @server.use
        def echo_context(request, response, context):
            response.send(",".join(context))
            return TERMINATE

        live = LiveServer(server)
        live.start()
        try:
            results = {}

            def fetch(target):
                results[target] = split_response(live.get(target))

            clients = [threading.Thread(target=fetch, args=(t,)) for t in ("/a", "/b")]
            for client in clients:
                client.start()
            for client in clients:
                client.join(timeout=10.0)
        finally:
            live.stop()

        assert results["/a"][0] == "HTTP/1.1 200 OK"
        assert results["/a"][2] == b"/a"
        assert results["/b"][0] == "HTTP/1.1 200 OK"
        assert results["/b"][2] == b"/b"
