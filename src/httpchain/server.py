"""
=============================================================================
HTTP SERVER
=============================================================================

Ties the socket server, the thread pool and the stage pipeline together.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    HTTP SERVER ARCHITECTURE                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   HTTPServer    │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────┐    ┌────────────────────┐  │
    │    │ SocketServer │    │  ThreadPool  │    │ MiddlewarePipeline │  │
    │    └──────┬───────┘    └──────┬───────┘    └────────────────────┘  │
    │           ▼                   ▼                                     │
    │    ┌──────────────┐    ┌──────────────┐                            │
    │    │  Connection  │    │ keep-alive   │                            │
    │    │  (byte sink) │    │ request loop │                            │
    │    └──────────────┘    └──────────────┘                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    1. SocketServer accepts, wraps the socket in a Connection
    2. Connection queued on the ThreadPool
    3. Worker reads bytes, RequestParser builds an HTTPRequest
    4. A fresh context (context_factory()) and an HTTPResponse bound to
       the Connection are created
    5. The pipeline runs: Continue ... Continue, or TERMINATE
    6. Nothing answered?         → 404 Not Found
       A stage raised, head unsent → 500 Internal Server Error
       A stage raised mid-body     → connection closed
    7. Keep-alive: back to 3. Otherwise close.

A failure in one request never stops the server: it costs that request
(and at worst its connection), nothing else.

=============================================================================
"""

from typing import Any, Callable, Optional, Union
import logging
import time

from .config import ServerConfig
from .core import SocketServer, Connection, ConnectionState, RequestTooLarge, ThreadPool
from .http import (
    HTTPRequest, RequestParser, HTTPParseError,
    HTTPResponse, HTTPStatus,
    send_text, not_found, internal_error,
)
from .handlers import StaticFile
from .middleware import MiddlewarePipeline, Middleware, LoggingMiddleware
from .middleware.base import StageFunc


logger = logging.getLogger(__name__)


class HTTPServer:
    """
    HTTP/1.1 server driving a forward-only stage pipeline.

    =========================================================================
    USAGE
    =========================================================================

        server = HTTPServer(ServerConfig(port=8080))

        server.use(LoggingMiddleware())
        server.use(StaticFile("/public", "./public"))

        @server.use
        def hello(request, response, context):
            if request.path == "/hello":
                response.send(b"hello")
                return TERMINATE
            return Continue(request, response, context)

        server.run()        # blocks until Ctrl+C / shutdown()

    =========================================================================
    CONTEXT
    =========================================================================

    context_factory() is called once per request and the result is handed
    to the first stage. The default is list, so every request starts with
    its own empty list that stages can append notes to. Nothing is shared
    between requests unless the factory returns a shared object.

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        context_factory: Callable[[], Any] = list,
    ):
        self.config = config or ServerConfig()
        self.config.validate()

        self._context_factory = context_factory

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )
        self._parser = RequestParser(max_request_size=self.config.max_request_size)

        self._pipeline = MiddlewarePipeline()

        self._running = False

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def use(self, stage: Union[Middleware, StageFunc]) -> Union[Middleware, StageFunc, "HTTPServer"]:
        """
        Append a stage to the pipeline.

        Stages run in the order they were added. Works as a decorator for
        plain functions, in which case the function is returned unchanged.

        Returns:
            Self for chaining when given a Middleware instance.
        """
        self._pipeline.add(stage)
        if isinstance(stage, Middleware):
            return self
        return stage

    @property
    def pipeline(self) -> MiddlewarePipeline:
        return self._pipeline

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port). With port=0 this is the port actually picked."""
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def handle(self, request: HTTPRequest, response: HTTPResponse, context: Any = None) -> bool:
        """
        Run the pipeline over one request and make sure it gets an answer.

        Independent of sockets: response can be bound to any sink, which is
        how the tests drive it.

        Args:
            request: Parsed request.
            response: Unsent response for it.
            context: Context for the first stage; context_factory() if None.

        Returns:
            True if the response was completed and the connection can be
            reused, False if it was cut off mid-body and must be closed.
        """
        if context is None:
            context = self._context_factory()

        start_time = time.time()

        try:
            result = self._pipeline.run(request, response, context)
        except Exception as e:
            logger.exception(f"Stage failed on {request.method} {request.target}: {e}")
            if response.headers_sent:
                return False
            internal_error(response)
            self._log_completion(request, response, start_time)
            return True

        if response.headers_sent and not response.finished:
            logger.error(f"Response to {request.method} {request.target} left half-written")
            return False

        if not response.finished:
            if result is None:
                logger.warning(
                    f"Pipeline terminated without answering {request.method} {request.target}"
                )
            not_found(response)

        self._log_completion(request, response, start_time)
        return True

    def _log_completion(self, request: HTTPRequest, response: HTTPResponse, start_time: float):
        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            f"{request.method} {request.target} -> {int(response.status)} "
            f"({response.bytes_sent} bytes, {duration_ms:.2f}ms)"
        )

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """
        Start the server (blocking).

        Args:
            host: Override config host.
            port: Override config port.

        Raises:
            OSError: If the address cannot be bound.
        """
        if host:
            self.config.host = host
        if port is not None:
            self.config.port = port

        self._running = True
        self._setup_logging()
        self._thread_pool.start()

        logger.info(
            f"Starting {self.config.server_name} with {len(self._pipeline)} stages, "
            f"{self.config.min_workers}-{self.config.max_workers} workers"
        )
        for stage in self._pipeline:
            logger.info(f"  stage: {stage.name}")

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def shutdown(self):
        """Ask a running server to stop. Safe from any thread."""
        self._socket_server.shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listening socket is up. For tests and embedders."""
        return self._socket_server.wait_until_ready(timeout)

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("httpchain").setLevel(level)

    def _shutdown(self):
        """Stop accepting, let in-flight connections finish, stop workers."""
        logger.info("Shutting down server...")
        self._running = False
        self._thread_pool.shutdown(wait=True, timeout=30.0)
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Called by SocketServer on the accept thread: hand off to a worker."""
        try:
            submitted = self._thread_pool.submit(self._process_connection, args=(conn,))
        except RuntimeError:
            conn.close()
            return

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()

    def _process_connection(self, conn: Connection):
        """Keep-alive loop for one connection. Runs on a worker thread."""
        with conn:
            while self._running:
                try:
                    raw_request = conn.read_request()
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request Timeout")
                    break
                except RequestTooLarge as e:
                    logger.warning(f"[{conn.id}] {e}")
                    self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, "Payload Too Large")
                    break

                if raw_request is None:
                    break

                try:
                    request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    logger.info(f"[{conn.id}] Bad request: {e}")
                    self._send_error(conn, HTTPStatus(e.status_code), str(e))
                    break

                conn.state = ConnectionState.PROCESSING
                keep_alive = request.is_keep_alive and self.config.keep_alive

                response = HTTPResponse(
                    conn,
                    version=request.version,
                    server_name=self.config.server_name,
                    head_only=request.method == "HEAD",
                )
                if keep_alive:
                    response.set_header("Connection", "keep-alive")
                    response.set_header("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
                else:
                    response.set_header("Connection", "close")

                try:
                    completed = self.handle(request, response)
                except OSError as e:
                    # Client went away while an error page was being written.
                    logger.debug(f"[{conn.id}] Send failed: {e}")
                    break

                if not completed or not keep_alive:
                    break

                conn.set_keep_alive()

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str):
        """Answer outside the pipeline (parse errors, timeouts) and close."""
        response = HTTPResponse(conn, server_name=self.config.server_name)
        response.set_header("Connection", "close")
        try:
            send_text(response, status, message)
        except OSError as e:
            logger.debug(f"[{conn.id}] Could not send {int(status)}: {e}")


def create_app(
    config: Optional[ServerConfig] = None,
    context_factory: Callable[[], Any] = list,
    access_log: bool = True,
) -> HTTPServer:
    """
    Build the standard pipeline: LoggingMiddleware (unless access_log is
    False), then one StaticFile stage per configured mount, in order.

        app = create_app(ServerConfig(static_mounts=[("/public", "./public")]))
        app.run()

    Raises:
        ValueError: If a mount's directory does not exist.
    """
    server = HTTPServer(config, context_factory=context_factory)
    if access_log:
        # First, so it also sees requests a static mount answers.
        server.use(LoggingMiddleware(log_format=server.config.log_format))
    for url_root, fs_root in server.config.static_mounts:
        server.use(StaticFile(url_root, fs_root))
    return server
