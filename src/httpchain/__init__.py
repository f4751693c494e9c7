"""
=============================================================================
HTTPCHAIN - HTTP/1.1 Server With a Forward-Only Stage Pipeline
=============================================================================

Every request flows through an ordered list of stages. Each stage either
hands (request, response, context) to the next one or ends the chain.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   request ──► Logger ──► StaticFile("/public") ──► ... ──► 404      │
    │                               │                                      │
    │                               └── file found: send it, TERMINATE    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    httpchain/
    ├── __init__.py          # package exports
    ├── __main__.py          # CLI entry point (python -m httpchain)
    ├── server.py            # HTTPServer: pipeline + fallbacks + keep-alive
    ├── config.py            # ServerConfig dataclass
    ├── core/
    │   ├── socket_server.py # listening socket, accept loop
    │   ├── connection.py    # client socket, byte sink for responses
    │   └── thread_pool.py   # worker threads
    ├── http/
    │   ├── request.py       # request parsing
    │   ├── response.py      # write-once response channel
    │   └── status_codes.py  # status enum
    ├── middleware/
    │   ├── base.py          # stage contract and executor
    │   └── logging.py       # request logging stage
    └── handlers/
        └── static.py        # resolver, containment guard, StaticFile

=============================================================================
QUICK START
=============================================================================

    from httpchain import HTTPServer, ServerConfig, Continue, TERMINATE
    from httpchain.handlers import StaticFile
    from httpchain.middleware import LoggingMiddleware

    server = HTTPServer(ServerConfig(port=8080))
    server.use(LoggingMiddleware())
    server.use(StaticFile("/public", "./public"))

    @server.use
    def hello(request, response, context):
        if request.path == "/hello":
            response.send("Hello, World!")
            return TERMINATE
        return Continue(request, response, context)

    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .server import HTTPServer, create_app
from .config import ServerConfig
from .middleware import Continue, TERMINATE, MiddlewarePipeline, process_middleware

__all__ = [
    "HTTPServer",
    "create_app",
    "ServerConfig",
    "Continue",
    "TERMINATE",
    "MiddlewarePipeline",
    "process_middleware",
    "__version__",
]
