"""
=============================================================================
LOGGING MIDDLEWARE
=============================================================================

Logs every request that enters the pipeline and always continues.

Put it first so it sees requests that a later stage answers:

    pipeline.add(LoggingMiddleware())            # sees everything
    pipeline.add(StaticFile("/public", "./public"))

Stages only run forward, so this stage logs what came in. How the request
was answered (status, bytes) is logged by HTTPServer once the chain is done.

Output formats:

    text:  LOG GET /public/index.html 127.0.0.1 "curl/8.4.0" [a1b2c3d4]
    json:  {"request_id": "a1b2c3d4", "method": "GET", ...}

=============================================================================
"""

from dataclasses import dataclass, asdict
from typing import Any, Optional
import json
import logging
import time
import uuid

from .base import Middleware, Continue, Outcome
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


# Namespaced so operators can route access lines separately:
#   logging.getLogger("httpchain.access").addHandler(file_handler)
logger = logging.getLogger("httpchain.access")


@dataclass
class RequestLog:
    """One structured access-log entry."""

    request_id: str
    method: str
    target: str
    client_ip: str
    user_agent: str
    timestamp: str

    def to_dict(self) -> dict:
        return asdict(self)

    def to_text(self) -> str:
        return (
            f'LOG {self.method} {self.target} {self.client_ip or "-"} '
            f'"{self.user_agent}" [{self.request_id}]'
        )


class LoggingMiddleware(Middleware):
    """
    Request logging stage.

    Args:
        log_format: "text" or "json".
        include_request_id: Set an X-Request-ID header on the response so
                            clients can quote it when reporting problems.
        log_level: Level access lines are emitted at.
        skip_paths: Request paths not to log (exact match).
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[list[str]] = None,
    ):
        if log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {log_format!r}")

        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    def __call__(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        context: Any,
    ) -> Outcome:
        # 8 hex chars of a UUID4 is plenty to correlate lines.
        request_id = uuid.uuid4().hex[:8]

        if self.include_request_id and not response.headers_sent:
            response.set_header("X-Request-ID", request_id)

        if request.path in self.skip_paths:
            return Continue(request, response, context)

        entry = RequestLog(
            request_id=request_id,
            method=request.method,
            target=request.target,
            client_ip=request.client_address[0],
            user_agent=request.user_agent or "-",
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())

        return Continue(request, response, context)
