"""
=============================================================================
MIDDLEWARE FRAMEWORK
=============================================================================

Stages run one after another over (request, response, context):

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    MIDDLEWARE PIPELINE                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Incoming Request + fresh Context                                  │
    │        │                                                             │
    │        ▼                                                             │
    │   ┌──────────────────┐                                              │
    │   │ LoggingMiddleware │ ──► logs, always continues                   │
    │   └────────┬─────────┘                                              │
    │            ▼                                                         │
    │   ┌──────────────────┐                                              │
    │   │ StaticFile        │ ──► serves and TERMINATEs, or continues      │
    │   └────────┬─────────┘                                              │
    │            ▼                                                         │
    │   ┌──────────────────┐                                              │
    │   │ your stages       │                                              │
    │   └────────┬─────────┘                                              │
    │            ▼                                                         │
    │   nobody answered → HTTPServer sends 404                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .base import (
    Middleware,
    MiddlewarePipeline,
    FunctionMiddleware,
    function_middleware,
    process_middleware,
    Continue,
    Terminate,
    TERMINATE,
    Outcome,
)
from .logging import LoggingMiddleware

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "FunctionMiddleware",
    "function_middleware",
    "process_middleware",
    "Continue",
    "Terminate",
    "TERMINATE",
    "Outcome",

    "LoggingMiddleware",
]
