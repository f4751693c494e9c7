"""
=============================================================================
BASE MIDDLEWARE INTERFACE
=============================================================================

Defines the stage contract and the executor that runs stages in order.

=============================================================================
THE STAGE CONTRACT
=============================================================================

A stage receives the request, the response and a caller-defined context,
and answers with one of exactly two outcomes:

    Continue(request, response, context)    hand the triple to the next stage
    TERMINATE                               stop; no further stage runs

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         PIPELINE FLOW                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   (req, res, ctx)                                                   │
    │        │                                                             │
    │        ▼                                                             │
    │   ┌──────────┐  Continue  ┌──────────┐  Continue  ┌──────────┐      │
    │   │  Logger  │──────────► │  Static  │──────────► │  Stage C │ ──►  │
    │   └──────────┘            └────┬─────┘            └──────────┘      │
    │                                │                                     │
    │                                │ TERMINATE                           │
    │                                ▼                                     │
    │                        chain ends, result None                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Unlike a wrap-around ("onion") pipeline there is no way back up the chain:
a stage does its work and either hands over or finishes. Whatever the
response needs must be written before it terminates.

=============================================================================
OWNERSHIP
=============================================================================

Each call hands the triple to the stage. The stage gives it back inside
Continue or keeps it by terminating. The executor passes along whatever the
stage returned, so a stage may swap in a new context object (an immutable
tuple, say) and the next stage sees that one. Nothing is copied, and no
stage runs after a stage that terminated.

Early exit is ordinary control flow, so it is a return value and not an
exception.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Iterator, NamedTuple, Optional, Union
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


# =============================================================================
# OUTCOMES
# =============================================================================

class Continue(NamedTuple):
    """
    Outcome that forwards the (possibly mutated) triple to the next stage.

    A NamedTuple so results unpack directly:

        request, response, context = pipeline.run(req, res, ctx)
    """

    request: HTTPRequest
    response: HTTPResponse
    context: Any


class Terminate:
    """
    Outcome that ends the chain. Use the TERMINATE singleton.
    """

    _instance: Optional["Terminate"] = None

    def __new__(cls) -> "Terminate":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "TERMINATE"

    def __bool__(self) -> bool:
        return False


TERMINATE = Terminate()

Outcome = Union[Continue, Terminate]

# Signature of a plain function stage.
StageFunc = Callable[[HTTPRequest, HTTPResponse, Any], Outcome]


class Middleware(ABC):
    """
    Abstract base class for pipeline stages.

    =========================================================================
    ANATOMY OF A STAGE
    =========================================================================

        class RequireHost(Middleware):
            def __call__(self, request, response, context):
                if not request.host:
                    send_text(response, HTTPStatus.BAD_REQUEST, "Host required")
                    return TERMINATE          # short-circuit

                context.append(f"host={request.host}")
                return Continue(request, response, context)

    A stateful stage (StaticFile) and a plain function wrapped by
    FunctionMiddleware are dispatched the same way by the executor.

    =========================================================================
    """

    @abstractmethod
    def __call__(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        context: Any,
    ) -> Outcome:
        """
        Process one request.

        Args:
            request: The in-flight request.
            response: The response; may already be written by this stage.
            context: Caller-defined value shared by the whole chain.

        Returns:
            Continue(request, response, context) to pass along, or
            TERMINATE to end the chain.
        """

    @property
    def name(self) -> str:
        """Name used in log lines."""
        return self.__class__.__name__


# =============================================================================
# FUNCTION MIDDLEWARE
# =============================================================================

class FunctionMiddleware(Middleware):
    """
    Adapts a plain function or closure to the Middleware interface.

        def tag(request, response, context):
            context.append("tagged")
            return Continue(request, response, context)

        pipeline.add(FunctionMiddleware(tag))
        pipeline.add(tag)           # same thing, add() wraps callables
    """

    def __init__(self, func: StageFunc, name: Optional[str] = None):
        self._func = func
        self._name = name or getattr(func, "__name__", repr(func))

    def __call__(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        context: Any,
    ) -> Outcome:
        return self._func(request, response, context)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(func: StageFunc) -> FunctionMiddleware:
    """
    Decorator form of FunctionMiddleware.

        @function_middleware
        def greet(request, response, context):
            response.send(b"hi")
            return TERMINATE
    """
    return FunctionMiddleware(func)


def as_middleware(stage: Union[Middleware, StageFunc]) -> Middleware:
    """Return stage unchanged if it is a Middleware, else wrap it."""
    if isinstance(stage, Middleware):
        return stage
    if callable(stage):
        return FunctionMiddleware(stage)
    raise TypeError(f"Not a middleware stage: {stage!r}")


# =============================================================================
# EXECUTOR
# =============================================================================

def process_middleware(
    stages: Iterable[Union[Middleware, StageFunc]],
    request: HTTPRequest,
    response: HTTPResponse,
    context: Any,
) -> Optional[Continue]:
    """
    Run stages in order over one request.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   current = (request, response, context)                            │
    │   for stage in stages:                                              │
    │       outcome = stage(*current)                                     │
    │       TERMINATE  → return None                                      │
    │       Continue   → current = outcome                                │
    │   return current                                                    │
    └─────────────────────────────────────────────────────────────────────┘

    An empty stage list returns the input triple unchanged. Producing a
    fallback response when nothing terminated is the caller's job.

    Exceptions raised by a stage propagate to the caller untouched.

    Returns:
        The final Continue, or None if a stage terminated.

    Raises:
        TypeError: If a stage returns something that is not an outcome.
    """
    current = Continue(request, response, context)

    for stage in stages:
        stage = as_middleware(stage)
        outcome = stage(*current)

        if outcome is TERMINATE:
            logger.debug(f"{stage.name} terminated the chain")
            return None

        if not isinstance(outcome, Continue):
            raise TypeError(
                f"Stage {stage.name} returned {type(outcome).__name__}, "
                f"expected Continue or TERMINATE"
            )

        current = outcome

    return current


class MiddlewarePipeline(Middleware):
    """
    An ordered, reusable list of stages.

    =========================================================================
    USAGE
    =========================================================================

        pipeline = MiddlewarePipeline()
        pipeline.add(LoggingMiddleware())
        pipeline.add(StaticFile("/public", "./public"))

        result = pipeline.run(request, response, [])
        if result is None:
            ...                         # a stage answered
        else:
            request, response, context = result   # nobody did

    A pipeline is itself a stage: it continues when its inner stages all
    continue and terminates when one of them does, so pipelines nest.

        assets = MiddlewarePipeline().use(
            StaticFile("/css", "./css"),
            StaticFile("/js", "./js"),
        )
        pipeline.add(assets)

    =========================================================================
    """

    def __init__(self, stages: Optional[Iterable[Union[Middleware, StageFunc]]] = None):
        self._stages: list[Middleware] = []
        for stage in stages or ():
            self.add(stage)

    def add(self, stage: Union[Middleware, StageFunc]) -> "MiddlewarePipeline":
        """
        Append a stage. Plain callables are wrapped in FunctionMiddleware.

        Returns:
            Self for chaining.
        """
        stage = as_middleware(stage)
        self._stages.append(stage)
        logger.debug(f"Added middleware: {stage.name}")
        return self

    def use(self, *stages: Union[Middleware, StageFunc]) -> "MiddlewarePipeline":
        """Append several stages at once."""
        for stage in stages:
            self.add(stage)
        return self

    def run(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        context: Any,
    ) -> Optional[Continue]:
        """Run every stage over one request. See process_middleware()."""
        return process_middleware(self._stages, request, response, context)

    def __call__(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        context: Any,
    ) -> Outcome:
        result = self.run(request, response, context)
        return TERMINATE if result is None else result

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._stages)
