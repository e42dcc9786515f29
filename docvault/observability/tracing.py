"""
Observability Tracing — LangSmith + Stage Timing

Every pipeline stage is wrapped in @traced, so each document run leaves a
timing line per stage in the logs:

  trace | span=pipeline.extract elapsed_ms=812.4 ok
  trace | span=pipeline.classify elapsed_ms=1930.0 ok
  trace | span=pipeline.embed elapsed_ms=30001.2 error=Embedding call timed out …

LangSmith (hosted):
  - Set LANGCHAIN_TRACING_V2=true, LANGCHAIN_API_KEY, LANGCHAIN_PROJECT
  - LangChain picks these up on import, so classifier completions made
    through ChatOpenAI are traced with no code changes
  - TracingConfig.init() copies LANGSMITH_API_KEY / LANGSMITH_PROJECT from
    settings into those variables when they are not already set
"""

from __future__ import annotations

import functools
import logging
import os
import time
from typing import Any, Callable, Coroutine, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])


# ---------------------------------------------------------------------------
# TracingConfig: initialise at app / worker startup
# ---------------------------------------------------------------------------

class TracingConfig:
    """
    Call once at startup::

        from docvault.observability.tracing import TracingConfig
        TracingConfig.init()
    """

    _initialised: bool = False

    @classmethod
    def init(cls) -> None:
        if cls._initialised:
            return
        cls._initialised = True
        cls._init_langsmith()

    @staticmethod
    def _init_langsmith() -> None:
        from docvault.core.config import settings

        langsmith_key     = settings.langsmith_api_key
        langsmith_project = settings.langsmith_project

        if langsmith_key and not os.environ.get("LANGCHAIN_API_KEY"):
            os.environ["LANGCHAIN_TRACING_V2"] = "true"
            os.environ["LANGCHAIN_API_KEY"]     = langsmith_key
            os.environ["LANGCHAIN_PROJECT"]     = langsmith_project
            logger.info("LangSmith tracing enabled | project=%s", langsmith_project)
        elif os.environ.get("LANGCHAIN_TRACING_V2") == "true":
            logger.info(
                "LangSmith tracing active (from env) | project=%s",
                os.environ.get("LANGCHAIN_PROJECT", "default"),
            )
        else:
            logger.debug("LangSmith tracing disabled (LANGCHAIN_TRACING_V2 not set)")


# ---------------------------------------------------------------------------
# @traced decorator
# ---------------------------------------------------------------------------

def traced(name: str | None = None) -> Callable[[F], F]:
    """
    Instrument an async function with timing and error logging.

    Usage::

        @traced("pipeline.extract")
        async def _extract(self, doc): ...

        @traced()   # uses the function's qualified name
        async def index(self, document_id, text): ...
    """
    def decorator(func: F) -> F:
        span_name = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                elapsed_ms = (time.perf_counter() - t0) * 1000
                logger.debug("trace | span=%s elapsed_ms=%.1f ok", span_name, elapsed_ms)
                return result
            except Exception as exc:
                elapsed_ms = (time.perf_counter() - t0) * 1000
                logger.warning(
                    "trace | span=%s elapsed_ms=%.1f error=%s",
                    span_name, elapsed_ms, exc,
                )
                raise

        return wrapper  # type: ignore[return-value]
    return decorator
