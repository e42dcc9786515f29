"""
LLM Gateway — Single Call Site for Structured Completions

The content classifier is the only consumer. The gateway composes:

  ┌─────────────────────────────────────────────────────┐
  │  LLMGateway.complete_json()                         │
  │       │                                             │
  │       ▼                                             │
  │  build_messages()            ← system + document    │
  │       │                                             │
  │       ▼                                             │
  │  ChatOpenAI (JSON mode)      ← asyncio.wait_for     │
  │       │                                             │
  │       ▼                                             │
  │  GatewayResponse             ← content + usage      │
  └─────────────────────────────────────────────────────┘

The gateway never parses the payload; schema enforcement belongs to the
classifier. Any provider error or timeout surfaces as LLMGatewayError so
the caller has one exception type to degrade on.

Usage::

    gateway  = LLMGateway()
    response = await gateway.complete_json(SYSTEM_PROMPT, text, "statement.pdf")
    payload  = json.loads(response.content)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

logger = logging.getLogger(__name__)

# Characters of document text forwarded to the model
MAX_PROMPT_CHARS = 4000


class LLMGatewayError(Exception):
    """Provider error, timeout or empty completion."""


# ---------------------------------------------------------------------------
# Token usage estimation (approximate, the API response carries the real count)
# ---------------------------------------------------------------------------

def _estimate_tokens(messages: list[BaseMessage]) -> int:
    """Rough token count: 4 chars ≈ 1 token (OpenAI heuristic)."""
    total_chars = sum(len(m.content) for m in messages if isinstance(m.content, str))  # type: ignore
    return max(1, total_chars // 4)


# ---------------------------------------------------------------------------
# LLMGateway
# ---------------------------------------------------------------------------

class LLMGateway:
    """
    JSON-mode completion over a LangChain chat model.

    Pass `llm` to inject a model (tests use a MagicMock with an AsyncMock
    `ainvoke`); otherwise a ChatOpenAI is built from settings on first use.
    """

    def __init__(
        self,
        llm:     BaseChatModel | None = None,
        timeout: float | None = None,
    ) -> None:
        self._llm     = llm
        self._timeout = timeout

    def _get_llm(self):
        if self._llm is None:
            from langchain_openai import ChatOpenAI
            from docvault.core.config import settings

            self._llm = ChatOpenAI(
                model=settings.llm_model,
                api_key=settings.openai_api_key,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            ).bind(response_format={"type": "json_object"})
        return self._llm

    def _get_timeout(self) -> float:
        if self._timeout is None:
            from docvault.core.config import settings
            self._timeout = settings.llm_timeout_seconds
        return self._timeout

    # -----------------------------------------------------------------------
    # Structured completion
    # -----------------------------------------------------------------------

    async def complete_json(
        self,
        system_prompt: str,
        document_text: str,
        filename:      str,
    ) -> "GatewayResponse":
        """
        Ask the model for a JSON object describing the document.

        Args:
            system_prompt: Fixed structured-output instruction.
            document_text: Extracted text; only the first MAX_PROMPT_CHARS are sent.
            filename:      Original filename, forwarded as a hint.

        Returns:
            GatewayResponse whose `content` is the raw completion string.

        Raises:
            LLMGatewayError on timeout, provider error or empty content.
        """
        messages = self.build_messages(system_prompt, document_text, filename)
        timeout  = self._get_timeout()
        try:
            llm = self._get_llm()
        except Exception as exc:
            raise LLMGatewayError(f"LLM client unavailable: {type(exc).__name__}: {exc}") from exc

        t0 = time.perf_counter()
        try:
            result = await asyncio.wait_for(llm.ainvoke(messages), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise LLMGatewayError(f"LLM call timed out after {timeout}s") from exc
        except Exception as exc:
            raise LLMGatewayError(f"LLM call failed: {type(exc).__name__}: {exc}") from exc
        latency = (time.perf_counter() - t0) * 1000

        content = getattr(result, "content", result)
        if not isinstance(content, str) or not content.strip():
            raise LLMGatewayError("LLM returned an empty completion")

        usage = getattr(result, "usage_metadata", None) or {}
        response = GatewayResponse(
            content       = content,
            model_used    = self._model_name(llm),
            input_tokens  = usage.get("input_tokens") or _estimate_tokens(messages),
            output_tokens = usage.get("output_tokens") or max(1, len(content) // 4),
            latency_ms    = latency,
            request_id    = str(uuid.uuid4()),
        )

        logger.info(
            "LLMGateway | model=%s tokens_in=%d tokens_out=%d latency_ms=%.1f",
            response.model_used, response.input_tokens,
            response.output_tokens, response.latency_ms,
        )
        return response

    @staticmethod
    def _model_name(llm) -> str:
        bound = getattr(llm, "bound", llm)
        name  = getattr(bound, "model_name", None) or getattr(bound, "model", None)
        return name if isinstance(name, str) else "unknown"

    # -----------------------------------------------------------------------
    # Convenience: build message list
    # -----------------------------------------------------------------------

    @staticmethod
    def build_messages(
        system_prompt: str,
        document_text: str,
        filename:      str,
    ) -> list[BaseMessage]:
        """
        Build the [SystemMessage, HumanMessage] pair.

        The human turn carries the filename and the truncated text.
        """
        excerpt = document_text[:MAX_PROMPT_CHARS]
        return [
            SystemMessage(content=system_prompt),
            HumanMessage(content=f"Document name: {filename}\n\nDocument text:\n{excerpt}"),
        ]


# ---------------------------------------------------------------------------
# Response dataclass
# ---------------------------------------------------------------------------

@dataclass
class GatewayResponse:
    """The result of a single structured completion."""
    content:       str
    model_used:    str
    input_tokens:  int
    output_tokens: int
    latency_ms:    float
    request_id:    str
