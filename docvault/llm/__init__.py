"""
LLM Gateway Package

Structured (JSON-mode) completions for the content classifier, over
langchain_openai.ChatOpenAI.

Public API::

    from docvault.llm import LLMGateway

    gateway  = LLMGateway()
    response = await gateway.complete_json(system_prompt, text, filename)
"""

from docvault.llm.gateway import GatewayResponse, LLMGateway, LLMGatewayError

__all__ = [
    "GatewayResponse",
    "LLMGateway",
    "LLMGatewayError",
]
