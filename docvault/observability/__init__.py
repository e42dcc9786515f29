"""
Observability Package — Tracing

Provides:
  TracingConfig   — LangSmith initialisation
  traced          — decorator for timing async pipeline stages

Usage::

    # At app / worker startup:
    from docvault.observability import TracingConfig
    TracingConfig.init()
"""

from docvault.observability.tracing import TracingConfig, traced

__all__ = ["TracingConfig", "traced"]
