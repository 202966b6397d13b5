"""Conversation layer: state, collaborators, state machine and orchestrator.

The module-level LLM client is shared by the understanding and
classification collaborators:

- :func:`get_llm_client`: the configured client, built on first call
  (``None`` when no backend is configured or AI is disabled).
- :func:`set_llm_client`: override it (useful for testing).
"""

from __future__ import annotations

import logging

from expensechat.agent.llm_client import LLMClient, build_llm_client

logger = logging.getLogger(__name__)

# Module-level LLM client, lazily initialized.
_llm_client: LLMClient | None = None
_llm_client_ready = False


def get_llm_client() -> LLMClient | None:
    """Return the module-level LLM client, creating it on first call."""
    global _llm_client, _llm_client_ready
    if not _llm_client_ready:
        _llm_client = build_llm_client()
        _llm_client_ready = True
    return _llm_client


def set_llm_client(client: LLMClient | None) -> None:
    """Override the module-level LLM client (useful for testing)."""
    global _llm_client, _llm_client_ready
    _llm_client = client
    _llm_client_ready = True
