# app/llm_provider.py
"""
Provider-agnostic LLM completion wrapper.

Controlled by Settings (see config.py):
  LLM_PROVIDER=openai|anthropic   (default: openai)
  LLM_MODEL=<model-name>          (default: openai/gpt-3.5-turbo)
  LLM_BASE_URL=<url>              (OpenAI-compatible endpoint, default OpenRouter)

Required keys (depending on provider):
  OPENROUTER_API_KEY=... or OPENAI_API_KEY=sk-...
  ANTHROPIC_API_KEY=sk-ant-...

Usage:
  complete = make_completer(settings)
  text = complete("Category: art ...", system="You are ...")
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from config import Settings

logger = logging.getLogger(__name__)

Completer = Callable[..., str]

_DEFAULT_ANTHROPIC_MODEL = "claude-haiku-4-5-20251001"


def make_completer(settings: Settings) -> Optional[Completer]:
    """Return a completion callable, or None when no credentials are configured."""
    provider = settings.llm_provider

    if provider == "anthropic":
        if not settings.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY not set; enrichment disabled")
            return None
        model = settings.llm_model if settings.llm_model.startswith("claude") else _DEFAULT_ANTHROPIC_MODEL
    else:
        if not settings.llm_api_key:
            logger.warning("LLM API key not set; enrichment disabled")
            return None
        model = settings.llm_model

    logger.info("LLM provider: %s, model: %s", provider, model)

    def complete(
        prompt: str,
        *,
        system: str = "",
        max_tokens: int = 200,
        temperature: float = 0.7,
    ) -> str:
        if provider == "anthropic":
            return _complete_anthropic(settings, prompt, system, max_tokens, temperature, model)
        return _complete_openai(settings, prompt, system, max_tokens, temperature, model)

    return complete


def _complete_openai(settings, prompt, system, max_tokens, temperature, model):
    from openai import OpenAI

    client = OpenAI(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        timeout=settings.enrichment_timeout,
        max_retries=0,
        default_headers={"X-Title": "TalentLink DAO"},
    )

    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    resp = client.chat.completions.create(
        model=model,
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens,
        stream=False,
    )
    return (resp.choices[0].message.content or "").strip()


def _complete_anthropic(settings, prompt, system, max_tokens, temperature, model):
    import anthropic

    client = anthropic.Anthropic(
        api_key=settings.anthropic_api_key,
        timeout=settings.enrichment_timeout,
        max_retries=0,
    )

    kwargs = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system:
        kwargs["system"] = system
    if temperature is not None:
        kwargs["temperature"] = temperature

    resp = client.messages.create(**kwargs)
    return resp.content[0].text.strip()
