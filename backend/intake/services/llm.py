"""
Language-model client.

Thin wrapper around the Anthropic Messages API exposing a single
``complete(system_prompt, user_prompt, ...)`` call that returns the response
text.  The SDK is synchronous, so the call runs in a worker thread.

Environment variables
---------------------
ANTHROPIC_API_KEY    API key (required unless passed explicitly)
RESUME_PARSER_MODEL  Model override (default: MODEL)
"""

import asyncio
import logging
import os
from typing import Optional

import anthropic

logger = logging.getLogger(__name__)

# Model configuration
MODEL = "claude-sonnet-4-5-20250929"
MAX_TOKENS = 4096
MAX_RETRIES = 3

# Prefilled assistant turn that forces the reply to start as a JSON object
_JSON_PREFILL = "{"


def strip_code_fences(raw_text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```)."""
    json_text = raw_text.strip()
    if json_text.startswith("```"):
        lines = json_text.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        json_text = "\n".join(lines)
    return json_text.strip()


class LanguageModelClient:
    """Anthropic-backed completion client."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        if api_key is None:
            api_key = os.getenv("ANTHROPIC_API_KEY")
        self.model = model or os.getenv("RESUME_PARSER_MODEL") or MODEL
        self._client = anthropic.Anthropic(api_key=api_key, max_retries=MAX_RETRIES)
        self.last_usage: dict = {}

    def _complete_sync(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        messages = [{"role": "user", "content": user_prompt}]
        if json_mode:
            messages.append({"role": "assistant", "content": _JSON_PREFILL})

        response = self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=messages,
        )

        self.last_usage = {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
            "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
        }
        logger.info(
            "Model %s used %d input / %d output tokens",
            model, self.last_usage["input_tokens"], self.last_usage["output_tokens"],
        )

        raw_text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        text = strip_code_fences(raw_text)
        if json_mode and not text.startswith(_JSON_PREFILL):
            text = _JSON_PREFILL + text
        return text

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = MAX_TOKENS,
        json_mode: bool = False,
    ) -> str:
        """
        Send one prompt and return the response text.

        With ``json_mode`` the reply is forced to begin with ``{`` and any
        surrounding code fence is removed; the text is not otherwise altered.
        """
        return await asyncio.to_thread(
            self._complete_sync,
            system_prompt,
            user_prompt,
            model or self.model,
            temperature,
            max_tokens,
            json_mode,
        )
