"""
Completion service wrapper around the Anthropic Messages API.

Every agent talks to the language model through ``CompletionService`` so
tests can substitute a fake with the same ``complete``/``complete_json``
coroutines.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

import anthropic

from autopilot.config import MODEL_HAIKU, MODEL_SONNET
from autopilot.errors import CompletionError

logger = logging.getLogger("autopilot.llm")

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")


def _truncate(text: str, length: int) -> str:
    if len(text) <= length:
        return text
    return text[:length - 3] + "..."


def extract_json(text: str) -> Any:
    """Parse JSON from a model reply, tolerating code fences and prose around it."""
    text = text.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for pattern in (r"\{[\s\S]*\}", r"\[[\s\S]*\]"):
        match = re.search(pattern, text)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                continue
    raise ValueError(f"Could not parse JSON from AI response: {_truncate(text, 200)}")


class CompletionService:
    """Thin async facade over ``anthropic.AsyncAnthropic``."""

    def __init__(
        self,
        api_key: str = "",
        content_model: str = MODEL_SONNET,
        review_model: str = MODEL_HAIKU,
        client: Optional[Any] = None,
    ) -> None:
        self.api_key = api_key
        self.content_model = content_model
        self.review_model = review_model
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise CompletionError("ANTHROPIC_API_KEY not set. Cannot call AI model.")
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
    ) -> str:
        """Return the text of a single-turn completion."""
        client = self._get_client()
        system_messages = []
        if system:
            system_messages = [
                {
                    "type": "text",
                    "text": system,
                    "cache_control": {"type": "ephemeral"},
                }
            ]
        try:
            response = await client.messages.create(
                model=model or self.content_model,
                max_tokens=max_tokens,
                system=system_messages if system_messages else anthropic.NOT_GIVEN,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as exc:
            raise CompletionError(f"Completion request failed: {exc}") from exc

        text = response.content[0].text if response.content else ""
        logger.debug("Completion (%s) returned %d chars", model or self.content_model, len(text))
        return text

    async def complete_json(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
    ) -> Any:
        """Like ``complete`` but parses the reply as JSON."""
        text = await self.complete(prompt, system=system, model=model, max_tokens=max_tokens)
        try:
            return extract_json(text)
        except ValueError as exc:
            raise CompletionError(str(exc)) from exc
