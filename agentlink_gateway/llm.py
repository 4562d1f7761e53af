"""Chat-completion client used to consult advisors.

`ChatClient` is the seam the deliberation rounds call through. The production
implementation talks to Groq; the blocking SDK call runs in a worker thread so
the event loop keeps serving other requests.
"""

from __future__ import annotations

import abc
import asyncio
from typing import Optional

from groq import Groq

from .errors import al_error, AL_E_LLM_UNAVAILABLE


class ChatClient(abc.ABC):
    """Single-prompt chat completion."""

    @abc.abstractmethod
    async def complete(self, model: str, prompt: str, *, temperature: float, max_tokens: int) -> str:
        """Return the model's reply text. Failures are raised."""
        raise NotImplementedError


class GroqChatClient(ChatClient):
    def __init__(self, api_key: str, *, timeout_s: float = 30.0, client: Optional[Groq] = None):
        if not api_key and client is None:
            raise al_error(AL_E_LLM_UNAVAILABLE, "GROQ_API_KEY is not configured", http_status=503)
        self.client = client or Groq(api_key=api_key, timeout=float(timeout_s), max_retries=0)

    def _create(self, model: str, prompt: str, temperature: float, max_tokens: int) -> str:
        completion = self.client.chat.completions.create(
            messages=[{"role": "user", "content": prompt}],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise al_error(AL_E_LLM_UNAVAILABLE, "empty completion", retryable=True, http_status=502, model=model)
        return content

    async def complete(self, model: str, prompt: str, *, temperature: float, max_tokens: int) -> str:
        return await asyncio.to_thread(self._create, model, prompt, temperature, max_tokens)
