"""
Async chat-completion client with a one-shot fallback model.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint (Groq by
default) over HTTPS with a bearer key:

- Primary first: every request goes to ``primary_model``.
- Fallback once: a non-2xx status, a timeout, a transport error or an
  unreadable body triggers exactly one attempt against ``fallback_model``
  with the same messages.
- Informative: returns a SimpleNamespace with `.content` (string) and a
  `.meta` dict with the model actually used, provider usage, latency and
  the upstream error when both attempts failed.

Usage:
    from ishaar_assistant.llm_client import CompletionClient
    client = CompletionClient(api_key="...")
    messages = client.build_messages(SYSTEM_PROMPT, context_block, history, "Hello")
    resp = await client.ainvoke(messages)
    if resp.meta["success"]:
        text = resp.content
        model = resp.meta["model"]
"""

from __future__ import annotations

import logging
import time
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from ishaar_assistant.prompts import build_user_block

logger = logging.getLogger(__name__)

FALLBACK_SUFFIX = " (fallback)"

_HISTORY_ROLES = {"user", "assistant"}


class CompletionError(Exception):
    """One completion attempt failed (status, transport or body shape)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _extract_text_from_response(data: Any) -> str:
    """Pull ``choices[0].message.content`` out of an OpenAI-style body."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise CompletionError(f"unexpected response shape: {exc!r}") from exc
    if not isinstance(content, str):
        raise CompletionError("completion content is not text")
    return content


class CompletionClient:
    """
    Async completion client with a primary and a fallback model.

    The public API is:
      client = CompletionClient(...)
      resp = await client.ainvoke(messages)
      # resp is a SimpleNamespace with:
      #   - content: str  (the reply; empty string when both models failed)
      #   - meta: dict    (model, usage, latency_ms, status_code, success,
      #                    fallback_used, error)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.groq.com/openai/v1",
        primary_model: str = "llama-3.3-70b-versatile",
        fallback_model: str = "llama-3.1-8b-instant",
        temperature: float = 0.7,
        max_tokens: int = 2000,
        top_p: float = 0.9,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.primary_model = primary_model
        self.fallback_model = fallback_model
        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)
        self.top_p = float(top_p)
        self.timeout = float(timeout)
        self._transport = transport
        self._endpoint = f"{self.base_url}/chat/completions"

    # ── prompt assembly ──────────────────────────────────────────────

    @staticmethod
    def build_messages(
        system_prompt: str,
        context_block: str,
        history: Iterable[Dict[str, Any]],
        user_message: str,
        user_name: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        """System prompt + context + identity, prior turns, then the new turn.

        History entries with an unknown role or non-text content are dropped.
        """
        messages = [
            {
                "role": "system",
                "content": system_prompt + context_block + build_user_block(user_name),
            }
        ]
        for turn in history or []:
            role = turn.get("role") if isinstance(turn, dict) else None
            content = turn.get("content") if isinstance(turn, dict) else None
            if role in _HISTORY_ROLES and isinstance(content, str):
                messages.append({"role": role, "content": content})
        messages.append({"role": "user", "content": user_message})
        return messages

    # ── HTTP ─────────────────────────────────────────────────────────

    def _payload(self, model: str, messages: List[Dict[str, str]], fallback: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if not fallback:
            payload["top_p"] = self.top_p
        return payload

    async def _call_once(
        self, model: str, messages: List[Dict[str, str]], fallback: bool = False
    ) -> Tuple[int, str, Optional[Dict[str, Any]]]:
        """
        Make a single completion call.

        Returns (status_code, text, usage).  Raises CompletionError for any
        failure so the caller can decide whether to fall back.
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self._endpoint,
                    json=self._payload(model, messages, fallback),
                    headers=headers,
                )
        except httpx.TimeoutException as exc:
            raise CompletionError(f"timeout after {self.timeout}s: {exc}") from exc
        except httpx.RequestError as exc:
            raise CompletionError(f"request_error:{type(exc).__name__}:{exc}") from exc

        if resp.status_code >= 400:
            raise CompletionError(resp.text or f"HTTP {resp.status_code}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            raise CompletionError("response body is not JSON", resp.status_code) from exc

        usage = data.get("usage") if isinstance(data, dict) else None
        return resp.status_code, _extract_text_from_response(data), usage

    async def ainvoke(self, messages: List[Dict[str, str]]) -> SimpleNamespace:
        """
        Send *messages* to the primary model, falling back once on failure.

        Returns a SimpleNamespace:
          - content: str
          - meta: dict with keys:
              - model          (identifier used; fallback carries a suffix)
              - usage          (provider token usage, if returned)
              - latency_ms
              - status_code
              - success (bool)
              - fallback_used (bool)
              - error (str | None; the primary upstream error on failure)
        """
        start_time = time.perf_counter()

        try:
            status_code, text, usage = await self._call_once(self.primary_model, messages)
            meta = {
                "model": self.primary_model,
                "usage": usage,
                "latency_ms": int((time.perf_counter() - start_time) * 1000),
                "status_code": status_code,
                "success": True,
                "fallback_used": False,
                "error": None,
            }
            return SimpleNamespace(content=text, meta=meta)
        except CompletionError as exc:
            primary_error = str(exc)
            primary_status = exc.status_code
            logger.warning(
                "CompletionClient: primary model %s failed (status=%s): %s",
                self.primary_model,
                primary_status,
                primary_error[:300],
            )

        try:
            status_code, text, usage = await self._call_once(
                self.fallback_model, messages, fallback=True
            )
            logger.info("CompletionClient: fallback model %s answered", self.fallback_model)
            meta = {
                "model": self.fallback_model + FALLBACK_SUFFIX,
                "usage": usage,
                "latency_ms": int((time.perf_counter() - start_time) * 1000),
                "status_code": status_code,
                "success": True,
                "fallback_used": True,
                "error": None,
            }
            return SimpleNamespace(content=text, meta=meta)
        except CompletionError as exc:
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.error(
                "CompletionClient: both models failed; primary_error=%s fallback_error=%s elapsed_ms=%d",
                primary_error[:300],
                str(exc)[:300],
                elapsed_ms,
            )
            meta = {
                "model": self.fallback_model + FALLBACK_SUFFIX,
                "usage": None,
                "latency_ms": elapsed_ms,
                "status_code": exc.status_code or primary_status,
                "success": False,
                "fallback_used": True,
                "error": primary_error,
            }
            return SimpleNamespace(content="", meta=meta)
