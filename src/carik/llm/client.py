# Carik Bot
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Carik Bot.
#
# Carik Bot is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
Carik Bot -- Chat Client (v0.3.0)

Free-form chat for any text that is not a command. Talks to an
OpenAI-compatible ``/chat/completions`` endpoint (Groq, OpenAI, MiniMax or a
custom base URL) or to Anthropic's ``/messages`` endpoint (provider
``claude``) over httpx, and keeps a short per-identity history so the
conversation has context.
"""

from __future__ import annotations

import logging
from collections import deque

import httpx

from carik.config import LLMSettings
from carik.core.errors import HandlerFailedError

logger = logging.getLogger("carik.llm.client")

ANTHROPIC_VERSION = "2023-06-01"

NOT_CONFIGURED_REPLY = (
    "Chat is not configured on this bot (no LLM API key). "
    "Commands still work, send /help to see them."
)


class ChatClient:
    """Per-identity chat over an OpenAI-compatible or Anthropic API."""

    def __init__(self, settings: LLMSettings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport
        self._history: dict[str, deque[dict[str, str]]] = {}

    @property
    def configured(self) -> bool:
        return bool(self.settings.api_key)

    def history(self, identity: str) -> list[dict[str, str]]:
        return list(self._history.get(str(identity), ()))

    def clear(self, identity: str) -> bool:
        """Forget the identity's history. Returns False if there was none."""
        return bool(self._history.pop(str(identity), None))

    def _build_messages(self, identity: str, text: str) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": self.settings.system_prompt}]
        messages.extend(self._history.get(identity, ()))
        messages.append({"role": "user", "content": text})
        return messages

    def _remember(self, identity: str, text: str, answer: str) -> None:
        # history_limit counts turns; a turn is one user + one assistant message
        maxlen = max(1, self.settings.history_limit) * 2
        turns = self._history.setdefault(identity, deque(maxlen=maxlen))
        turns.append({"role": "user", "content": text})
        turns.append({"role": "assistant", "content": answer})

    def _openai_request(self, identity: str, text: str) -> tuple[str, dict, dict]:
        cfg = self.settings
        headers = {"Authorization": f"Bearer {cfg.api_key}", "Content-Type": "application/json"}
        payload = {
            "model": cfg.resolved_model(),
            "messages": self._build_messages(identity, text),
            "temperature": cfg.temperature,
            "max_tokens": cfg.max_tokens,
        }
        return f"{cfg.resolved_base_url()}/chat/completions", headers, payload

    def _claude_request(self, identity: str, text: str) -> tuple[str, dict, dict]:
        # Anthropic takes the system prompt as a top-level field
        cfg = self.settings
        headers = {
            "x-api-key": cfg.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        messages = list(self._history.get(identity, ()))
        messages.append({"role": "user", "content": text})
        payload = {
            "model": cfg.resolved_model(),
            "max_tokens": cfg.max_tokens,
            "temperature": cfg.temperature,
            "system": cfg.system_prompt,
            "messages": messages,
        }
        return f"{cfg.resolved_base_url()}/messages", headers, payload

    @staticmethod
    def _openai_answer(data: dict) -> str:
        return data["choices"][0]["message"]["content"] or ""

    @staticmethod
    def _claude_answer(data: dict) -> str:
        blocks = data["content"]
        if not isinstance(blocks, list):
            raise TypeError("content is not a list")
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")

    async def reply(self, identity: str, text: str) -> str:
        identity = str(identity)
        if not self.configured:
            return NOT_CONFIGURED_REPLY

        cfg = self.settings
        if cfg.provider == "claude":
            url, headers, payload = self._claude_request(identity, text)
            parse = self._claude_answer
        else:
            url, headers, payload = self._openai_request(identity, text)
            parse = self._openai_answer

        try:
            async with httpx.AsyncClient(timeout=cfg.timeout, transport=self._transport) as client:
                resp = await client.post(url, headers=headers, json=payload)
                resp.raise_for_status()
                data = resp.json()
            answer = parse(data)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("[%s] HTTP %d: %s", cfg.provider, status, e.response.text[:200])
            if status in (401, 403):
                raise HandlerFailedError("chat API key is invalid or expired") from e
            if status == 429:
                raise HandlerFailedError("chat provider is rate limiting us, try again later") from e
            raise HandlerFailedError(f"chat provider returned HTTP {status}") from e
        except httpx.HTTPError as e:
            logger.error("[%s] Request failed: %s", cfg.provider, e)
            raise HandlerFailedError("could not reach the chat provider") from e
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            logger.error("[%s] Unexpected response shape: %s", cfg.provider, e)
            raise HandlerFailedError("chat provider sent an unexpected response") from e

        answer = answer.strip()
        self._remember(identity, text, answer)
        logger.debug("Chat reply for %s (%d chars)", identity, len(answer))
        return answer or "(no answer)"
