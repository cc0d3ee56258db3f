from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from typing import Any, Dict, List, Sequence

import aiohttp

from .contracts import EmbeddingResult

logger = logging.getLogger("ambient_mind")

_FENCE_RE = re.compile(r"^```(?:json)?|```$", re.IGNORECASE)


class OpenRouterClient:
    """OpenAI-compatible chat + embeddings client (OpenRouter by default)."""

    def __init__(
        self,
        api_key: str,
        *,
        chat_model: str,
        embedding_model: str,
        timeout_seconds: int = 45,
        temperature: float = 0.1,
        base_url: str = "https://openrouter.ai/api/v1",
        app_title: str = "ambient-mind",
    ) -> None:
        self.api_key = api_key
        self.model = chat_model
        self.embedding_model = embedding_model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.app_title = app_title
        self._session: aiohttp.ClientSession | None = None

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": self.app_title,
        }

    async def _request(self, path: str, payload: Dict[str, Any], *, retries: int = 3) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = f"{self.base_url}/{path.lstrip('/')}"
        last_error: Exception | None = None

        for attempt in range(1, retries + 1):
            try:
                async with self._session.post(url, json=payload, headers=self._headers()) as response:
                    text = await response.text()
                    if response.status == 200:
                        return json.loads(text)

                    retriable = response.status in {408, 409, 429, 500, 502, 503, 504}
                    if not retriable:
                        raise RuntimeError(f"OpenRouter error {response.status}: {text[:300]}")
                    last_error = RuntimeError(f"OpenRouter retriable error {response.status}: {text[:300]}")
            except asyncio.CancelledError:
                raise
            except RuntimeError:
                raise
            except Exception as exc:
                last_error = exc

            if attempt < retries:
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        if last_error is not None:
            raise RuntimeError(f"OpenRouter request failed after retries: {last_error}")
        raise RuntimeError("OpenRouter request failed without explicit error")

    async def embed(self, texts: str | Sequence[str]) -> EmbeddingResult:
        inputs = [texts] if isinstance(texts, str) else [str(text) for text in texts]
        if not self.available:
            return EmbeddingResult(success=False, model=self.embedding_model, error="embedding client not configured")
        if not inputs:
            return EmbeddingResult(success=True, vectors=[], model=self.embedding_model)

        try:
            data = await self._request("embeddings", {"model": self.embedding_model, "input": inputs})
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Embedding request failed: %s", exc)
            return EmbeddingResult(success=False, model=self.embedding_model, error=str(exc)[:300])

        items = data.get("data") or []
        ordered = sorted(
            (item for item in items if isinstance(item, dict)),
            key=lambda item: int(item.get("index", 0)),
        )
        vectors = [
            [float(value) for value in item.get("embedding") or []]
            for item in ordered
        ]
        if len(vectors) != len(inputs) or any(not vector for vector in vectors):
            return EmbeddingResult(
                success=False,
                model=str(data.get("model") or self.embedding_model),
                error=f"expected {len(inputs)} embeddings, got {len(vectors)}",
            )
        return EmbeddingResult(success=True, vectors=vectors, model=str(data.get("model") or self.embedding_model))

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            error = data.get("error")
            if error:
                raise RuntimeError(f"OpenRouter returned error: {error}")
            raise RuntimeError("OpenRouter returned no choices")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
        raise RuntimeError("OpenRouter empty response")

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        *,
        json_mode: bool = False,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": str(m.get("role", "user")), "content": str(m.get("content", ""))}
                for m in messages
                if str(m.get("content", "")).strip()
            ],
            "temperature": self.temperature if temperature is None else temperature,
        }
        if max_output_tokens is not None and int(max_output_tokens) > 0:
            payload["max_tokens"] = int(max_output_tokens)
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        data = await self._request("chat/completions", payload)
        return self._extract_text(data)

    @staticmethod
    def _parse_json_object(text: str) -> Dict[str, Any] | None:
        cleaned = _FENCE_RE.sub("", text.strip()).strip()
        candidates = [cleaned]
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if 0 <= start < end and (start, end) != (0, len(cleaned) - 1):
            candidates.append(cleaned[start : end + 1])
        for candidate in candidates:
            try:
                parsed = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed
        return None

    async def json_chat(
        self,
        messages: List[Dict[str, str]],
        schema_hint: str,
        temperature: float = 0.1,
        max_output_tokens: int = 500,
    ) -> Dict[str, Any] | None:
        instruction = (
            "Reply with a single JSON object and nothing else: no markdown, no commentary. "
            f"Schema hint: {schema_hint}"
        )
        raw = await self.chat(
            [*messages, {"role": "system", "content": instruction}],
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            json_mode=True,
        )
        parsed = self._parse_json_object(raw)
        if parsed is None:
            logger.debug("Discarding non-JSON reply: %s", raw[:200])
        return parsed
