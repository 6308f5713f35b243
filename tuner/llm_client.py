from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence, Tuple
from urllib.parse import urlparse

import requests
from requests import Response, Session
from requests.exceptions import RequestException

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 409, 425, 429}


class LlmClientError(RuntimeError):
    """Raised when the chat-completions endpoint fails or answers with something unusable."""

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass(slots=True)
class LlmSettings:
    base_url: str
    model: str
    api_key: str = ""
    timeout: float = 120.0
    temperature: float = 0.3
    max_completion_tokens: Optional[int] = None


class LlmClient:
    """Minimal client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self, settings: LlmSettings, session: Optional[Session] = None):
        if not settings.base_url:
            raise ValueError("LLM base URL is required.")
        if not settings.model:
            raise ValueError("LLM model is required.")
        self.settings = settings
        self._session = session or requests.Session()

    def chat_completion(
        self,
        messages: Sequence[dict],
        *,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> str:
        payload: dict = {
            "model": model or self.settings.model,
            "messages": list(messages),
            "temperature": self.settings.temperature if temperature is None else temperature,
        }
        limit = max_tokens or self.settings.max_completion_tokens
        if limit and limit > 0:
            payload["max_tokens"] = int(limit)
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        data = self._post("chat/completions", payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LlmClientError(f"Unexpected response format: {self._clip_text(str(data))}") from exc
        return (content or "").strip()

    def chat_json(self, messages: Sequence[dict], **kwargs: Any) -> dict:
        """Run a completion in JSON mode and return the decoded object."""
        raw = self.chat_completion(messages, json_mode=True, **kwargs)
        parsed = extract_json_object(raw)
        if parsed is None:
            raise LlmClientError(f"Model did not return a JSON object: {self._clip_text(raw)}")
        return parsed

    def _post(self, path: str, payload: dict) -> dict:
        url = self._url(path)
        try:
            response: Response = self._session.post(
                url, json=payload, headers=self._headers(), timeout=self.settings.timeout
            )
        except RequestException as exc:
            raise LlmClientError(f"Failed to reach {url}: {exc}", retryable=True) from exc

        if response.status_code >= 400:
            raise LlmClientError(
                f"LLM error {response.status_code}: {self._clip_text(response.text)}",
                retryable=self._is_retryable(response.status_code),
            )
        try:
            data = response.json()
        except ValueError:
            data = extract_json_object(response.text)
            if data is None:
                raise LlmClientError(f"Invalid JSON response: {self._clip_text(response.text)}")

        provider_error = self._provider_error_payload(data)
        if provider_error:
            message, code = provider_error
            raise LlmClientError(message, retryable=code is not None and self._is_retryable(code))
        logger.debug("POST %s -> %s", url, response.status_code)
        return data

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _url(self, path: str) -> str:
        base = self.settings.base_url.rstrip("/")
        return f"{base}/{path.lstrip('/')}"

    @staticmethod
    def _is_retryable(status_code: int) -> bool:
        return status_code in _RETRYABLE_STATUS or 500 <= status_code < 600

    @staticmethod
    def _clip_text(text: str, limit: int = 800) -> str:
        snippet = (text or "").strip()
        if not snippet:
            return "<empty response>"
        if len(snippet) <= limit:
            return snippet
        return f"{snippet[:limit]}…"

    @staticmethod
    def _provider_error_payload(payload: object) -> Optional[Tuple[str, Optional[int]]]:
        if not isinstance(payload, dict):
            return None
        error_block = payload.get("error")
        if not isinstance(error_block, dict):
            return None
        message = str(error_block.get("message") or "Unknown provider error")
        try:
            code: Optional[int] = int(str(error_block.get("code")))
        except (TypeError, ValueError):
            code = None
        if code is not None:
            return f"LLM error {code}: {message}", code
        return f"LLM error: {message}", None


def extract_json_object(body: str) -> Optional[dict]:
    stripped = (body or "").strip()
    if not stripped:
        return None
    for candidate in _json_candidates(stripped):
        try:
            loaded = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(loaded, dict):
            return loaded
    return None


def _json_candidates(body: str) -> Iterator[str]:
    yield body
    if body.startswith("```"):
        inner = "\n".join(line for line in body.splitlines() if not line.strip().startswith("```")).strip()
        if inner:
            yield inner
    first = body.find("{")
    last = body.rfind("}")
    if 0 <= first < last:
        yield body[first : last + 1]


def _is_local_url(url: str) -> bool:
    parsed = urlparse(url if "://" in url else f"http://{url}")
    host = (parsed.hostname or "").lower()
    return host in {"127.0.0.1", "localhost"} or host.startswith("192.168.") or host.startswith("10.")


def validate_llm_settings(base_url: str, model: str, api_key: str = "") -> tuple[bool, str]:
    url = (base_url or "").strip()
    missing: list[str] = []
    if not url:
        missing.append("URL")
    if not (model or "").strip():
        missing.append("model")
    if url and not _is_local_url(url) and not (api_key or "").strip():
        missing.append("API key")
    if missing:
        return False, f"LLM settings incomplete: {', '.join(missing)} required."
    return True, ""
