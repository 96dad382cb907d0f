"""Language-model backends behind one chat interface.

Every backend takes the same ordered ``user``/``assistant`` message list plus
a system prompt and returns a :class:`ProviderReply`. The request and response
shapes of each vendor API stay inside its provider class; adding a backend
means adding one subclass and one registry entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Literal, Sequence

import requests

from ..config import ProvidersConfig
from ..errors import ConfigError, ProviderError
from ..logging_utils import log_extra

Role = Literal["user", "assistant"]

DEFAULT_MAX_TOKENS = 4096
DEFAULT_HTTP_TIMEOUT = 120


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ProviderReply:
    content: str
    provider_id: str
    model_id: str


class Provider:
    """Base class for a chat backend.

    Subclasses implement :meth:`_chat`; the base class handles the credential
    check and the HTTP round trip.
    """

    def __init__(
        self,
        key: str,
        name: str,
        model_id: str,
        api_key: str | None,
        session: requests.Session | None = None,
        timeout: int = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.key = key
        self.name = name
        self.model_id = model_id
        self._api_key = api_key
        self._session = session or requests.Session()
        self._timeout = timeout
        self._log = logging.getLogger(__name__)

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise ConfigError(f"{self.name} is not configured: API key missing")

    def chat(self, messages: Sequence[Message], system_prompt: str) -> ProviderReply:
        self.ensure_configured()
        if not messages:
            raise ProviderError("At least one message is required")
        content = self._chat(messages, system_prompt)
        if not content:
            raise ProviderError(f"Empty response from {self.name}")
        return ProviderReply(content=content, provider_id=self.key, model_id=self.model_id)

    def _chat(self, messages: Sequence[Message], system_prompt: str) -> str:
        raise NotImplementedError

    def _post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = self._session.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json", **(headers or {})},
                params=params,
                timeout=self._timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            self._log.error(
                "Provider API error",
                extra=log_extra(provider_id=self.key, status_code=status),
            )
            raise ProviderError(f"{self.name} request failed: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            self._log.error(
                "Provider unreachable",
                extra=log_extra(provider_id=self.key, error_message=str(exc)),
            )
            raise ProviderError(f"{self.name} request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"{self.name} returned invalid JSON") from exc


class AnthropicProvider(Provider):
    url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    def _chat(self, messages: Sequence[Message], system_prompt: str) -> str:
        data = self._post(
            self.url,
            {
                "model": self.model_id,
                "max_tokens": DEFAULT_MAX_TOKENS,
                "system": system_prompt,
                "messages": [m.to_dict() for m in messages],
            },
            headers={"x-api-key": self._api_key or "", "anthropic-version": self.api_version},
        )
        blocks = data.get("content") or []
        if not blocks or blocks[0].get("type") != "text":
            raise ProviderError(f"Unexpected response type from {self.name}")
        return blocks[0].get("text", "")


class GroqProvider(Provider):
    url = "https://api.groq.com/openai/v1/chat/completions"
    temperature = 0.7

    def _chat(self, messages: Sequence[Message], system_prompt: str) -> str:
        data = self._post(
            self.url,
            {
                "model": self.model_id,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    *(m.to_dict() for m in messages),
                ],
                "max_tokens": DEFAULT_MAX_TOKENS,
                "temperature": self.temperature,
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""


class GeminiProvider(Provider):
    url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def _chat(self, messages: Sequence[Message], system_prompt: str) -> str:
        data = self._post(
            self.url_template.format(model=self.model_id),
            {
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": gemini_contents(messages),
                "generationConfig": {"maxOutputTokens": DEFAULT_MAX_TOKENS},
            },
            params={"key": self._api_key or ""},
        )
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)


def gemini_contents(messages: Iterable[Message]) -> list[dict[str, Any]]:
    """Convert chat history to Gemini turns, merging consecutive same-role turns."""
    contents: list[dict[str, Any]] = []
    for message in messages:
        role = "user" if message.role == "user" else "model"
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].append({"text": message.content})
        else:
            contents.append({"role": role, "parts": [{"text": message.content}]})
    return contents


DEFAULT_MODELS = {
    "claude-opus": "claude-opus-4-20250514",
    "claude-sonnet": "claude-sonnet-4-20250514",
    "groq": "llama-3.3-70b-versatile",
    "gemini": "gemini-2.5-flash",
}


class ProviderRegistry:
    """Fixed table of providers, built once at startup."""

    def __init__(self, providers: Iterable[Provider]) -> None:
        self._providers = {provider.key: provider for provider in providers}

    def get(self, key: str) -> Provider:
        provider = self._providers.get(key)
        if provider is None:
            raise ConfigError(f"Unknown provider: {key}")
        return provider

    def list_available(self) -> list[dict[str, Any]]:
        return [
            {"id": key, "name": provider.name, "configured": provider.is_configured()}
            for key, provider in self._providers.items()
        ]

    def keys(self) -> list[str]:
        return list(self._providers)


def build_registry(
    config: ProvidersConfig, session: requests.Session | None = None
) -> ProviderRegistry:
    session = session or requests.Session()
    models = {**DEFAULT_MODELS, **config.models}
    return ProviderRegistry(
        [
            AnthropicProvider(
                "claude-opus", "Claude Opus 4", models["claude-opus"],
                config.anthropic_api_key, session,
            ),
            AnthropicProvider(
                "claude-sonnet", "Claude Sonnet 4", models["claude-sonnet"],
                config.anthropic_api_key, session,
            ),
            GroqProvider(
                "groq", "Llama 3.3 70B", models["groq"], config.groq_api_key, session
            ),
            GeminiProvider(
                "gemini", "Gemini 2.5 Flash", models["gemini"], config.google_api_key, session
            ),
        ]
    )
