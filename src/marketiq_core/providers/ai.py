"""AI text-completion providers and the fallback client over them."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Protocol, cast
from urllib.parse import quote

import httpx

from marketiq_core.http import HttpPermanentError, parse_json_object, send
from marketiq_core.providers.chain import (
    ChainFailure,
    ChainSuccess,
    ProviderCandidate,
    ProviderChain,
)
from marketiq_core.providers.credentials import call_with_credentials
from marketiq_core.settings import CoreSettings

OPENAI_BASE_URL = "https://api.openai.com/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
PLATFORM_DEFAULT_MODEL = "@cf/meta/llama-3.1-8b-instruct"
PLATFORM_MAX_TOKENS = 1400

PlatformRun = Callable[[str, dict[str, object]], Awaitable[object]]


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def temperature_for_purpose(purpose: str) -> float:
    """Analysis runs near-deterministic; everything else gets some variety."""
    return 0.1 if purpose == "analysis" else 0.3


class AIProvider(Protocol):
    """One AI backend able to complete a chat."""

    name: str

    @property
    def credential_count(self) -> int:
        """Number of keys one completion may rotate through."""

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: float,
        timeout: float,
    ) -> str:
        """Return completion text or raise a classified error."""


class OpenAIChatProvider:
    """OpenAI chat completions, also used for OpenAI-compatible endpoints."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        keys: Sequence[str],
        model: str,
        base_url: str = OPENAI_BASE_URL,
        name: str = "openai",
    ) -> None:
        self.name = name
        self._client = client
        self._keys = tuple(keys)
        self._model = model
        self._url = f"{base_url.rstrip('/')}/chat/completions"

    @property
    def credential_count(self) -> int:
        return len(self._keys)

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: float,
        timeout: float,
    ) -> str:
        body = {
            "model": self._model,
            "messages": [message.to_dict() for message in messages],
            "temperature": temperature,
        }

        async def _once(key: str) -> str:
            request = self._client.build_request(
                "POST",
                self._url,
                json=body,
                headers={"authorization": f"Bearer {key}"},
                timeout=timeout,
            )
            response = await send(self._client, request, label=self.name)
            payload = parse_json_object(response, label=self.name)
            return _openai_text(payload, label=self.name)

        return await call_with_credentials(
            self._keys, _once, label=self.name, attempt_timeout=timeout
        )


def _openai_text(payload: dict[str, object], *, label: str) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise HttpPermanentError(f"{label}_parse")
    message = choices[0].get("message")
    if not isinstance(message, dict):
        raise HttpPermanentError(f"{label}_parse")
    content = message.get("content")
    return content if isinstance(content, str) else ""


class GeminiProvider:
    """Google Gemini ``generateContent``."""

    name = "gemini"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        keys: Sequence[str],
        model: str,
        base_url: str = GEMINI_BASE_URL,
    ) -> None:
        self._client = client
        self._keys = tuple(keys)
        self._url = f"{base_url.rstrip('/')}/models/{quote(model, safe='')}:generateContent"

    @property
    def credential_count(self) -> int:
        return len(self._keys)

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: float,
        timeout: float,
    ) -> str:
        body = {
            "contents": [
                {
                    "role": "model" if message.role == "assistant" else "user",
                    "parts": [{"text": message.content}],
                }
                for message in messages
            ],
            "generationConfig": {"temperature": temperature},
        }

        async def _once(key: str) -> str:
            request = self._client.build_request(
                "POST",
                self._url,
                params={"key": key},
                json=body,
                timeout=timeout,
            )
            response = await send(self._client, request, label=self.name)
            payload = parse_json_object(response, label=self.name)
            return _gemini_text(payload)

        return await call_with_credentials(
            self._keys, _once, label=self.name, attempt_timeout=timeout
        )


def _gemini_text(payload: dict[str, object]) -> str:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise HttpPermanentError("gemini_parse")
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise HttpPermanentError("gemini_parse")
    texts = [
        cast(str, part["text"])
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    ]
    return "\n".join(texts)


class PlatformProvider:
    """Model hosted by the runtime platform, reached through a bound callable."""

    name = "platform"

    def __init__(self, *, run: PlatformRun, model: str = PLATFORM_DEFAULT_MODEL) -> None:
        self._run = run
        self._model = model

    @property
    def credential_count(self) -> int:
        return 1

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: float,
        timeout: float,
    ) -> str:
        del timeout
        prompt = "\n\n".join(
            f"{message.role.upper()}: {message.content}" for message in messages
        )
        output = await self._run(
            self._model,
            {"prompt": prompt, "max_tokens": PLATFORM_MAX_TOKENS, "temperature": temperature},
        )
        if isinstance(output, str):
            return output
        if isinstance(output, dict):
            for field in ("response", "output_text"):
                value = output.get(field)
                if isinstance(value, str) and value:
                    return value
        return json.dumps(output)


class AIClient:
    """Run AI providers through the provider chain.

    Breakers are keyed ``ai:<provider>:<purpose>`` so an outage of analysis
    completions does not block the cheaper repair or summary calls.
    """

    def __init__(self, *, chain: ProviderChain, providers: Sequence[AIProvider]) -> None:
        self._chain = chain
        self._providers = tuple(providers)

    @property
    def provider_names(self) -> tuple[str, ...]:
        return tuple(provider.name for provider in self._providers)

    async def complete(
        self,
        purpose: str,
        messages: Sequence[ChatMessage],
        *,
        timeout: float = 15.0,
    ) -> ChainSuccess[str] | ChainFailure:
        """Return the first non-empty completion across providers.

        ``timeout`` bounds each credential attempt; a provider's overall
        deadline scales with the number of keys it may rotate through.
        """
        temperature = temperature_for_purpose(purpose)
        candidates = [
            ProviderCandidate(
                name=provider.name,
                invoke=_bind(provider, messages, temperature, timeout),
                breaker_name=f"ai:{provider.name}:{purpose}",
                timeout=timeout * max(provider.credential_count, 1),
            )
            for provider in self._providers
        ]
        return await self._chain.fetch_first_success(
            f"ai:{purpose}",
            candidates,
            is_acceptable=lambda text: bool(text.strip()),
            timeout=timeout,
        )

    @classmethod
    def from_settings(
        cls,
        settings: CoreSettings,
        *,
        client: httpx.AsyncClient,
        chain: ProviderChain,
        platform_run: PlatformRun | None = None,
    ) -> AIClient:
        """Build providers in configured order, skipping unconfigured ones."""
        providers: list[AIProvider] = []
        for name in settings.ai_order():
            if name == "openai" and settings.openai_keys():
                providers.append(
                    OpenAIChatProvider(
                        client=client,
                        keys=settings.openai_keys(),
                        model=settings.openai_model,
                    )
                )
            elif name == "gemini" and settings.gemini_keys():
                providers.append(
                    GeminiProvider(
                        client=client,
                        keys=settings.gemini_keys(),
                        model=settings.gemini_model,
                    )
                )
            elif name == "compat" and settings.compat_keys():
                providers.append(
                    OpenAIChatProvider(
                        client=client,
                        keys=settings.compat_keys(),
                        model=settings.compat_model,
                        base_url=settings.compat_base_url,
                        name="compat",
                    )
                )
            elif name == "platform" and platform_run is not None:
                providers.append(PlatformProvider(run=platform_run))
        return cls(chain=chain, providers=providers)


def _bind(
    provider: AIProvider,
    messages: Sequence[ChatMessage],
    temperature: float,
    timeout: float,
) -> Callable[[], Awaitable[str]]:
    async def _invoke() -> str:
        return await provider.complete(
            messages,
            temperature=temperature,
            timeout=timeout,
        )

    return _invoke
