import json
import os
from dataclasses import dataclass, field
from typing import Any, Union

from openai import APIConnectionError, APIStatusError, AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError

from budget_categorizer.core import settings
from budget_categorizer.integration.errors import (
    ApiStatusError,
    MalformedJsonError,
    ProviderError,
    StructureError,
    TransportError,
    TruncatedResponseError,
)
from budget_categorizer.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StrictSchema:
    """Ask the provider to conform exactly to a named JSON schema."""

    name: str
    schema: dict[str, Any] = field(hash=False)
    strict: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": self.name,
                "strict": self.strict,
                "schema": self.schema,
            },
        }


@dataclass(frozen=True)
class LooseJson:
    """Ask for any JSON object, without schema enforcement."""

    def to_payload(self) -> dict[str, Any]:
        return {"type": "json_object"}


ResponseFormat = Union[StrictSchema, LooseJson]


class _Message(BaseModel):
    content: str


class _Choice(BaseModel):
    message: _Message


class _CompletionEnvelope(BaseModel):
    choices: list[_Choice] = Field(min_length=1)


def looks_truncated(content: str) -> bool:
    trimmed = content.strip()
    if trimmed.endswith((",", "{", "[")):
        return True
    return "{" in trimmed and not trimmed.endswith(("}", "]"))


def parse_json_content(content: str) -> Any:
    try:
        return json.loads(content)
    except ValueError as exc:
        if not content:
            raise MalformedJsonError("Empty response from model.", content) from exc
        if looks_truncated(content):
            raise TruncatedResponseError(
                "Truncated JSON response from model. Try increasing max_tokens or shortening the prompt.",
                content,
            ) from exc
        raise MalformedJsonError(f"Invalid JSON response from model: {exc}", content) from exc


def _provider_error(payload: dict[str, Any]) -> ProviderError | None:
    error = payload.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        message = error.get("message") or json.dumps(error)
        return ProviderError(str(message), code=error.get("code"))
    return ProviderError(str(error))


class CompletionClient:
    """
    Thin wrapper over the OpenRouter chat completions endpoint.

    Sends one system and one user message, asks for a JSON answer and returns the
    decoded JSON. Every failure is raised as a CompletionError subclass; retrying
    and model fallback are left to the caller.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None:
            api_key = api_key or os.getenv("OPENROUTER_API_KEY")
            if not api_key:
                raise ValueError("OPENROUTER_API_KEY is not set.")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url or settings.OPENROUTER_BASE_URL,
                timeout=timeout if timeout is not None else settings.OPENROUTER_TIMEOUT,
                max_retries=0,
            )
        self._client = client

    async def aclose(self) -> None:
        await self._client.close()

    async def request_structured_completion(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        response_format: ResponseFormat,
        temperature: float = 0.2,
        max_tokens: int = 150,
    ) -> Any:
        logger.debug("[AI] Requesting %s completion from %s.", type(response_format).__name__, model)
        payload = await self._send(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format=response_format.to_payload(),
            temperature=temperature,
            max_tokens=max_tokens,
        )

        provider_error = _provider_error(payload)
        if provider_error is not None:
            logger.warning("[AI] %s returned an error payload: %s", model, provider_error)
            raise provider_error

        try:
            envelope = _CompletionEnvelope.model_validate(payload)
        except ValidationError as exc:
            logger.error("[AI] Invalid response structure from %s: %s", model, exc.errors())
            raise StructureError("Invalid response structure from API.") from exc

        content = envelope.choices[0].message.content
        try:
            return parse_json_content(content)
        except (TruncatedResponseError, MalformedJsonError):
            logger.warning("[AI] Could not parse JSON content from %s: %r", model, content[:200])
            raise

    async def _send(self, **request: Any) -> dict[str, Any]:
        try:
            raw = await self._client.chat.completions.with_raw_response.create(**request)
        except APIStatusError as exc:
            logger.warning("[AI] %s rejected the request with status %s.", request["model"], exc.status_code)
            raise ApiStatusError(exc.status_code, str(exc)) from exc
        except APIConnectionError as exc:
            logger.warning("[AI] Network error calling %s: %s", request["model"], exc)
            raise TransportError(f"Network error: {exc}") from exc

        try:
            payload = raw.http_response.json()
        except ValueError as exc:
            raise StructureError("Response body is not JSON.") from exc
        if not isinstance(payload, dict):
            raise StructureError("Invalid response structure from API.")
        return payload
