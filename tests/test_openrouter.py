import json
from collections.abc import Callable

import httpx
import pytest

from budget_categorizer.integration.errors import (
    ApiStatusError,
    MalformedJsonError,
    ProviderError,
    StructureError,
    TransportError,
    TruncatedResponseError,
    indicates_schema_unsupported,
)
from budget_categorizer.integration.openrouter import (
    CompletionClient,
    LooseJson,
    StrictSchema,
    looks_truncated,
)

ClientFactory = Callable[[Callable[[httpx.Request], httpx.Response]], CompletionClient]

SCHEMA = StrictSchema(name="transaction_category", schema={"type": "object"})


async def _request(client: CompletionClient, response_format=SCHEMA):
    return await client.request_structured_completion(
        model="openai/gpt-4o-mini",
        system_prompt="system text",
        user_prompt="user text",
        response_format=response_format,
        temperature=0.2,
        max_tokens=150,
    )


@pytest.mark.anyio
async def test_request_payload_and_parsed_content(
    client_factory: ClientFactory,
    envelope: Callable[[str], dict],
) -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/chat/completions")
        assert request.headers["authorization"] == "Bearer sk-test"
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=envelope('{"categoryKey": "dining", "confidence": 0.9}'))

    result = await _request(client_factory(handler))

    assert result == {"categoryKey": "dining", "confidence": 0.9}
    body = seen[0]
    assert body["model"] == "openai/gpt-4o-mini"
    assert body["messages"] == [
        {"role": "system", "content": "system text"},
        {"role": "user", "content": "user text"},
    ]
    assert body["response_format"] == {
        "type": "json_schema",
        "json_schema": {"name": "transaction_category", "strict": True, "schema": {"type": "object"}},
    }
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 150


@pytest.mark.anyio
async def test_loose_contract_sends_json_object(
    client_factory: ClientFactory,
    envelope: Callable[[str], dict],
) -> None:
    formats: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        formats.append(json.loads(request.content)["response_format"])
        return httpx.Response(200, json=envelope("{}"))

    await _request(client_factory(handler), response_format=LooseJson())

    assert formats == [{"type": "json_object"}]


@pytest.mark.anyio
async def test_connection_failure_is_transport_error(client_factory: ClientFactory) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        await _request(client_factory(handler))
    # No retries at this layer.
    assert calls == 1


@pytest.mark.anyio
async def test_non_success_status_carries_code(client_factory: ClientFactory) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"error": {"message": "Insufficient credits", "code": 402}})

    with pytest.raises(ApiStatusError) as exc_info:
        await _request(client_factory(handler))

    assert exc_info.value.status_code == 402
    assert not indicates_schema_unsupported(exc_info.value)


@pytest.mark.anyio
async def test_schema_rejection_is_recognised(client_factory: ClientFactory) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": {"message": "response_format json_schema is not supported by this model"}},
        )

    with pytest.raises(ApiStatusError) as exc_info:
        await _request(client_factory(handler))

    assert indicates_schema_unsupported(exc_info.value)


@pytest.mark.anyio
async def test_error_payload_with_success_status(client_factory: ClientFactory) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": {"message": "Rate limit exceeded", "code": 429}})

    with pytest.raises(ProviderError) as exc_info:
        await _request(client_factory(handler))

    assert exc_info.value.code == 429
    assert "Rate limit exceeded" in str(exc_info.value)


@pytest.mark.anyio
@pytest.mark.parametrize(
    "payload",
    [
        {"choices": []},
        {"choices": [{"message": {}}]},
        {"choices": [{"message": {"content": None}}]},
        {"data": "unexpected"},
    ],
)
async def test_bad_envelope_is_structure_error(client_factory: ClientFactory, payload: dict) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(StructureError):
        await _request(client_factory(handler))


@pytest.mark.anyio
async def test_non_json_body_is_structure_error(client_factory: ClientFactory) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(StructureError):
        await _request(client_factory(handler))


@pytest.mark.anyio
async def test_unmatched_brace_is_truncated(
    client_factory: ClientFactory,
    envelope: Callable[[str], dict],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=envelope("{invalid"))

    with pytest.raises(TruncatedResponseError) as exc_info:
        await _request(client_factory(handler))

    assert exc_info.value.content == "{invalid"


@pytest.mark.anyio
async def test_prose_is_malformed_not_truncated(
    client_factory: ClientFactory,
    envelope: Callable[[str], dict],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=envelope("The transaction looks like dining."))

    with pytest.raises(MalformedJsonError):
        await _request(client_factory(handler))


@pytest.mark.anyio
async def test_empty_content_is_malformed(
    client_factory: ClientFactory,
    envelope: Callable[[str], dict],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=envelope(""))

    with pytest.raises(MalformedJsonError, match="Empty response"):
        await _request(client_factory(handler))


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ('{"categoryKey": "dining",', True),
        ('{"items": [', True),
        ('{"categoryKey": "din', True),
        ("{invalid", True),
        ("just words", False),
        ('{"a": 1}}', False),
        ("[1, 2]]", False),
    ],
)
def test_looks_truncated(content: str, expected: bool) -> None:
    assert looks_truncated(content) is expected


def test_missing_api_key_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    with pytest.raises(ValueError, match="OPENROUTER_API_KEY"):
        CompletionClient()


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ApiStatusError(400, "json_schema is not supported for this model"), True),
        (ProviderError("Strict mode unavailable"), True),
        (ApiStatusError(403, "model is restricted for your account"), False),
        (ProviderError("Constraint violated"), False),
        (TransportError("Network error: strict firewall"), False),
    ],
)
def test_indicates_schema_unsupported_matches_whole_words(error: Exception, expected: bool) -> None:
    assert indicates_schema_unsupported(error) is expected
