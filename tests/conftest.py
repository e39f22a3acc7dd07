from collections.abc import Callable
from unittest.mock import AsyncMock

import httpx
import pytest
from openai import AsyncOpenAI

from budget_categorizer.integration.openrouter import CompletionClient
from budget_categorizer.models import Category

Handler = Callable[[httpx.Request], httpx.Response]

CATEGORY_ROWS = [
    (1, "groceries", "Zakupy spożywcze"),
    (2, "transport", "Transport"),
    (3, "entertainment", "Rozrywka"),
    (4, "dining", "Restauracje"),
    (5, "utilities", "Opłaty"),
    (6, "healthcare", "Zdrowie"),
    (7, "shopping", "Zakupy"),
    (8, "education", "Edukacja"),
    (9, "housing", "Mieszkanie"),
    (10, "insurance", "Ubezpieczenia"),
    (11, "savings", "Oszczędności"),
    (12, "other", "Inne"),
]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def categories() -> list[Category]:
    return [Category(id=cid, key=key, name=name) for cid, key, name in CATEGORY_ROWS]


@pytest.fixture
def category_repo(categories: list[Category]) -> AsyncMock:
    by_key = {category.key: category for category in categories}
    repo = AsyncMock()
    repo.list_categories.return_value = categories
    repo.get_by_key.side_effect = lambda key: by_key.get(key)
    return repo


def completion_envelope(content: str) -> dict:
    return {
        "id": "gen-1",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
    }


def make_completion_client(handler: Handler) -> CompletionClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    openai_client = AsyncOpenAI(
        api_key="sk-test",
        base_url="https://openrouter.test/api/v1",
        http_client=http_client,
        max_retries=0,
    )
    return CompletionClient(client=openai_client)


@pytest.fixture
def client_factory() -> Callable[[Handler], CompletionClient]:
    return make_completion_client


@pytest.fixture
def envelope() -> Callable[[str], dict]:
    return completion_envelope
