import asyncio
import os
from time import monotonic
from typing import Any

import httpx

from budget_categorizer.core import settings
from budget_categorizer.integration.base import CategoryRepository, TransactionStore
from budget_categorizer.logger import get_logger
from budget_categorizer.models import CategorizationUpdate, Category

logger = get_logger(__name__)

_CATEGORY_COLUMNS = "id,key,translations"


def category_from_row(row: dict[str, Any], locale: str) -> Category:
    translations = row.get("translations")
    name = None
    if isinstance(translations, dict):
        name = translations.get(locale)
    return Category(id=row["id"], key=row["key"], name=name or row["key"])


class SupabaseClient(CategoryRepository, TransactionStore):
    """
    Reads categories and writes categorization results through the hosted
    store's PostgREST endpoint (``/rest/v1``).
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        categories_cache_ttl: float | None = None,
        locale: str | None = None,
        timeout: float = 10.0,
    ):
        self.base_url = (base_url or os.getenv("SUPABASE_URL") or "").rstrip("/") or None
        self.api_key = api_key or os.getenv("SUPABASE_KEY")
        self.headers = {
            "apikey": self.api_key or "",
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.locale = locale or settings.CATEGORIES_LOCALE
        self.timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()
        self._cache_lock = asyncio.Lock()
        self._categories_cache: list[Category] | None = None
        self._categories_cache_expires_at = 0.0
        cache_ttl = categories_cache_ttl
        if cache_ttl is None:
            cache_ttl = settings.CATEGORIES_CACHE_TTL
        self._categories_cache_ttl = max(0.0, cache_ttl)

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=self.timeout)
                self._client = client
            return client

    def _cached_categories(self, *, allow_stale: bool = False) -> list[Category] | None:
        if self._categories_cache is None or self._categories_cache_ttl <= 0:
            return None
        if not allow_stale and monotonic() >= self._categories_cache_expires_at:
            return None
        return self._categories_cache

    def _cache_categories(self, categories: list[Category]) -> None:
        """Must be called while holding _cache_lock."""
        if self._categories_cache_ttl <= 0:
            return
        self._categories_cache = categories
        self._categories_cache_expires_at = monotonic() + self._categories_cache_ttl

    async def _select_categories(self, params: dict[str, str]) -> list[Category]:
        client = await self._get_client()
        response = await client.get(
            f"{self.base_url}/rest/v1/categories",
            headers=self.headers,
            params={"select": _CATEGORY_COLUMNS, **params},
        )
        response.raise_for_status()
        rows = response.json()
        if not isinstance(rows, list):
            raise ValueError(f"Unexpected categories payload: {type(rows).__name__}")
        return [category_from_row(row, self.locale) for row in rows]

    async def list_categories(self) -> list[Category]:
        if not self.configured:
            return []

        async with self._cache_lock:
            cached = self._cached_categories()
            if cached is not None:
                return cached
            try:
                categories = await self._select_categories({"order": "key.asc"})
            except (httpx.HTTPError, ValueError, KeyError) as exc:
                logger.error("[CATEGORIES] Error fetching categories: %s", exc)
                stale = self._cached_categories(allow_stale=True)
                return stale if stale is not None else []
            self._cache_categories(categories)
            logger.debug("[CATEGORIES] Loaded %d categories.", len(categories))
            return categories

    async def get_by_key(self, key: str) -> Category | None:
        if not self.configured:
            return None
        matches = await self._select_categories({"key": f"eq.{key}", "limit": "1"})
        return matches[0] if matches else None

    async def update_categorization(
        self,
        transaction_id: int | str,
        owner_id: str,
        update: CategorizationUpdate,
    ) -> bool:
        if not self.configured:
            logger.error("Supabase credentials missing; cannot update transaction %s.", transaction_id)
            return False

        client = await self._get_client()
        try:
            response = await client.patch(
                f"{self.base_url}/rest/v1/transactions",
                headers={**self.headers, "Prefer": "return=minimal"},
                params={"id": f"eq.{transaction_id}", "user_id": f"eq.{owner_id}"},
                json=update.to_payload(),
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.error("Error updating transaction %s: %s", transaction_id, exc)
            return False
