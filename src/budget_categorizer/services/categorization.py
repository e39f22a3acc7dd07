import asyncio

from budget_categorizer.domain.categories import is_ai_categorized
from budget_categorizer.engine import CategorizationEngine
from budget_categorizer.integration.base import CategoryRepository, TransactionStore
from budget_categorizer.logger import get_logger
from budget_categorizer.models import CategorizationStatus, CategorizationUpdate

logger = get_logger(__name__)


class BackgroundCategorizationService:
    """
    Runs AI categorization for freshly created transactions outside the request cycle.

    The caller hands over the transaction and returns immediately. Whatever happens
    afterwards, the transaction leaves the ``pending`` state: either with the AI
    category applied, or with only ``categorization_status = completed`` written.
    """

    def __init__(
        self,
        engine: CategorizationEngine,
        categories: CategoryRepository,
        transactions: TransactionStore,
        max_concurrency: int = 0,
    ) -> None:
        self.engine = engine
        self.categories = categories
        self.transactions = transactions
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def schedule_categorization(
        self,
        transaction_id: int | str,
        description: str,
        owner_id: str,
    ) -> asyncio.Task[None]:
        """Start categorization in the background. Must be called from a running event loop."""
        task = asyncio.create_task(
            self._run(transaction_id, description, owner_id),
            name=f"categorize-transaction-{transaction_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        logger.debug(
            "[BACKGROUND] Queued categorization for transaction %s (%d in flight).",
            transaction_id,
            len(self._tasks),
        )
        return task

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[BACKGROUND] Task %s ended with an unhandled error: %r", task.get_name(), exc)

    async def _run(self, transaction_id: int | str, description: str, owner_id: str) -> None:
        try:
            if self._semaphore is None:
                await self._categorize_and_persist(transaction_id, description, owner_id)
            else:
                async with self._semaphore:
                    await self._categorize_and_persist(transaction_id, description, owner_id)
        except asyncio.CancelledError:
            logger.warning("[BACKGROUND] Categorization of transaction %s was cancelled.", transaction_id)
            await asyncio.shield(self._mark_completed(transaction_id, owner_id))
            raise
        except Exception:
            logger.exception(
                "[BACKGROUND] Unexpected error during categorization of transaction %s.",
                transaction_id,
            )
            await asyncio.shield(self._mark_completed(transaction_id, owner_id))

    async def _categorize_and_persist(
        self,
        transaction_id: int | str,
        description: str,
        owner_id: str,
    ) -> None:
        logger.info("[BACKGROUND] Starting categorization for transaction %s.", transaction_id)
        result = await self.engine.categorize(description)
        logger.debug(
            "[BACKGROUND] Result for transaction %s: key=%s confidence=%.2f reasoning=%s",
            transaction_id,
            result.category_key,
            result.confidence,
            result.reasoning,
        )

        category = await self.categories.get_by_key(result.category_key)
        if category is None:
            logger.warning(
                "[BACKGROUND] Category '%s' not found for transaction %s.",
                result.category_key,
                transaction_id,
            )
            await self._mark_completed(transaction_id, owner_id)
            return

        update = CategorizationUpdate(
            category_id=category.id,
            is_ai_categorized=is_ai_categorized(result),
            categorization_status=CategorizationStatus.COMPLETED,
        )
        updated = await self.transactions.update_categorization(transaction_id, owner_id, update)
        if not updated:
            logger.error("[BACKGROUND] Failed to store category for transaction %s.", transaction_id)
            await self._mark_completed(transaction_id, owner_id)
            return

        logger.info(
            "[BACKGROUND] Categorized transaction %s as '%s' (confidence: %.2f).",
            transaction_id,
            category.name,
            result.confidence,
        )

    async def _mark_completed(self, transaction_id: int | str, owner_id: str) -> None:
        """Best effort: write only the terminal status, never raise."""
        try:
            updated = await self.transactions.update_categorization(
                transaction_id,
                owner_id,
                CategorizationUpdate(categorization_status=CategorizationStatus.COMPLETED),
            )
        except Exception as exc:
            logger.error("[BACKGROUND] Failed to mark transaction %s as completed: %s", transaction_id, exc)
            return
        if not updated:
            logger.error("[BACKGROUND] Failed to mark transaction %s as completed.", transaction_id)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    async def aclose(self, timeout: float = 30.0) -> None:
        """Give in-flight categorizations a chance to finish, then cancel the rest."""
        if not self._tasks:
            return
        logger.info("[BACKGROUND] Waiting for %d categorization(s) to finish.", len(self._tasks))
        _, leftover = await asyncio.wait(set(self._tasks), timeout=timeout)
        if not leftover:
            return
        logger.warning("[BACKGROUND] Cancelling %d unfinished categorization(s).", len(leftover))
        for task in leftover:
            task.cancel()
        await asyncio.gather(*leftover, return_exceptions=True)
