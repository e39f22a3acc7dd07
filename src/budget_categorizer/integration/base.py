from abc import ABC, abstractmethod

from budget_categorizer.models import CategorizationUpdate, Category


class CategoryRepository(ABC):
    @abstractmethod
    async def get_by_key(self, key: str) -> Category | None:
        """Return the category with this key, or None when it does not exist."""
        pass

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        """Return every category known to the store."""
        pass


class TransactionStore(ABC):
    @abstractmethod
    async def update_categorization(
        self,
        transaction_id: int | str,
        owner_id: str,
        update: CategorizationUpdate,
    ) -> bool:
        """Write the categorization fields of one transaction owned by owner_id."""
        pass
