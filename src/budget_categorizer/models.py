from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

ModelIdentifier = str


class CategorizationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class Category(BaseModel):
    id: int
    key: str
    name: str


class CategorizationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category_key: str = Field(alias="categoryKey")
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str


class CategorizationUpdate(BaseModel):
    category_id: Optional[int] = None
    is_ai_categorized: Optional[bool] = None
    categorization_status: CategorizationStatus = CategorizationStatus.COMPLETED

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
