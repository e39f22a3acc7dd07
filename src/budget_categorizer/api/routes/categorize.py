from typing import Annotated

from fastapi import APIRouter, Depends

from budget_categorizer.api.dependencies import get_engine
from budget_categorizer.api.schemas import CategorizeRequest
from budget_categorizer.engine import CategorizationEngine
from budget_categorizer.models import CategorizationResult

router = APIRouter()


@router.post("/categorize", response_model=CategorizationResult)
async def categorize_description(
    req: CategorizeRequest,
    engine: Annotated[CategorizationEngine, Depends(get_engine)],
) -> CategorizationResult:
    return await engine.categorize(req.description)
