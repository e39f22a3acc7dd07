from fastapi import HTTPException, Request

from budget_categorizer.engine import CategorizationEngine
from budget_categorizer.services.categorization import BackgroundCategorizationService


def get_engine(request: Request) -> CategorizationEngine:
    engine = getattr(request.app.state, "engine", None)
    if not engine:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return engine


def get_background(request: Request) -> BackgroundCategorizationService:
    background = getattr(request.app.state, "background", None)
    if not background:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return background
