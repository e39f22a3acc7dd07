from pydantic import BaseModel, Field


class CategorizeRequest(BaseModel):
    description: str = Field(default="", max_length=10_000)


class WebhookResponse(BaseModel):
    status: str
    reason: str | None = None
