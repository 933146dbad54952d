from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel


class ResponseMetadata(BaseModel):
    generated_at: datetime
    metric: str | None = None
    duration: str | None = None


class StatsResponse(BaseModel):
    metadata: ResponseMetadata
    data: Any
    status: Literal["success", "error"] = "success"
