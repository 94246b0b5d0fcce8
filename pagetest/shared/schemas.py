from pydantic import BaseModel
from typing import Optional


class HealthResponse(BaseModel):
    status: str  # "ok" | "stopping"
    serving: bool
    serve_count: int
    last_error: Optional[str] = None
