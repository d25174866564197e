from pydantic import BaseModel
from typing import Any


class StatusResponse(BaseModel):
    status: str
    message: str
    uptime: str      # whole seconds, "<n>s"
    timestamp: str   # ISO-8601 UTC


class HealthResponse(BaseModel):
    status: str
    version: str


class JokeResponse(BaseModel):
    joke: Any


class ErrorResponse(BaseModel):
    error: str
