"""Shared Pydantic schemas for Entitlement-Bridge."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "entitlement-bridge"
    event_type: str = ""


class ErrorResponse(BaseModel):
    error: str
