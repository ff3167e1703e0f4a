"""FastAPI dependencies resolving the components attached to ``app.state``."""
from __future__ import annotations

from fastapi import Request

from src.core.config import Settings
from src.services.record_store import RecordStore
from src.utils.sns import Verifier


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_verifier(request: Request) -> Verifier:
    return request.app.state.verifier


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def enforce_rate_limit(request: Request) -> None:
    client = request.client.host if request.client else "unknown"
    await request.app.state.rate_limiter.check(f"{request.url.path}:{client}")
