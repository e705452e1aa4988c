"""
Server entry point: wires settings, directory and processor into the
webhook app.

Usage:
    python -m callbridge.server
    # or
    uvicorn callbridge.server:app_from_environment --factory --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from callbridge.config import Settings, get_settings
from callbridge.crm_client import BuilderPrimeClient
from callbridge.dialpad_client import DialpadClient
from callbridge.directory import ContactDirectory
from callbridge.ledger import InMemoryLedger
from callbridge.logging_config import setup_logging
from callbridge.mock_directory import InMemoryDirectory
from callbridge.processor import EventProcessor
from callbridge.webhook import create_webhook_app

log = structlog.get_logger(__name__)


def build_directory(settings: Settings) -> ContactDirectory:
    """Live BuilderPrime client when a key is configured, in-memory otherwise."""
    if settings.use_mock_directory:
        log.info("directory_selected", mode="mock")
        return InMemoryDirectory()
    log.info("directory_selected", mode="builderprime", base_url=settings.builderprime_base_url)
    return BuilderPrimeClient(settings)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    if not settings.builderprime_api_key:
        log.warning("builderprime_api_key_unset", detail="activities go to the in-memory directory")
    if not settings.crm_write_token and not settings.use_mock_directory:
        log.warning("crm_write_token_unset", detail="BuilderPrime will reject activity writes")

    directory = build_directory(settings)
    dialpad = DialpadClient(settings)
    processor = EventProcessor(
        directory,
        ledger=InMemoryLedger(),
        auth_token=settings.crm_write_token,
        key_policy=settings.dedup_key_policy,
        call_log_source=dialpad,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(
            "server_started",
            mode="mock" if settings.use_mock_directory else "production",
            dedup_key_policy=settings.dedup_key_policy.value,
        )
        yield
        await dialpad.close()
        if isinstance(directory, BuilderPrimeClient):
            await directory.close()
        log.info("server_stopped")

    return create_webhook_app(settings, processor, directory=directory, lifespan=lifespan)


def app_from_environment() -> FastAPI:
    """App factory for uvicorn; nothing is built or configured at import time."""
    settings = get_settings()
    setup_logging(settings.log_dir, json_logs=settings.json_logs)
    return create_app(settings)


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "callbridge.server:app_from_environment",
        factory=True,
        host=_settings.host,
        port=_settings.port,
        reload=False,
        log_level="info",
    )
