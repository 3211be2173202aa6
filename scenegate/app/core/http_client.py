"""Shared HTTP client management for connection pooling.

The client is created in the application lifespan and handed to the
scene provider.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from scenegate.app.core.config import settings


@asynccontextmanager
async def init_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create the shared HTTP client and close it on exit.

    This context manager should be used in the FastAPI lifespan:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client() as http_client:
                yield
    """
    timeout = httpx.Timeout(
        settings.openai_timeout,
        connect=settings.openai_connect_timeout,
    )
    http_client = httpx.AsyncClient(timeout=timeout)
    try:
        yield http_client
    finally:
        await http_client.aclose()
