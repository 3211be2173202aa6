"""Scene generation providers."""

from typing import Optional

import httpx

from scenegate.app.core.config import settings
from scenegate.app.providers.base import BaseSceneProvider, SceneResult
from scenegate.app.providers.mock import MockSceneProvider
from scenegate.app.providers.openai import OpenAISceneProvider

__all__ = [
    "BaseSceneProvider",
    "SceneResult",
    "MockSceneProvider",
    "OpenAISceneProvider",
    "create_scene_provider",
]


def create_scene_provider(http_client: Optional[httpx.AsyncClient] = None) -> BaseSceneProvider:
    """Create the provider selected by settings."""
    if settings.mock_provider:
        return MockSceneProvider()
    return OpenAISceneProvider(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        temperature=settings.openai_temperature,
        http_client=http_client,
        timeout=settings.openai_timeout,
    )
