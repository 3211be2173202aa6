"""Mock provider for development and tests.

Returns a canned scene without making external API calls.

Enable by setting environment variable:
    MOCK_PROVIDER=true
"""

import asyncio
import random

from scenegate.app.exceptions import SceneGenerationError
from scenegate.app.providers.base import BaseSceneProvider, SceneResult


class MockSceneProvider(BaseSceneProvider):
    """Mock scene provider with optional delay and failure injection."""

    name = "mock"

    def __init__(self, delay: float = 0.0, failure_rate: float = 0.0):
        """Initialize the mock provider.

        Args:
            delay: Response delay in seconds
            failure_rate: Probability of raising SceneGenerationError (0-1)
        """
        self.delay = delay
        self.failure_rate = failure_rate
        self.calls = 0

    async def generate_scene(self, description: str) -> SceneResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failure_rate and random.random() < self.failure_rate:
            raise SceneGenerationError("Simulated provider failure")

        scene = {
            "background": "#1B1B3A",
            "content": "#F5F5F5",
            "shadow": "0 0 2vw rgba(245, 245, 245, 0.6)",
            "caption": description[:120],
            "font-family": "Courier New, monospace",
            "keyframes": "@keyframes drift { 0% { transform: translateX(0); } 50% { transform: translateX(20vw); } 100% { transform: translateX(0); } }",
            "animation": "drift 6s ease-in-out infinite",
            "fallback": "float",
        }
        prompt_tokens = len(description.split()) * 2 or 10
        return SceneResult(
            scene=scene,
            prompt_tokens=prompt_tokens,
            completion_tokens=120,
            model="mock-model",
        )
