from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class SceneResult:
    """A generated scene and the token usage it cost upstream."""
    scene: Dict[str, Any]
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = field(default="unknown")

    def estimated_cost(self, input_price_per_1k: float, output_price_per_1k: float) -> float:
        """Estimated USD cost of the upstream call."""
        cost = (
            (self.prompt_tokens / 1000) * input_price_per_1k
            + (self.completion_tokens / 1000) * output_price_per_1k
        )
        return round(cost, 6)


class BaseSceneProvider(ABC):
    """Base class for scene generation providers.

    A provider turns a cleaned-up description into a scene dict. It raises
    SceneGenerationError on any upstream failure so the caller can skip
    consuming quota.
    """

    name: str = "base"

    @abstractmethod
    async def generate_scene(self, description: str) -> SceneResult:
        """Generate a scene for the description.

        Args:
            description: Normalized, length-limited scene description

        Returns:
            SceneResult with the scene and token usage

        Raises:
            SceneGenerationError: If the upstream call fails
        """
        pass
