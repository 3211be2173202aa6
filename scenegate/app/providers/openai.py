"""OpenAI-compatible scene provider.

Sends the description to ``/chat/completions`` in JSON mode and returns the
decoded scene object. Validation of the scene content is left to the
rendering side.
"""

import json
from typing import Any, Dict, Optional

import httpx

from scenegate.app.core.logging import get_logger
from scenegate.app.exceptions import SceneGenerationError
from scenegate.app.providers.base import BaseSceneProvider, SceneResult

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a scene generation assistant. Describe an animated scene for the "
    "user's story as a single JSON object with the keys background, content, "
    "shadow, caption, font-family, keyframes, animation and fallback. "
    "Return only the JSON object."
)


class OpenAISceneProvider(BaseSceneProvider):
    """Scene provider for OpenAI and OpenAI-compatible endpoints.

    If http_client is provided, it will be used for all requests (connection reuse).
    If not, a new client is created per request.
    """

    name = "openai"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self._http_client = http_client
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, description: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": description},
            ],
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        if self._http_client is not None:
            resp = await self._http_client.post(url, headers=self.headers, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, headers=self.headers, json=payload)
        resp.raise_for_status()
        return resp.json()

    async def generate_scene(self, description: str) -> SceneResult:
        try:
            data = await self._post(self.build_payload(description))
        except httpx.HTTPStatusError as e:
            logger.error(f"Scene provider returned error code: {e.response.status_code}")
            raise SceneGenerationError(
                f"API returned error code: {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Scene provider request failed: {e}")
            raise SceneGenerationError(f"API request failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise SceneGenerationError("Unexpected provider response format") from e

        try:
            scene = json.loads(content)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to parse scene data JSON: {str(content)[:500]}")
            raise SceneGenerationError("Invalid scene data format. Please try again.") from e
        if not isinstance(scene, dict):
            raise SceneGenerationError("Invalid scene data format. Please try again.")

        usage = data.get("usage") or {}
        return SceneResult(
            scene=scene,
            prompt_tokens=int(usage.get("prompt_tokens", 0)),
            completion_tokens=int(usage.get("completion_tokens", 0)),
            model=data.get("model", self.model),
        )
