"""Scene generation endpoint, gated by admission control."""

import unicodedata
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from scenegate.app.core.config import settings
from scenegate.app.core.logging import get_logger, get_log_context
from scenegate.app.exceptions import InvalidSceneRequestError, RateLimitExceededError
from scenegate.app.providers import BaseSceneProvider, create_scene_provider
from scenegate.app.services.admission import (
    AdmissionController,
    QuotaLimits,
    retry_after_seconds,
)

router = APIRouter()
logger = get_logger(__name__)

SESSION_ID_KEY = "sid"


class SceneRequest(BaseModel):
    """Request body for scene generation."""
    description: str = ""


def get_admission_controller(request: Request) -> AdmissionController:
    """FastAPI dependency returning the app's admission controller."""
    controller = getattr(request.app.state, "admission", None)
    if controller is None:
        controller = AdmissionController.from_settings(settings)
        request.app.state.admission = controller
    return controller


def get_scene_provider(request: Request) -> BaseSceneProvider:
    """FastAPI dependency returning the app's scene provider."""
    provider = getattr(request.app.state, "scene_provider", None)
    if provider is None:
        provider = create_scene_provider()
        request.app.state.scene_provider = provider
    return provider


def get_session_id(session: Dict[str, Any]) -> str:
    """Stable random identifier for the client session, used in logs."""
    session_id = session.get(SESSION_ID_KEY)
    if not isinstance(session_id, str):
        session_id = uuid.uuid4().hex
        session[SESSION_ID_KEY] = session_id
    return session_id


def normalize_description(raw: str, max_chars: int) -> str:
    """Strip, length-limit and NFC-normalize a scene description.

    Raises:
        InvalidSceneRequestError: If nothing is left after stripping
    """
    description = (raw or "").strip()
    if not description:
        raise InvalidSceneRequestError("No scene description provided")
    return unicodedata.normalize("NFC", description[:max_chars])


@router.post("/generate-scene")
async def generate_scene(
    body: SceneRequest,
    request: Request,
    controller: AdmissionController = Depends(get_admission_controller),
    provider: BaseSceneProvider = Depends(get_scene_provider),
) -> Dict[str, Any]:
    """Generate a scene for the description.

    1. Checks the user and global rate limits (429 on deny)
    2. Calls the scene provider
    3. Spends one token from every bucket, only after the provider succeeded
    """
    session = request.session
    session_id = get_session_id(session)

    # File locking may spin for a while; keep it off the event loop
    decision = await run_in_threadpool(controller.check, session, session_id)
    if not decision.allowed:
        raise RateLimitExceededError(
            code=decision.code,
            message=decision.message,
            retry_after=retry_after_seconds(decision.code),
        )

    description = normalize_description(body.description, settings.scene_description_max_chars)
    result = await provider.generate_scene(description)

    await run_in_threadpool(controller.consume, session, session_id)

    logger.info(
        "Scene generated",
        extra=get_log_context(
            session_id=session_id,
            provider=provider.name,
            input_tokens=result.prompt_tokens,
            output_tokens=result.completion_tokens,
        ),
    )

    response = dict(result.scene)
    response["usage"] = {
        "input_tokens": result.prompt_tokens,
        "output_tokens": result.completion_tokens,
        "est_usd": result.estimated_cost(
            settings.openai_input_price_per_1k,
            settings.openai_output_price_per_1k,
        ),
    }
    return response


@router.get("/rate-limit/status")
async def rate_limit_status(
    request: Request,
    controller: AdmissionController = Depends(get_admission_controller),
) -> Dict[str, Any]:
    """Read-only view of the caller's buckets. Spends nothing."""
    limits: QuotaLimits = controller.limits_provider()
    return {
        "enabled": not controller.disabled,
        "user": controller.user_status(request.session),
        "limits": {
            "user": {"per_minute": limits.user_per_minute, "per_day": limits.user_per_day},
            "global": {"per_minute": limits.global_per_minute, "per_day": limits.global_per_day},
        },
    }
