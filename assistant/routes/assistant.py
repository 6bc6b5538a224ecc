from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Mapping, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from assistant.services.access_control import get_access_level
from assistant.services.actors import Actor, actor_from_claims, require_valid_actor
from assistant.services.errors import ActorValidationError, AssistantError, ProviderError
from assistant.services.orchestrator import chat, stream_chat
from assistant.services.tool_registry import get_allowed_tools

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assistant", tags=["assistant"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _encode_sse(event: str, data: dict) -> str:
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event}\ndata: {payload}\n\n"


def current_actor(request: Request) -> Actor:
    """Resolve the actor attached by the upstream auth middleware."""
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise HTTPException(status_code=401, detail={"code": "unauthenticated", "message": "Authentication required."})

    try:
        if isinstance(actor, Mapping):
            actor = actor_from_claims(actor)
        require_valid_actor(actor)
    except ActorValidationError as exc:
        raise HTTPException(status_code=exc.status_code, detail={"code": exc.code, "message": exc.message}) from exc
    return actor


async def _read_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


@router.get("/tools")
async def list_tools(actor: Actor = Depends(current_actor)) -> dict[str, Any]:
    level = get_access_level(actor)
    return {
        "accessLevel": level.name,
        "tools": [
            {"name": tool.name, "description": tool.description, "sensitivity": tool.data_sensitivity.value}
            for tool in get_allowed_tools(actor)
        ],
    }


@router.post("/chat")
async def chat_endpoint(request: Request, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
    body = await _read_body(request)
    try:
        result = await chat(actor, body)
    except AssistantError as exc:
        if isinstance(exc, ProviderError):
            logger.error("Assistant provider error for user %s: %s", actor.user_id, exc.message)
        raise HTTPException(status_code=400, detail={"code": exc.code, "message": exc.message}) from exc
    return result.to_dict()


@router.post("/chat/stream")
async def chat_stream(request: Request, actor: Actor = Depends(current_actor)):
    body = await _read_body(request)
    events = stream_chat(actor, body)

    first: Optional[dict[str, Any]]
    try:
        first = await events.__anext__()
    except StopAsyncIteration:
        first = None
    except ProviderError as exc:
        logger.error("Failed to initialize AI stream for user %s: %s", actor.user_id, exc.message)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to initialize AI stream", "message": exc.message},
        )
    except AssistantError as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "message": exc.message})
    except Exception as exc:
        logger.exception("Failed to initialize AI stream for user %s", actor.user_id)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to initialize AI stream", "message": str(exc) or "Unknown error"},
        )

    async def generate() -> AsyncIterator[str]:
        try:
            if first is not None:
                yield _encode_sse(first["event"], first["data"])
            async for event in events:
                if await request.is_disconnected():
                    logger.info("Client disconnected from assistant stream (user %s)", actor.user_id)
                    break
                yield _encode_sse(event["event"], event["data"])
        except AssistantError as exc:
            logger.error("Assistant stream failed for user %s: %s", actor.user_id, exc.message)
            yield _encode_sse("error", {"code": exc.code, "message": exc.message})
        except Exception:
            logger.exception("Assistant stream failed for user %s", actor.user_id)
            yield _encode_sse("error", {"code": "assistant_stream_error", "message": "Assistant stream failed."})
        finally:
            await events.aclose()

    return StreamingResponse(generate(), media_type="text/event-stream", headers=SSE_HEADERS)
