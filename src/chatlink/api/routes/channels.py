"""Channel management endpoints."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from chatlink.api.middleware.auth import verify_api_key
from chatlink.errors import (
    ChatlinkError,
    InvalidState,
    InvalidTransition,
    NotFoundError,
    NotSupportedError,
)
from chatlink.service import ChannelHub

logger = structlog.get_logger()

router = APIRouter()


class ConfigRequest(BaseModel):
    config: dict[str, Any] = Field(default_factory=dict)


def _hub(request: Request) -> ChannelHub:
    return request.app.state.hub


def _http_error(exc: ChatlinkError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransition, InvalidState)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, NotSupportedError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@router.get("/v1/channel-types")
async def list_channel_types(
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    return {"channel_types": _hub(request).registry.to_dict()}


@router.get("/v1/chatbots/{chatbot_id}/channels")
async def list_channels(
    chatbot_id: str,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    hub = _hub(request)
    try:
        channels = hub.list_channels(chatbot_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "chatbot_id": chatbot_id,
        "channels": [channel.to_dict() for channel in channels],
        "summary": hub.summary(chatbot_id).to_dict(),
    }


@router.post("/v1/chatbots/{chatbot_id}/channels/{channel_type}/connect", status_code=202)
async def connect_channel(
    chatbot_id: str,
    channel_type: str,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    try:
        channel = await _hub(request).connect(chatbot_id, channel_type)
    except ChatlinkError as exc:
        raise _http_error(exc) from exc
    return {"channel": channel.to_dict()}


@router.post("/v1/chatbots/{chatbot_id}/channels/{channel_type}/disconnect")
async def disconnect_channel(
    chatbot_id: str,
    channel_type: str,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    try:
        channel = await _hub(request).disconnect(chatbot_id, channel_type)
    except ChatlinkError as exc:
        raise _http_error(exc) from exc
    return {"channel": channel.to_dict()}


@router.post("/v1/chatbots/{chatbot_id}/channels/{channel_type}/test")
async def test_channel(
    chatbot_id: str,
    channel_type: str,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    hub = _hub(request)
    try:
        passed = await hub.run_test(chatbot_id, channel_type)
        channel = hub.store.get(chatbot_id, channel_type)
    except ChatlinkError as exc:
        raise _http_error(exc) from exc
    return {"passed": passed, "channel": channel.to_dict()}


@router.put("/v1/chatbots/{chatbot_id}/channels/{channel_type}/config")
async def configure_channel(
    chatbot_id: str,
    channel_type: str,
    body: ConfigRequest,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    try:
        channel = await _hub(request).configure(chatbot_id, channel_type, body.config)
    except ChatlinkError as exc:
        raise _http_error(exc) from exc
    return {"channel": channel.to_dict()}


@router.get(
    "/v1/chatbots/{chatbot_id}/channels/{channel_type}/embed-code",
    response_class=PlainTextResponse,
)
async def embed_code(
    chatbot_id: str,
    channel_type: str,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> str:
    try:
        return _hub(request).generate(chatbot_id, channel_type)
    except ChatlinkError as exc:
        raise _http_error(exc) from exc
