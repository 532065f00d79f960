"""Health check endpoint."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from chatlink import __version__

router = APIRouter()

_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> dict:
    """Health check: returns status, uptime and validation bounds."""
    config = request.app.state.config
    hub = request.app.state.hub
    return {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(time.time() - _start_time, 1),
        "channel_types": [t.value for t in hub.registry.list_types()],
        "validation": {
            "validation_timeout_s": config.validation.validation_timeout_s,
            "test_timeout_s": config.validation.test_timeout_s,
        },
        "hooks": {"channel_changed_targets": len(config.hooks.channel_changed_targets)},
    }
