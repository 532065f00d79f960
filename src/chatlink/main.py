"""Chatlink: FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from chatlink import __version__
from chatlink.config import ChatlinkConfig, get_config
from chatlink.logging import setup_logging
from chatlink.service import ChannelHub

logger = structlog.get_logger()


def create_app(config: ChatlinkConfig | None = None, hub: ChannelHub | None = None) -> FastAPI:
    """Create the FastAPI application.

    ``config`` and ``hub`` default to the global config and a hub built from
    it; tests pass their own.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application startup/shutdown lifecycle."""
        cfg = config or get_config()
        setup_logging(level=cfg.log_level, fmt=cfg.log_format)

        channel_hub = hub or ChannelHub.from_config(cfg)
        app.state.config = cfg
        app.state.hub = channel_hub

        logger.info(
            "chatlink.ready",
            version=__version__,
            channel_types=len(channel_hub.registry.list_types()),
            hook_targets=cfg.hooks.channel_changed_targets,
        )

        yield

        logger.info("chatlink.shutting_down")
        await channel_hub.aclose()
        logger.info("chatlink.stopped")

    app = FastAPI(
        title="Chatlink: chatbot channel integrations",
        version=__version__,
        description="Connect a chatbot to website, messaging, commerce, email and SMS channels.",
        lifespan=lifespan,
    )

    from chatlink.api.routes.channels import router as channels_router
    from chatlink.api.routes.health import router as health_router

    app.include_router(health_router, tags=["health"])
    app.include_router(channels_router, tags=["channels"])

    return app


def main() -> None:
    """Run the server directly."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)
    uvicorn.run(
        "chatlink.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
