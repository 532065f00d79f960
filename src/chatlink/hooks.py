"""Routing of channel-changed events to log and webhook consumers."""

from __future__ import annotations

import asyncio

import httpx
import structlog

from chatlink.channels.base import Channel

logger = structlog.get_logger()


class ChannelChangeRouter:
    """Forwards every committed channel change to the configured targets.

    Registered as a ``ChannelStore`` listener. Webhook deliveries run as
    background tasks so a slow consumer never holds a channel's lock.
    """

    def __init__(
        self,
        targets: list[str],
        *,
        webhook_timeout_s: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.targets = [t.strip() for t in targets if t and t.strip()]
        self.webhook_timeout_s = max(1, int(webhook_timeout_s))
        self._transport = transport
        self._deliveries: set[asyncio.Task[bool]] = set()

    async def __call__(self, channel: Channel) -> None:
        for target in self.targets:
            if target.lower() == "log":
                logger.info(
                    "hooks.channel_changed",
                    channel_id=channel.id,
                    status=channel.status.value,
                    generation=channel.generation,
                    error_message=channel.error_message,
                )
                continue

            url = _webhook_url(target)
            if url is None:
                logger.warning("hooks.target.unhandled", target=target)
                continue
            task = asyncio.create_task(self.dispatch_webhook(url=url, channel=channel))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def drain(self) -> None:
        """Wait for in-flight webhook deliveries."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    async def dispatch_webhook(self, *, url: str, channel: Channel) -> bool:
        timeout = httpx.Timeout(self.webhook_timeout_s)
        payload = {
            "event": "channel.changed",
            "channel": channel.to_dict(),
        }
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload)
                if response.status_code >= 400:
                    logger.warning(
                        "hooks.webhook.failed",
                        status_code=response.status_code,
                        target=url,
                        body=response.text[:300],
                    )
                    return False
            return True
        except Exception as exc:
            logger.warning("hooks.webhook.error", target=url, error=str(exc))
            return False


def _webhook_url(target: str) -> str | None:
    if target.startswith("webhook:"):
        url = target.split(":", 1)[1].strip()
        return url or None
    if target.startswith("http://") or target.startswith("https://"):
        return target
    return None
