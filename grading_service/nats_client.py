import json
import logging
from typing import Awaitable, Callable, Optional

import nats
from nats.aio.client import Client
from nats.aio.msg import Msg

logger = logging.getLogger("nats-client")

Handler = Callable[[dict], Awaitable[Optional[dict]]]


class NATSClient:
    """Thin JSON request/reply wrapper around nats-py."""

    def __init__(self, url: str):
        self.url = url
        self.nc: Optional[Client] = None

    async def connect(self) -> None:
        self.nc = await nats.connect(self.url)
        logger.info(f"Connected to NATS at {self.url}")

    async def subscribe(self, subject: str, handler: Handler) -> None:
        async def on_message(msg: Msg):
            try:
                data = json.loads(msg.data.decode()) if msg.data else {}
            except ValueError:
                data = None

            if not isinstance(data, dict):
                response = {"success": False, "error": {"type": "validation_error", "message": "Payload must be a JSON object"}}
            else:
                response = await handler(data)

            if msg.reply:
                await msg.respond(json.dumps(response, default=str).encode())

        await self.nc.subscribe(subject, cb=on_message)
        logger.info(f"Subscribed to {subject}")

    async def close(self) -> None:
        if self.nc is not None and not self.nc.is_closed:
            await self.nc.drain()
            logger.info("NATS connection closed")
        self.nc = None
