"""Server side of the push channel.

Each connected client gets a ``PushChannel`` with its own outbound queue.
``PushHub.publish`` only enqueues, so it can run inside a repository mutation
without suspending. A channel's ``pump`` coroutine is the sole writer of its
socket, which keeps delivery order equal to emission order.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_CLOSE = object()


class PushChannel:
    def __init__(self, client_id: str):
        self.client_id = client_id
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def put(self, message: dict) -> None:
        if not self.closed:
            self.queue.put_nowait(message)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(_CLOSE)

    async def pump(self, send: Callable[[dict], Awaitable[None]]) -> None:
        """Forward queued messages to ``send`` until the channel is closed."""
        while True:
            message = await self.queue.get()
            if message is _CLOSE:
                return
            await send(message)


class PushHub:
    """Registry of connected clients keyed by client id."""

    def __init__(self):
        self._channels: Dict[str, PushChannel] = {}

    def __len__(self) -> int:
        return len(self._channels)

    def __call__(self, message: dict, exclude: Optional[str] = None) -> None:
        self.publish(message, exclude=exclude)

    @property
    def client_ids(self):
        return list(self._channels)

    def register(self, client_id: Optional[str] = None) -> PushChannel:
        client_id = client_id or uuid.uuid4().hex
        existing = self._channels.get(client_id)
        if existing is not None:
            # Same client reconnecting before its old socket was reaped.
            logger.info("Replacing stale push channel for client %s", client_id)
            existing.close()
        channel = PushChannel(client_id)
        self._channels[client_id] = channel
        logger.info("Client %s connected (%d connected)", client_id, len(self._channels))
        return channel

    def unregister(self, channel: PushChannel) -> None:
        channel.close()
        if self._channels.get(channel.client_id) is channel:
            del self._channels[channel.client_id]
            logger.info("Client %s disconnected (%d connected)", channel.client_id, len(self._channels))

    def publish(self, message: dict, exclude: Optional[str] = None) -> int:
        """Queue ``message`` for every client except ``exclude``; returns the number queued."""
        sent = 0
        for client_id, channel in list(self._channels.items()):
            if exclude is not None and client_id == exclude:
                continue
            channel.put(message)
            sent += 1
        logger.debug("Queued %s for %d client(s)", message.get("type"), sent)
        return sent
