"""
karaoke.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 广播器 —— 维护每个房间频道的订阅连接，并负责事件扇出。

一条连接在任一时刻最多订阅一个频道（即它当前所在的房间）。
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import WebSocket

from karaoke.core.logging import get_logger
from karaoke.schemas.protocol import Ack, ServerEvent

logger = get_logger(__name__)


class ClientConnection:
    """一条物理 WebSocket 连接。

    Attributes:
        id: 连接唯一标识。
        websocket: 底层 WebSocket。
        room_code: 当前所在房间码，未加入房间时为 ``None``。
    """

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.id = connection_id or uuid.uuid4().hex
        self.websocket = websocket
        self.room_code: str | None = None

    async def send_text(self, message: str) -> None:
        await self.websocket.send_text(message)

    async def send_ack(self, ack: Ack) -> None:
        await self.send_text(ack.model_dump_json())

    async def send_event(self, event: ServerEvent) -> None:
        await self.send_text(event.model_dump_json())

    def __repr__(self) -> str:
        return f"ClientConnection(id={self.id[:8]}, room={self.room_code})"


class ChannelBroadcaster:
    """按房间码划分的连接集合与广播能力。"""

    def __init__(self) -> None:
        self._channels: dict[str, set[ClientConnection]] = {}

    def subscribe(self, code: str, conn: ClientConnection) -> None:
        self._channels.setdefault(code, set()).add(conn)

    def unsubscribe(self, code: str, conn: ClientConnection) -> None:
        members = self._channels.get(code)
        if members is None:
            return
        members.discard(conn)
        if not members:
            del self._channels[code]

    def drop_channel(self, code: str) -> None:
        self._channels.pop(code, None)

    def subscribers(self, code: str) -> list[ClientConnection]:
        return list(self._channels.get(code, ()))

    def online_count(self, code: str) -> int:
        return len(self._channels.get(code, ()))

    async def broadcast(
        self,
        code: str,
        event: ServerEvent,
        exclude: ClientConnection | None = None,
    ) -> int:
        """向频道内所有订阅者（可排除一条）发送事件。

        发送失败的连接会被移出频道，其自身的接收循环随后会完成断线清理。

        Returns:
            成功送达的连接数。
        """
        targets = [conn for conn in self.subscribers(code) if conn is not exclude]
        if not targets:
            return 0
        message = event.model_dump_json()
        results = await asyncio.gather(
            *(conn.send_text(message) for conn in targets),
            return_exceptions=True,
        )
        delivered = 0
        for conn, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("广播失败，移除断开的连接 | room=%s | %r", code, conn)
                self.unsubscribe(code, conn)
            else:
                delivered += 1
        return delivered
