"""
tests.helpers
~~~~~~~~~~~~~

测试用的假 WebSocket 与消息构造函数。
"""
from __future__ import annotations

import json
from typing import Any


class FakeWebSocket:
    """只实现 ``send_text`` 的假 WebSocket，记录所有发出的消息。"""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False

    async def send_text(self, message: str) -> None:
        if self.closed:
            raise RuntimeError("websocket is closed")
        self.sent.append(message)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.sent]

    def events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        """返回收到的广播事件（不含回执），可按类型过滤。"""
        return [
            m for m in self.messages
            if m["type"] != "ack" and (event_type is None or m["type"] == event_type)
        ]

    def acks(self) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == "ack"]

    def clear(self) -> None:
        self.sent.clear()


def frame(message_type: str, **fields: Any) -> str:
    """构造一帧客户端 JSON 消息。"""
    return json.dumps({"type": message_type, **fields})


def song(title: str, **fields: Any) -> dict[str, Any]:
    """构造点歌请求字段。"""
    return {"title": title, "artist": "Tester", "media_ref": f"ref-{title}", **fields}
