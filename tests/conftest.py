"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 每个用例使用全新的房间目录与事件网关，
连接挂载内存中的假 WebSocket，记录服务端发出的所有消息。
"""
from __future__ import annotations

import os
import random
from collections.abc import Callable

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from karaoke.services.broadcaster import ClientConnection  # noqa: E402
from karaoke.services.gateway import PartyGateway  # noqa: E402
from karaoke.services.room_directory import RoomDirectory  # noqa: E402
from tests.helpers import FakeWebSocket  # noqa: E402


@pytest.fixture()
def directory() -> RoomDirectory:
    return RoomDirectory(rng=random.Random(42))


@pytest.fixture()
def gateway(directory: RoomDirectory) -> PartyGateway:
    return PartyGateway(directory)


@pytest.fixture()
def make_conn() -> Callable[[], ClientConnection]:
    """返回一个工厂函数，每次调用生成一条挂着假 WebSocket 的连接。"""

    def _make() -> ClientConnection:
        return ClientConnection(FakeWebSocket())

    return _make
