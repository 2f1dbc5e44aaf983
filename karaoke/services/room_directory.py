"""
karaoke.services.room_directory
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间目录 —— 管理所有存活房间的生命周期。

- ``create_room()``                    → 生成不重复的房间码并登记新房间
- ``get_room(code)``                   → 按房间码查找（大小写不敏感）
- ``get_room_by_group(group_id)``      → 按外部语音群组 ID 反查
- ``link_group(group_id, code)``       → 绑定 / 改绑语音群组
- ``delete_room(code)``                → 删除房间及其群组索引
- ``sweep_idle(max_age_seconds)``      → 清理无连接且长时间无活动的房间

目录实例由应用在 lifespan 中创建并挂载到 ``app.state``，不使用模块级全局状态。
"""
from __future__ import annotations

import random
import time

from karaoke.core.logging import get_logger
from karaoke.schemas.party import RoomSummary
from karaoke.services.party_room import PartyRoom

logger = get_logger(__name__)

# 去掉了容易混淆的 I、O、0、1
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 4


def normalize_code(code: str | None) -> str:
    """房间码统一转为大写并去掉首尾空白。"""
    return (code or "").strip().upper()


class RoomDirectory:
    """房间目录。

    Attributes:
        rng: 生成房间码使用的随机源，测试时可注入固定种子。
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()
        self._rooms: dict[str, PartyRoom] = {}
        self._group_index: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and normalize_code(code) in self._rooms

    def generate_code(self) -> str:
        """生成一个当前未被占用的房间码（冲突则重试）。"""
        while True:
            code = "".join(self.rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
            if code not in self._rooms:
                return code

    def create_room(
        self,
        external_group_id: str | None = None,
        voice_channel_name: str = "",
    ) -> PartyRoom:
        """创建并登记一个新房间。"""
        room = PartyRoom(
            code=self.generate_code(),
            external_group_id=external_group_id,
            voice_channel_name=voice_channel_name,
        )
        self._rooms[room.code] = room
        if external_group_id:
            self._group_index[external_group_id] = room.code
        logger.info("🎵 房间已创建 | code=%s | 当前房间数: %d", room.code, len(self._rooms))
        return room

    def get_room(self, code: str | None) -> PartyRoom | None:
        return self._rooms.get(normalize_code(code))

    def get_room_by_group(self, group_id: str) -> PartyRoom | None:
        code = self._group_index.get(group_id)
        return self._rooms.get(code) if code else None

    def link_group(self, group_id: str, code: str) -> PartyRoom | None:
        """把外部语音群组绑定到房间，后写覆盖先写。

        Returns:
            被绑定的房间；房间不存在时返回 ``None`` 且不修改索引。
        """
        room = self.get_room(code)
        if room is None:
            return None
        previous = self.get_room_by_group(group_id)
        if previous is not None and previous is not room:
            previous.external_group_id = None
        if room.external_group_id and room.external_group_id != group_id:
            self._group_index.pop(room.external_group_id, None)
        room.external_group_id = group_id
        self._group_index[group_id] = room.code
        room.touch()
        logger.info("🔗 语音群组已绑定 | group=%s | code=%s", group_id, room.code)
        return room

    def delete_room(self, code: str) -> bool:
        """删除房间及其群组索引，房间不存在时返回 ``False``。"""
        room = self._rooms.pop(normalize_code(code), None)
        if room is None:
            return False
        group_id = room.external_group_id
        if group_id and self._group_index.get(group_id) == room.code:
            del self._group_index[group_id]
        logger.info("🗑️ 房间已删除 | code=%s | 剩余房间数: %d", room.code, len(self._rooms))
        return True

    def sweep_idle(self, max_age_seconds: float, now: float | None = None) -> list[str]:
        """删除所有无连接且超过 ``max_age_seconds`` 无活动的房间。

        定时调度不属于目录的职责，由应用的后台任务负责周期调用。

        Returns:
            被删除的房间码列表。
        """
        now = time.time() if now is None else now
        expired = [code for code, room in self._rooms.items() if room.is_idle(max_age_seconds, now)]
        for code in expired:
            self.delete_room(code)
        if expired:
            logger.info("🧹 清理空闲房间 %d 个: %s", len(expired), ", ".join(expired))
        return expired

    def list_rooms(self) -> list[RoomSummary]:
        """列出所有存活房间的摘要信息。"""
        return [room.info() for room in self._rooms.values()]
