"""
karaoke.services.presence
~~~~~~~~~~~~~~~~~~~~~~~~~

语音在线状态桥接 —— 把外部语音平台的成员 / 说话事件路由到对应房间。

外部语音机器人与平台之间的协议不在本服务范围内，这里只定义它与房间协调层
之间的接口:

- 进程外的机器人通过 HTTP 推送接口调用 ``link`` / ``refresh_members`` / ``speaking``；
- 进程内可注入一个实现了 ``VoiceClient`` 的客户端，由主持端通过 ``voice:link``
  请求触发加入语音频道，加入过程带超时，在房间变更的串行路径之外等待。
"""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

from karaoke.core.exceptions import (
    NotFoundError,
    PartyError,
    PresenceTimeoutError,
    PresenceUnavailableError,
)
from karaoke.core.logging import get_logger
from karaoke.core.settings import settings
from karaoke.schemas import protocol
from karaoke.schemas.party import Member
from karaoke.schemas.protocol import ServerEvent
from karaoke.services.broadcaster import ClientConnection
from karaoke.services.party_room import PartyRoom

if TYPE_CHECKING:
    from karaoke.services.gateway import PartyGateway

logger = get_logger(__name__)


class VoiceClient(Protocol):
    """外部语音平台客户端需要实现的接口。"""

    async def join(self, group_id: str) -> list[Member]:
        """加入该群组的语音频道，返回当前频道内的成员。"""
        ...


class PresenceBridge:
    """语音在线状态桥接器。

    Attributes:
        gateway: 事件网关，所有房间变更都经由它的串行路径完成。
        voice_client: 进程内语音客户端，为 ``None`` 时 ``voice:link`` 不可用。
        join_timeout: 加入语音频道的最长等待秒数。
    """

    def __init__(
        self,
        gateway: PartyGateway,
        voice_client: VoiceClient | None = None,
        join_timeout: float | None = None,
    ) -> None:
        self.gateway = gateway
        self.voice_client = voice_client
        self.join_timeout = settings.VOICE_JOIN_TIMEOUT_SECONDS if join_timeout is None else join_timeout
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def available(self) -> bool:
        return self.voice_client is not None

    async def link(self, group_id: str, code: str) -> PartyRoom | None:
        return await self.gateway.link_group(group_id, code)

    async def refresh_members(self, group_id: str, members: list[Member]) -> bool:
        return await self.gateway.apply_members(group_id, members)

    async def speaking(self, group_id: str, participant_id: str, is_speaking: bool) -> bool:
        return await self.gateway.apply_speaking(group_id, participant_id, is_speaking)

    async def attach(self, group_id: str, code: str) -> list[Member]:
        """绑定群组并加入语音频道，成功后刷新房间成员。

        Raises:
            PresenceUnavailableError: 未配置语音客户端。
            NotFoundError: 房间不存在。
            PresenceTimeoutError: 超过 ``join_timeout`` 仍未就绪。
        """
        if self.voice_client is None:
            raise PresenceUnavailableError("Voice presence is not available")
        if await self.link(group_id, code) is None:
            raise NotFoundError("Room not found")

        try:
            members = await asyncio.wait_for(self.voice_client.join(group_id), timeout=self.join_timeout)
        except asyncio.TimeoutError:
            raise PresenceTimeoutError("Timed out joining the voice channel") from None

        if not await self.refresh_members(group_id, members):
            # 加入期间房间已被销毁
            raise NotFoundError("Room not found")
        logger.info("🔊 已加入语音频道 | group=%s | room=%s | 成员: %d", group_id, code, len(members))
        return members

    def start_attach(self, group_id: str, code: str, requester: ClientConnection) -> asyncio.Task[None]:
        """在后台执行 ``attach``，失败时只通知发起请求的连接。"""
        task = asyncio.create_task(self._attach_and_report(group_id, code, requester))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _attach_and_report(self, group_id: str, code: str, requester: ClientConnection) -> None:
        try:
            await self.attach(group_id, code)
        except PartyError as e:
            logger.warning("加入语音频道失败 | group=%s | room=%s | %s", group_id, code, e.message)
            await self._report_error(requester, group_id, e.message)
        except Exception as e:
            logger.error("加入语音频道异常 | group=%s | %s", group_id, e, exc_info=True)
            await self._report_error(requester, group_id, "Failed to join voice channel")

    @staticmethod
    async def _report_error(requester: ClientConnection, group_id: str, message: str) -> None:
        event = ServerEvent(type=protocol.VOICE_ERROR, data={"group_id": group_id, "error": message})
        try:
            await requester.send_event(event)
        except Exception as e:
            logger.warning("语音错误通知未送达（连接可能已断开）: %s", e)

    async def aclose(self) -> None:
        """取消所有未完成的加入任务。应在应用关闭时调用。"""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
