"""
karaoke.services.gateway
~~~~~~~~~~~~~~~~~~~~~~~~

事件网关 —— 把客户端请求翻译成房间变更，并把变更结果广播给房间内的订阅者。

串行化约定:
  每个房间码对应一把 ``asyncio.Lock``。同一房间的「变更 + 广播」在锁内完成，
  因此任何订阅者看到的事件顺序与服务端的变更顺序一致；不同房间互不阻塞。

广播策略:
  - 成员 / 座位 / 队列 / 正在播放 / 歌词偏移的变更 → 发给房间内所有连接（含请求方）
  - 播放进度上报 → 发给除请求方以外的所有连接
  - 失败的请求只回执给请求方，不产生任何广播
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from karaoke.core.exceptions import (
    ConflictError,
    NotFoundError,
    PartyError,
    PreconditionError,
    PresenceUnavailableError,
)
from karaoke.core.logging import get_logger
from karaoke.schemas import protocol
from karaoke.schemas.party import ConnectionRole, Member, QueueItem
from karaoke.schemas.protocol import Ack, ServerEvent, parse_client_message
from karaoke.services.broadcaster import ChannelBroadcaster, ClientConnection
from karaoke.services.party_room import PartyRoom
from karaoke.services.room_directory import RoomDirectory, normalize_code

if TYPE_CHECKING:
    from karaoke.services.presence import PresenceBridge

logger = get_logger(__name__)

# 这两类请求只广播，不回执
_NO_REPLY: frozenset[str] = frozenset({"player:state", "player:lyrics-offset"})


def _dump(item: QueueItem | None) -> dict[str, Any] | None:
    return item.model_dump(mode="json") if item is not None else None


def _queue(room: PartyRoom) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in room.queue]


class PartyGateway:
    """事件网关。

    Attributes:
        directory: 房间目录。
        broadcaster: 按房间划分的连接广播器。
        presence: 语音在线状态桥接器，未启用时为 ``None``。
    """

    def __init__(
        self,
        directory: RoomDirectory,
        broadcaster: ChannelBroadcaster | None = None,
    ) -> None:
        self.directory = directory
        self.broadcaster = broadcaster or ChannelBroadcaster()
        self.presence: PresenceBridge | None = None
        self._locks: dict[str, asyncio.Lock] = {}
        self._handlers: dict[str, Callable[[ClientConnection, Any], Awaitable[dict[str, Any] | None]]] = {
            "room:create": self._on_create,
            "room:join": self._on_join,
            "room:leave": self._on_leave,
            "character:select": self._on_select_seat,
            "queue:add": self._on_add_song,
            "queue:remove": self._on_remove_song,
            "queue:skip": self._on_skip,
            "queue:previous": self._on_previous,
            "player:state": self._on_playback,
            "player:lyrics-offset": self._on_lyrics_offset,
            "voice:link": self._on_link_voice,
        }

    # ── 串行化 ────────────────────────────────────────────────────────

    @asynccontextmanager
    async def locked_room(self, code: str) -> AsyncIterator[PartyRoom]:
        """持有房间锁并返回房间；等待期间房间被删除则抛出 ``NotFoundError``。"""
        # 只为存活房间创建锁，未知房间码不会在锁表中留下记录
        if self.directory.get_room(code) is None:
            raise NotFoundError("Room not found")
        lock = self._locks.setdefault(code, asyncio.Lock())
        async with lock:
            room = self.directory.get_room(code)
            if room is None:
                if self._locks.get(code) is lock:
                    del self._locks[code]
                raise NotFoundError("Room not found")
            yield room

    def _forget(self, code: str) -> None:
        self._locks.pop(code, None)
        self.broadcaster.drop_channel(code)

    async def _emit(
        self,
        code: str,
        event_type: str,
        data: dict[str, Any],
        exclude: ClientConnection | None = None,
    ) -> None:
        await self.broadcaster.broadcast(code, ServerEvent(type=event_type, data=data), exclude=exclude)

    @staticmethod
    def _current_code(conn: ClientConnection) -> str:
        if conn.room_code is None:
            raise PreconditionError("Not in a room")
        return conn.room_code

    # ── 入口 ──────────────────────────────────────────────────────────

    async def handle_frame(self, conn: ClientConnection, raw: str) -> Ack | None:
        """处理一帧原始 JSON 文本。"""
        try:
            message = parse_client_message(raw)
        except ValidationError as e:
            logger.warning("无法解析的客户端消息: %s", e.errors(include_url=False)[:1])
            ack = Ack.fail(None, "Invalid message")
            await conn.send_ack(ack)
            return ack
        return await self.dispatch(conn, message)

    async def dispatch(self, conn: ClientConnection, message: protocol.ClientMessage) -> Ack | None:
        """按消息类型分发到处理函数，并把结果转换为回执。"""
        handler = self._handlers[message.type]
        try:
            data = await handler(conn, message)
        except PartyError as e:
            logger.info("请求失败 | type=%s | kind=%s | %s", message.type, e.kind, e.message)
            ack = Ack.fail(message.request_id, e.message)
        except Exception as e:
            # 单个请求的意外错误不影响连接和其他房间
            logger.error("请求处理异常 | type=%s | %s", message.type, e, exc_info=True)
            ack = Ack.fail(message.request_id, "Internal error")
        else:
            ack = Ack.ok(message.request_id, data)

        if message.type in _NO_REPLY:
            return None
        await conn.send_ack(ack)
        return ack

    async def disconnect(self, conn: ClientConnection) -> None:
        """连接断开：移出房间；若最后离开的是主持端，立即销毁房间。"""
        if conn.room_code is not None:
            await self._leave(conn, disconnected=True)

    # ── 房间 ──────────────────────────────────────────────────────────

    async def _join(self, conn: ClientConnection, code: str, role: ConnectionRole) -> dict[str, Any]:
        async with self.locked_room(code) as room:
            room.add_connection(conn.id, role=role)
            conn.room_code = room.code
            self.broadcaster.subscribe(room.code, conn)
            await self._emit(room.code, protocol.CLIENT_JOINED, {
                "connection_id": conn.id,
                "client_count": room.client_count,
            })
            logger.info("👤 客户端加入房间 | room=%s | role=%s | 在线: %d", room.code, role, room.client_count)
            return {"room": room.snapshot().model_dump(mode="json")}

    async def _leave(self, conn: ClientConnection, disconnected: bool) -> None:
        code = conn.room_code
        if code is None:
            return
        conn.room_code = None
        self.broadcaster.unsubscribe(code, conn)
        try:
            async with self.locked_room(code) as room:
                record = room.connections.get(conn.id)
                if record is None:
                    return
                before = [seat.assigned_to for seat in room.seats]
                room.remove_connection(conn.id)
                seat_released = before != [seat.assigned_to for seat in room.seats]
                if disconnected and record.is_host and room.client_count == 0:
                    logger.info("🔌 主持端离开且房间已空，销毁房间 | room=%s", code)
                    self.directory.delete_room(code)
                    self._forget(code)
                    return
                if seat_released:
                    await self._emit(code, protocol.SEATS_UPDATED, self._seats(room))
                await self._emit(code, protocol.CLIENT_LEFT, {
                    "connection_id": conn.id,
                    "client_count": room.client_count,
                })
                logger.info("👋 客户端离开房间 | room=%s | 在线: %d", code, room.client_count)
        except NotFoundError:
            logger.debug("离开时房间已不存在 | room=%s", code)

    async def _on_create(self, conn: ClientConnection, message: protocol.CreateRoom) -> dict[str, Any]:
        await self._leave(conn, disconnected=False)
        room = self.directory.create_room()
        return await self._join(conn, room.code, "host")

    async def _on_join(self, conn: ClientConnection, message: protocol.JoinRoom) -> dict[str, Any]:
        room = self.directory.get_room(message.code)
        if room is None:
            raise NotFoundError("Room not found")
        await self._leave(conn, disconnected=False)
        return await self._join(conn, room.code, "host" if message.as_host else "controller")

    async def _on_leave(self, conn: ClientConnection, message: protocol.LeaveRoom) -> dict[str, Any]:
        await self._leave(conn, disconnected=False)
        return {}

    # ── 座位 ──────────────────────────────────────────────────────────

    @staticmethod
    def _seats(room: PartyRoom) -> dict[str, Any]:
        return {"seats": [seat.model_dump(mode="json") for seat in room.seats]}

    async def _on_select_seat(self, conn: ClientConnection, message: protocol.SelectSeat) -> dict[str, Any]:
        async with self.locked_room(self._current_code(conn)) as room:
            if room.get_seat(message.seat_id) is None:
                raise NotFoundError("Character not found")
            if not room.assign_seat(message.participant_id, message.seat_id, connection_id=conn.id):
                raise ConflictError("Character already taken")
            await self._emit(room.code, protocol.SEATS_UPDATED, self._seats(room))
        return {}

    # ── 队列与播放 ────────────────────────────────────────────────────

    async def _on_add_song(self, conn: ClientConnection, message: protocol.AddSong) -> dict[str, Any]:
        async with self.locked_room(self._current_code(conn)) as room:
            was_idle = room.now_playing is None
            item = room.enqueue(message.to_song())
            await self._emit(room.code, protocol.QUEUE_UPDATED, {
                "queue": _queue(room),
                "now_playing": _dump(room.now_playing),
            })
            if was_idle and room.now_playing is not None:
                await self._emit(room.code, protocol.SONG_CHANGED, {
                    "song": _dump(room.now_playing),
                    "queue": _queue(room),
                })
        logger.info("🎤 点歌 | room=%s | %s", room.code, item.title)
        return {"song": _dump(item)}

    async def _on_remove_song(self, conn: ClientConnection, message: protocol.RemoveSong) -> dict[str, Any]:
        async with self.locked_room(self._current_code(conn)) as room:
            if not room.dequeue(message.item_id):
                raise NotFoundError("Song not found in queue")
            await self._emit(room.code, protocol.QUEUE_UPDATED, {
                "queue": _queue(room),
                "now_playing": _dump(room.now_playing),
            })
        return {}

    async def _on_skip(self, conn: ClientConnection, message: protocol.SkipSong) -> dict[str, Any]:
        async with self.locked_room(self._current_code(conn)) as room:
            song = room.play_next()
            await self._emit(room.code, protocol.SONG_CHANGED, {"song": _dump(song), "queue": _queue(room)})
        return {"song": _dump(song)}

    async def _on_previous(self, conn: ClientConnection, message: protocol.PreviousSong) -> dict[str, Any]:
        async with self.locked_room(self._current_code(conn)) as room:
            if not room.history:
                return {"song": _dump(room.now_playing)}
            song = room.play_previous()
            await self._emit(room.code, protocol.SONG_CHANGED, {"song": _dump(song), "queue": _queue(room)})
        return {"song": _dump(song)}

    async def _on_playback(self, conn: ClientConnection, message: protocol.ReportPlayback) -> None:
        patch = message.to_patch()
        if patch.unknown_fields:
            logger.warning("忽略未知的播放状态字段: %s", ", ".join(patch.unknown_fields))
        async with self.locked_room(self._current_code(conn)) as room:
            changes = room.update_playback_state(patch)
            if changes:
                # 上报方本身就是播放驱动，不回传给它
                await self._emit(room.code, protocol.PLAYBACK_SYNC, changes, exclude=conn)
        logger.debug("播放状态同步 | room=%s | %s", room.code, changes)
        return None

    async def _on_lyrics_offset(self, conn: ClientConnection, message: protocol.SetLyricsOffset) -> None:
        async with self.locked_room(self._current_code(conn)) as room:
            room.set_lyrics_offset(message.offset_seconds)
            await self._emit(room.code, protocol.LYRICS_OFFSET_SYNC, {"offset_seconds": message.offset_seconds})
        return None

    # ── 语音在线状态 ──────────────────────────────────────────────────

    async def _on_link_voice(self, conn: ClientConnection, message: protocol.LinkVoice) -> dict[str, Any]:
        code = self._current_code(conn)
        if self.presence is None or not self.presence.available:
            raise PresenceUnavailableError("Voice presence is not available")
        async with self.locked_room(code) as room:
            record = room.connections.get(conn.id)
            if record is None or not record.is_host:
                raise PreconditionError("Only the host can link a voice channel")
        self.presence.start_attach(message.group_id, code, requester=conn)
        return {"group_id": message.group_id, "code": code}

    async def link_group(self, group_id: str, code: str) -> PartyRoom | None:
        """在房间锁内绑定外部语音群组。"""
        try:
            async with self.locked_room(normalize_code(code)) as room:
                return self.directory.link_group(group_id, room.code)
        except NotFoundError:
            return None

    async def apply_members(self, group_id: str, members: list[Member]) -> bool:
        """用外部推送的成员列表整体替换房间成员并广播，找不到房间时返回 ``False``。"""
        room = self.directory.get_room_by_group(group_id)
        if room is None:
            return False
        try:
            async with self.locked_room(room.code) as room:
                room.refresh_members(members)
                await self._emit(room.code, protocol.MEMBERS_UPDATED, {
                    "members": [m.model_dump(mode="json") for m in room.member_statuses()],
                })
        except NotFoundError:
            # 等锁期间房间已被销毁
            return False
        return True

    async def apply_speaking(self, group_id: str, participant_id: str, is_speaking: bool) -> bool:
        """更新说话状态并广播，找不到房间时返回 ``False``。"""
        room = self.directory.get_room_by_group(group_id)
        if room is None:
            return False
        try:
            async with self.locked_room(room.code) as room:
                room.set_speaking(participant_id, is_speaking)
                await self._emit(room.code, protocol.VOICE_SPEAKING, {
                    "participant_id": participant_id,
                    "is_speaking": is_speaking,
                })
        except NotFoundError:
            return False
        return True

    # ── 清理 ──────────────────────────────────────────────────────────

    def sweep_idle(self, max_age_seconds: float) -> list[str]:
        """清理空闲房间，并回收它们的锁与广播频道。"""
        expired = self.directory.sweep_idle(max_age_seconds)
        for code in expired:
            self._forget(code)
        return expired
