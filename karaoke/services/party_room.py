"""
karaoke.services.party_room
~~~~~~~~~~~~~~~~~~~~~~~~~~~

派对房间领域模型 —— 一个卡拉 OK 房间的全部可变状态。

``PartyRoom`` 只包含数据和同步的变更方法，不做任何 I/O。
同一房间的所有变更由 ``PartyGateway`` 串行调用，模型内部不加锁。
"""
from __future__ import annotations

import time
import uuid
from collections import deque

from karaoke.schemas.party import (
    ConnectionRecord,
    ConnectionRole,
    Member,
    MemberStatus,
    PlaybackPatch,
    PlaybackState,
    QueueItem,
    RoomSnapshot,
    RoomSummary,
    Seat,
    SongRequest,
)

HISTORY_CAPACITY = 50

# (名称, 主色, 辅色)
DEFAULT_SEAT_PALETTE: tuple[tuple[str, str, str], ...] = (
    ("Ruby", "#E53E3E", "#FC8181"),
    ("Sapphire", "#3182CE", "#63B3ED"),
    ("Emerald", "#38A169", "#68D391"),
    ("Amber", "#D69E2E", "#F6E05E"),
    ("Violet", "#805AD5", "#B794F4"),
    ("Coral", "#ED8936", "#FBD38D"),
    ("Teal", "#319795", "#4FD1C5"),
    ("Rose", "#D53F8C", "#F687B3"),
)


def build_default_seats() -> list[Seat]:
    """生成默认的 8 个角色座位。"""
    return [
        Seat(
            id=f"char_{index}",
            name=name,
            primary_color=primary,
            secondary_color=secondary,
        )
        for index, (name, primary, secondary) in enumerate(DEFAULT_SEAT_PALETTE, start=1)
    ]


class PartyRoom:
    """一个完整的派对房间。

    Attributes:
        code: 4 位房间码（大写）。
        external_group_id: 绑定的外部语音群组 ID。
        members: 语音频道成员，每次整体替换。
        seats: 固定的角色座位。
        queue: 待播歌曲，插入顺序即播放顺序。
        history: 已播歌曲，最多保留 ``HISTORY_CAPACITY`` 首。
        now_playing: 正在播放的歌曲。
        playback_state: 展示端播放器状态的镜像。
        connections: 连接 ID → 连接登记信息。
        speaking: 参与者 ID → 是否正在说话。
    """

    def __init__(
        self,
        code: str,
        external_group_id: str | None = None,
        voice_channel_name: str = "",
    ) -> None:
        self.code = code
        self.external_group_id = external_group_id
        self.voice_channel_name = voice_channel_name
        self.created_at: float = time.time()
        self.last_activity_at: float = self.created_at

        self.members: list[Member] = []
        self.speaking: dict[str, bool] = {}
        self.seats: list[Seat] = build_default_seats()
        self.queue: list[QueueItem] = []
        self.history: deque[QueueItem] = deque(maxlen=HISTORY_CAPACITY)
        self.now_playing: QueueItem | None = None
        self.playback_state = PlaybackState()
        self.connections: dict[str, ConnectionRecord] = {}

        self._song_seq = 0

    # ── 连接 ──────────────────────────────────────────────────────────

    def add_connection(
        self,
        connection_id: str,
        role: ConnectionRole = "controller",
        seat_id: str | None = None,
    ) -> ConnectionRecord:
        """登记一条连接并返回登记记录。"""
        record = ConnectionRecord(
            connection_id=connection_id,
            role=role,
            seat_id=seat_id,
            joined_at=time.time(),
        )
        self.connections[connection_id] = record
        self.touch()
        return record

    def remove_connection(self, connection_id: str) -> ConnectionRecord | None:
        """注销一条连接，并释放它认领过且仍由同一参与者占用的所有座位。

        Returns:
            被移除的登记记录，连接不存在时返回 ``None``。
        """
        record = self.connections.pop(connection_id, None)
        if record is None:
            return None
        for seat_id, participant_id in record.claims.items():
            seat = self.get_seat(seat_id)
            if seat is not None and seat.assigned_to == participant_id:
                seat.assigned_to = None
        self.touch()
        return record

    @property
    def client_count(self) -> int:
        return len(self.connections)

    # ── 座位 ──────────────────────────────────────────────────────────

    def get_seat(self, seat_id: str) -> Seat | None:
        return next((seat for seat in self.seats if seat.id == seat_id), None)

    def seat_of(self, participant_id: str) -> Seat | None:
        return next((seat for seat in self.seats if seat.assigned_to == participant_id), None)

    def assign_seat(
        self,
        participant_id: str,
        seat_id: str,
        connection_id: str | None = None,
    ) -> bool:
        """把座位分配给参与者。

        目标座位不存在或已被 *其他* 参与者占用时返回 ``False`` 且不改变任何状态；
        否则先释放该参与者原来的座位，再占用新座位。对同一 (参与者, 座位)
        重复调用是幂等的。

        传入 ``connection_id`` 时，该连接断开时会自动释放这个座位。
        """
        target = self.get_seat(seat_id)
        if target is None:
            return False
        if target.assigned_to is not None and target.assigned_to != participant_id:
            return False

        previous = self.seat_of(participant_id)
        if previous is not None and previous is not target:
            previous.assigned_to = None
        target.assigned_to = participant_id

        record = self.connections.get(connection_id) if connection_id else None
        if record is not None:
            record.seat_id = seat_id
            record.participant_id = participant_id
            record.claims[seat_id] = participant_id
        self.touch()
        return True

    # ── 队列 ──────────────────────────────────────────────────────────

    def _next_song_id(self) -> str:
        self._song_seq += 1
        return f"song_{self._song_seq}_{uuid.uuid4().hex[:6]}"

    def enqueue(self, song: SongRequest) -> QueueItem:
        """歌曲入队；当前没有正在播放的歌曲时立即开始播放。"""
        item = QueueItem(
            id=self._next_song_id(),
            enqueued_at=time.time(),
            **song.model_dump(),
        )
        self.queue.append(item)
        self.touch()
        if self.now_playing is None:
            self.play_next()
        return item

    def dequeue(self, item_id: str) -> bool:
        """按 ID 移除队列中的歌曲，找不到时返回 ``False``。"""
        for index, item in enumerate(self.queue):
            if item.id == item_id:
                del self.queue[index]
                self.touch()
                return True
        return False

    # ── 播放 ──────────────────────────────────────────────────────────

    def _start(self, item: QueueItem | None) -> None:
        self.now_playing = item
        self.playback_state.position_seconds = 0.0
        self.playback_state.is_playing = item is not None

    def play_next(self) -> QueueItem | None:
        """切到下一首：当前歌曲进入历史，队首成为正在播放；队列为空时变为无歌曲。"""
        if self.now_playing is not None:
            # deque(maxlen=...) 自动淘汰最旧的记录
            self.history.append(self.now_playing)
        self._start(self.queue.pop(0) if self.queue else None)
        self.touch()
        return self.now_playing

    def play_previous(self) -> QueueItem | None:
        """回到上一首：当前歌曲放回队首，历史中最近的一首成为正在播放。

        历史为空时不做任何改变。
        """
        if not self.history:
            return self.now_playing
        if self.now_playing is not None:
            self.queue.insert(0, self.now_playing)
        self._start(self.history.pop())
        self.touch()
        return self.now_playing

    def update_playback_state(self, patch: PlaybackPatch) -> dict[str, object]:
        """逐字段合并播放状态，不校验进度单调性（允许回退 seek）。

        Returns:
            实际生效的字段。
        """
        changes = patch.changes()
        for field, value in changes.items():
            setattr(self.playback_state, field, value)
        self.touch()
        return changes

    def set_lyrics_offset(self, seconds: float) -> None:
        self.playback_state.lyrics_offset_seconds = seconds
        self.touch()

    # ── 语音成员 ──────────────────────────────────────────────────────

    def refresh_members(self, members: list[Member]) -> None:
        """整体替换语音成员列表。"""
        self.members = list(members)
        current = {m.participant_id for m in self.members}
        self.speaking = {pid: flag for pid, flag in self.speaking.items() if pid in current}
        self.touch()

    def set_speaking(self, participant_id: str, is_speaking: bool) -> None:
        # 只更新说话状态表，不算作房间活动
        self.speaking[participant_id] = is_speaking

    # ── 其他 ──────────────────────────────────────────────────────────

    def touch(self) -> None:
        self.last_activity_at = time.time()

    def is_idle(self, max_age_seconds: float, now: float | None = None) -> bool:
        """无连接且超过 ``max_age_seconds`` 没有活动。"""
        now = time.time() if now is None else now
        return not self.connections and now - self.last_activity_at > max_age_seconds

    def member_statuses(self) -> list[MemberStatus]:
        return [
            MemberStatus(**m.model_dump(), is_speaking=self.speaking.get(m.participant_id, False))
            for m in self.members
        ]

    def snapshot(self) -> RoomSnapshot:
        """返回房间完整快照。"""
        return RoomSnapshot(
            code=self.code,
            external_group_id=self.external_group_id,
            voice_channel_name=self.voice_channel_name,
            created_at=self.created_at,
            client_count=self.client_count,
            members=self.member_statuses(),
            seats=[seat.model_copy() for seat in self.seats],
            queue=list(self.queue),
            now_playing=self.now_playing,
            playback_state=self.playback_state.model_copy(),
        )

    def info(self) -> RoomSummary:
        """返回房间摘要信息。"""
        return RoomSummary(
            code=self.code,
            client_count=self.client_count,
            queue_length=len(self.queue),
            now_playing=self.now_playing.title if self.now_playing else None,
            last_activity_at=self.last_activity_at,
        )
