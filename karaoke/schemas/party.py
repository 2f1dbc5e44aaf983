"""
karaoke.schemas.party
~~~~~~~~~~~~~~~~~~~~~

派对房间内的数据记录：语音成员、座位、歌曲、播放状态、连接记录以及房间快照。
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ConnectionRole = Literal["host", "controller"]


class Member(BaseModel):
    """语音频道中的一名参与者（由外部语音平台提供）。"""

    participant_id: str = Field(..., min_length=1, description="外部平台用户 ID")
    display_name: str = Field(default="", description="显示名称")
    avatar_url: str = Field(default="", description="头像地址")


class MemberStatus(Member):
    """带说话状态的成员视图，仅用于快照输出。"""

    is_speaking: bool = Field(default=False, description="当前是否正在说话")


class Seat(BaseModel):
    """一个可被认领的角色座位。"""

    id: str = Field(..., description="座位 ID，如 char_1")
    name: str = Field(..., description="角色名称")
    primary_color: str = Field(..., description="主色")
    secondary_color: str = Field(..., description="辅色")
    assigned_to: str | None = Field(default=None, description="占用该座位的参与者 ID")


class SongRequest(BaseModel):
    """点歌请求体，通常来自外部搜索结果。"""

    title: str = Field(..., min_length=1, max_length=300, description="歌曲标题")
    artist: str = Field(default="", max_length=300, description="歌手 / 频道名")
    media_ref: str = Field(..., min_length=1, description="媒体引用（如视频 ID）")
    thumbnail: str = Field(default="", description="封面图地址")


class QueueItem(SongRequest):
    """已进入队列的歌曲。"""

    id: str = Field(..., description="入队时生成的唯一 ID")
    enqueued_at: float = Field(..., description="入队时间（Unix 秒）")


class PlaybackState(BaseModel):
    """展示端播放器状态的镜像，尽力而为、最终一致。"""

    is_playing: bool = False
    position_seconds: float = 0.0
    lyrics_offset_seconds: float = 0.0


class PlaybackPatch(BaseModel):
    """播放状态的局部更新，仅包含本次上报的字段。

    未知字段会被保留在 ``model_extra`` 中，由调用方记录日志后忽略。
    """

    model_config = ConfigDict(extra="allow")

    is_playing: bool | None = None
    position_seconds: float | None = None
    lyrics_offset_seconds: float | None = None

    def changes(self) -> dict[str, Any]:
        """返回本次实际上报的已知字段。"""
        known = self.model_dump(exclude_unset=True, exclude_none=True)
        return {k: v for k, v in known.items() if k in PlaybackState.model_fields}

    @property
    def unknown_fields(self) -> list[str]:
        """本次上报中不认识的字段名。"""
        return sorted(self.model_extra or {})


class ConnectionRecord(BaseModel):
    """房间内一条连接的登记信息。"""

    connection_id: str
    role: ConnectionRole = "controller"
    seat_id: str | None = None
    participant_id: str | None = None
    joined_at: float
    # 该连接认领过的座位: seat_id -> participant_id
    claims: dict[str, str] = Field(default_factory=dict)

    @property
    def is_host(self) -> bool:
        return self.role == "host"


class RoomSnapshot(BaseModel):
    """房间完整快照，用于创建 / 加入房间的回执以及 HTTP 查询。"""

    code: str
    external_group_id: str | None
    voice_channel_name: str
    created_at: float
    client_count: int
    members: list[MemberStatus]
    seats: list[Seat]
    queue: list[QueueItem]
    now_playing: QueueItem | None
    playback_state: PlaybackState


class RoomSummary(BaseModel):
    """房间摘要信息，用于房间列表。"""

    code: str
    client_count: int
    queue_length: int
    now_playing: str | None = Field(default=None, description="正在播放的歌曲标题")
    last_activity_at: float
