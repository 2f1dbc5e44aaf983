"""
karaoke.schemas.protocol
~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 消息协议 —— 客户端请求、服务端回执与广播事件。

每种客户端请求是一个带 ``type`` 标签的独立模型，网关根据标签分发::

    {"type": "queue:add", "request_id": "7", "title": "...", "media_ref": "..."}

服务端对请求方回复 ``Ack``，对房间内订阅者广播 ``ServerEvent``::

    {"type": "ack", "request_id": "7", "success": true, "data": {...}, "error": null}
    {"type": "queue:updated", "data": {...}}
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from karaoke.schemas.party import PlaybackPatch, SongRequest

# ── 广播事件名 ────────────────────────────────────────────────────────

MEMBERS_UPDATED = "room:members-updated"
SEATS_UPDATED = "character:updated"
QUEUE_UPDATED = "queue:updated"
SONG_CHANGED = "player:song-changed"
PLAYBACK_SYNC = "player:state-sync"
LYRICS_OFFSET_SYNC = "player:lyrics-offset-sync"
VOICE_SPEAKING = "voice:speaking"
VOICE_ERROR = "voice:error"
CLIENT_JOINED = "room:client-joined"
CLIENT_LEFT = "room:client-left"


# ── 客户端请求 ────────────────────────────────────────────────────────

class _Request(BaseModel):
    request_id: str | None = Field(default=None, description="客户端请求编号，原样回传")


class CreateRoom(_Request):
    type: Literal["room:create"]


class JoinRoom(_Request):
    type: Literal["room:join"]
    code: str = Field(..., min_length=1, max_length=16)
    as_host: bool = False


class LeaveRoom(_Request):
    type: Literal["room:leave"]


class SelectSeat(_Request):
    type: Literal["character:select"]
    participant_id: str = Field(..., min_length=1)
    seat_id: str = Field(..., min_length=1)


class AddSong(_Request, SongRequest):
    type: Literal["queue:add"]

    def to_song(self) -> SongRequest:
        return SongRequest(
            title=self.title,
            artist=self.artist,
            media_ref=self.media_ref,
            thumbnail=self.thumbnail,
        )


class RemoveSong(_Request):
    type: Literal["queue:remove"]
    item_id: str = Field(..., min_length=1)


class SkipSong(_Request):
    type: Literal["queue:skip"]


class PreviousSong(_Request):
    type: Literal["queue:previous"]


class ReportPlayback(_Request, PlaybackPatch):
    type: Literal["player:state"]

    def to_patch(self) -> PlaybackPatch:
        return PlaybackPatch(**self.changes(), **(self.model_extra or {}))


class SetLyricsOffset(_Request):
    type: Literal["player:lyrics-offset"]
    offset_seconds: float


class LinkVoice(_Request):
    type: Literal["voice:link"]
    group_id: str = Field(..., min_length=1)


ClientMessage = Annotated[
    Union[
        CreateRoom,
        JoinRoom,
        LeaveRoom,
        SelectSeat,
        AddSong,
        RemoveSong,
        SkipSong,
        PreviousSong,
        ReportPlayback,
        SetLyricsOffset,
        LinkVoice,
    ],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """解析一帧客户端 JSON 文本，格式错误时抛出 ``pydantic.ValidationError``。"""
    return client_message_adapter.validate_json(raw)


# ── 服务端消息 ────────────────────────────────────────────────────────

class Ack(BaseModel):
    """对单个请求的回执，只发送给请求方。"""

    type: Literal["ack"] = "ack"
    request_id: str | None = None
    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, request_id: str | None, data: Any = None) -> Ack:
        return cls(request_id=request_id, success=True, data=data if data is not None else {})

    @classmethod
    def fail(cls, request_id: str | None, error: str) -> Ack:
        return cls(request_id=request_id, success=False, error=error)


class ServerEvent(BaseModel):
    """广播给房间订阅者的状态变更事件。"""

    model_config = ConfigDict(frozen=True)

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
