"""
karaoke.schemas.presence
~~~~~~~~~~~~~~~~~~~~~~~~

语音在线状态推送接口的请求 / 响应模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class LinkGroupRequest(BaseModel):
    """把语音群组绑定到房间。"""

    code: str = Field(..., min_length=1, max_length=16, description="房间码（大小写不敏感）")


class LinkGroupData(BaseModel):
    group_id: str
    code: str


class SpeakingUpdate(BaseModel):
    """一名参与者的说话状态变化。"""

    participant_id: str = Field(..., min_length=1)
    is_speaking: bool
