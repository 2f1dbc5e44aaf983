"""
karaoke.services.media_search
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

外部歌曲搜索接口。

房间协调层从不直接调用搜索；搜索结果只作为 ``queue:add`` 的请求内容回到房间。
具体的搜索实现（如视频平台 API）由部署方在创建应用时注入。
"""
from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field


class MediaResult(BaseModel):
    """一条搜索结果。"""

    media_ref: str = Field(..., description="媒体引用（如视频 ID）")
    title: str = Field(..., description="标题")
    artist: str = Field(default="", description="歌手 / 频道名")
    thumbnail: str = Field(default="", description="封面图地址")
    duration: str = Field(default="", description="时长（展示用）")


class MediaSearchProvider(Protocol):
    """歌曲搜索提供方需要实现的接口。"""

    async def search(self, query: str, limit: int) -> list[MediaResult]:
        ...
