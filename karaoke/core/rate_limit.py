"""
karaoke.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口的限流配置。

WebSocket 上的播放进度上报不做限流，频率由上报端自己的采样间隔决定。
"""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from karaoke.core.settings import settings

# 基于客户端 IP 地址进行限流；test 环境关闭，避免用例之间互相触发 429
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=not settings.is_test,
)
