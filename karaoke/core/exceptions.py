"""
karaoke.core.exceptions
~~~~~~~~~~~~~~~~~~~~~~~

房间协调层的业务异常。

房间模型和房间目录本身从不抛出这些异常（它们返回 ``None`` / ``False``），
由事件网关把结果翻译成异常，再统一转换为发送给请求方的失败回执。
"""
from __future__ import annotations


class PartyError(Exception):
    """所有可预期业务错误的基类，``message`` 会原样展示给客户端。"""

    kind: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(PartyError):
    """房间 / 歌曲 / 座位不存在。"""

    kind = "not_found"


class ConflictError(PartyError):
    """座位已被其他参与者占用。"""

    kind = "conflict"


class PreconditionError(PartyError):
    """当前连接尚未加入任何房间。"""

    kind = "precondition"


class PresenceUnavailableError(PartyError):
    """语音在线状态功能未启用。"""

    kind = "presence_unavailable"


class PresenceTimeoutError(PartyError):
    """加入语音频道超时。"""

    kind = "external_timeout"
