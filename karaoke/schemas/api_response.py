"""
karaoke.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口的统一应答信封 ``{"code", "data", "msg"}``。

错误响应由 ``main.py`` 中的异常处理器统一生成，``code`` 与 HTTP 状态码一致。
WebSocket 请求的回执见 ``schemas.protocol.Ack``。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """HTTP 应答信封。

    成功::

        {"code": 200, "data": {"code": "AB3K", ...}, "msg": "success"}

    失败（如房间不存在）::

        {"code": 404, "data": null, "msg": "Room not found"}
    """

    code: int = Field(default=200, description="200 表示成功，否则为 HTTP 状态码")
    data: T = Field(..., description="业务数据，失败时为 null")
    msg: str = Field(default="success", description="状态说明")

    @classmethod
    def ok(cls, data: T) -> ApiResponse[T]:
        return cls(data=data)

    @classmethod
    def fail(cls, status_code: int, msg: str) -> ApiResponse[Any]:
        return cls(code=status_code, data=None, msg=msg)
