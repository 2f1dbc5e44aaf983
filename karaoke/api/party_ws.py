"""
karaoke.api.party_ws
~~~~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 派对房间协议入口。

每条连接通过 ``/ws`` 建立后，用 ``room:create`` / ``room:join`` 进入房间，
之后的所有请求都作用于该连接当前所在的房间。消息格式见 ``karaoke.schemas.protocol``。
"""
from __future__ import annotations

import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from karaoke.core.logging import get_logger, request_id_ctx_var
from karaoke.services.broadcaster import ClientConnection
from karaoke.services.gateway import PartyGateway

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_party_endpoint(websocket: WebSocket) -> None:
    """派对房间 WebSocket 端点。

    同一连接上的请求按到达顺序逐个处理；不同连接对同一房间的变更由
    网关的房间锁串行化。连接断开时由网关完成离开房间与房间销毁判断。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    ws_req_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(ws_req_id)

    gateway: PartyGateway = websocket.app.state.gateway
    await websocket.accept()
    conn = ClientConnection(websocket)
    logger.info("📱 客户端已连接 | conn=%s", conn.id[:8])

    try:
        while True:
            raw: str = await websocket.receive_text()
            await gateway.handle_frame(conn, raw)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        await gateway.disconnect(conn)
        logger.info("📴 客户端已断开 | conn=%s", conn.id[:8])
        request_id_ctx_var.reset(token)
