"""
karaoke.api.room_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~~

房间只读 REST 接口 —— 供状态查询与调试使用，不修改任何房间状态。

端点:
  - ``GET /rooms``          → 所有存活房间的摘要
  - ``GET /rooms/{code}``   → 指定房间的完整快照（房间码大小写不敏感）
"""
# slowapi 的装饰器会替换函数的 __globals__，这里不能使用字符串形式的延迟注解
from fastapi import APIRouter, Depends, HTTPException, Request

from karaoke.api.deps import get_directory
from karaoke.core.rate_limit import limiter
from karaoke.core.settings import settings
from karaoke.schemas.api_response import ApiResponse
from karaoke.schemas.party import RoomSnapshot, RoomSummary
from karaoke.services.room_directory import RoomDirectory

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取存活房间列表")
@limiter.limit(settings.HTTP_RATE_LIMIT)
async def list_rooms(
    request: Request,
    directory: RoomDirectory = Depends(get_directory),
) -> ApiResponse[list[RoomSummary]]:
    """返回所有存活房间的摘要信息。"""
    return ApiResponse.ok(data=directory.list_rooms())


@router.get("/rooms/{code}", summary="获取房间快照")
@limiter.limit(settings.HTTP_RATE_LIMIT)
async def room_info(
    request: Request,
    code: str,
    directory: RoomDirectory = Depends(get_directory),
) -> ApiResponse[RoomSnapshot]:
    """返回指定房间的完整快照。

    Args:
        code: 4 位房间码。
    """
    room = directory.get_room(code)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return ApiResponse.ok(data=room.snapshot())
