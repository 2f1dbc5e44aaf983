"""
karaoke.api.presence_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

语音在线状态推送接口 —— 供运行在独立进程中的语音机器人调用。

端点:
  - ``POST /presence/{group_id}/link``      → 把语音群组绑定到房间
  - ``POST /presence/{group_id}/members``   → 推送频道内的完整成员列表
  - ``POST /presence/{group_id}/speaking``  → 推送一名成员的说话状态
"""
# slowapi 的装饰器会替换函数的 __globals__，这里不能使用字符串形式的延迟注解
from fastapi import APIRouter, Depends, HTTPException, Request

from karaoke.api.deps import get_presence
from karaoke.core.rate_limit import limiter
from karaoke.core.settings import settings
from karaoke.schemas.api_response import ApiResponse
from karaoke.schemas.party import Member
from karaoke.schemas.presence import LinkGroupData, LinkGroupRequest, SpeakingUpdate
from karaoke.services.presence import PresenceBridge

router: APIRouter = APIRouter()


@router.post("/presence/{group_id}/link", summary="绑定语音群组")
@limiter.limit(settings.HTTP_RATE_LIMIT)
async def link_group(
    request: Request,
    group_id: str,
    body: LinkGroupRequest,
    presence: PresenceBridge = Depends(get_presence),
) -> ApiResponse[LinkGroupData]:
    """绑定后，该群组的成员与说话事件会路由到此房间；重复绑定以最后一次为准。"""
    room = await presence.link(group_id, body.code)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return ApiResponse.ok(data=LinkGroupData(group_id=group_id, code=room.code))


@router.post("/presence/{group_id}/members", summary="推送语音成员列表")
@limiter.limit(settings.HTTP_RATE_LIMIT)
async def push_members(
    request: Request,
    group_id: str,
    members: list[Member],
    presence: PresenceBridge = Depends(get_presence),
) -> ApiResponse[dict]:
    """整体替换房间的语音成员列表。"""
    if not await presence.refresh_members(group_id, members):
        raise HTTPException(status_code=404, detail="No room linked to this group")
    return ApiResponse.ok(data={"count": len(members)})


@router.post("/presence/{group_id}/speaking", summary="推送说话状态")
@limiter.limit(settings.HTTP_RATE_LIMIT)
async def push_speaking(
    request: Request,
    group_id: str,
    body: SpeakingUpdate,
    presence: PresenceBridge = Depends(get_presence),
) -> ApiResponse[dict]:
    if not await presence.speaking(group_id, body.participant_id, body.is_speaking):
        raise HTTPException(status_code=404, detail="No room linked to this group")
    return ApiResponse.ok(data={})
