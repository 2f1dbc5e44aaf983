"""
karaoke.api.search_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

歌曲搜索接口 —— 转发给部署时注入的 ``MediaSearchProvider``。

搜索失败只影响本次请求，不会触及任何房间状态。
"""
# slowapi 的装饰器会替换函数的 __globals__，这里不能使用字符串形式的延迟注解
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from karaoke.api.deps import get_media_search
from karaoke.core.logging import get_logger
from karaoke.core.rate_limit import limiter
from karaoke.core.settings import settings
from karaoke.schemas.api_response import ApiResponse
from karaoke.services.media_search import MediaResult, MediaSearchProvider

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.get("/search", summary="搜索歌曲")
@limiter.limit(settings.HTTP_RATE_LIMIT)
async def search_media(
    request: Request,
    q: str = Query("", max_length=200, description="搜索关键词"),
    provider: MediaSearchProvider | None = Depends(get_media_search),
) -> ApiResponse[list[MediaResult]]:
    """按关键词搜索歌曲，结果可直接作为 ``queue:add`` 的请求内容。"""
    query = q.strip()
    if not query:
        raise HTTPException(status_code=400, detail='Query parameter "q" is required')
    if provider is None:
        raise HTTPException(status_code=503, detail="Search is not configured")

    logger.info("🔎 搜索: %s", query)
    try:
        results = await provider.search(query, limit=settings.SEARCH_RESULT_LIMIT)
    except Exception as e:
        logger.error("搜索失败: %s", e, exc_info=True)
        raise HTTPException(status_code=502, detail="Failed to search videos") from e
    return ApiResponse.ok(data=results)
