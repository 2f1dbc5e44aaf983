"""
karaoke.schemas
~~~~~~~~~~~~~~~
Pydantic schemas for the HTTP API and the WebSocket protocol.
"""
from karaoke.schemas.api_response import ApiResponse
from karaoke.schemas.party import (
    ConnectionRecord,
    Member,
    MemberStatus,
    PlaybackPatch,
    PlaybackState,
    QueueItem,
    RoomSnapshot,
    RoomSummary,
    Seat,
    SongRequest,
)
from karaoke.schemas.protocol import Ack, ServerEvent, parse_client_message

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
