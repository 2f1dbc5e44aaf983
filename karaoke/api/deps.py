from fastapi import Request

from karaoke.services.gateway import PartyGateway
from karaoke.services.media_search import MediaSearchProvider
from karaoke.services.presence import PresenceBridge
from karaoke.services.room_directory import RoomDirectory


def get_directory(request: Request) -> RoomDirectory:
    return request.app.state.directory


def get_gateway(request: Request) -> PartyGateway:
    return request.app.state.gateway


def get_presence(request: Request) -> PresenceBridge:
    return request.app.state.presence


def get_media_search(request: Request) -> MediaSearchProvider | None:
    return request.app.state.media_search
