from pydantic import BaseModel
from typing import Optional


class CreateRoomRequest(BaseModel):
    room_id: Optional[str] = None

class CreateRoomResponse(BaseModel):
    room_id: str
    ws_url: str

class Member(BaseModel):
    connection_id: str
    display_name: str
    connected_at: str

class RoomSummary(BaseModel):
    room_id: str
    has_host: bool
    host_name: Optional[str] = None
    viewer_count: int

class RoomDetailsResponse(BaseModel):
    room_id: str
    host: Optional[Member] = None
    viewers: list[Member]
    viewer_count: int

class ServerStatus(BaseModel):
    status: str
    rooms: int
    connections: int
