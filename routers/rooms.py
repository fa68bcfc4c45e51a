from fastapi import APIRouter, Depends, HTTPException, Request, Response
from schemas.rooms import (
    CreateRoomResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    RoomAccessResponse,
    RoomDetailsResponse,
    RoomExistsResponse,
    RoomTTLResponse,
)
from schemas.messages import SuccessResponse
from constants import COOKIE_SECURE, TOKEN_COOKIE_NAME
from dependencies import Credentials, get_credentials, get_room_manager
from errors import ChatError
from room_manager import RoomManager
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/room", tags=["rooms"])


def client_host(request: Request) -> str:
    return request.client.host if request and request.client else "unknown"


@rooms_router.post("/create", response_model=CreateRoomResponse)
async def create_room(request: Request, rooms: RoomManager = Depends(get_room_manager)):
    logger.info(f"Room creation request from {client_host(request)}")
    try:
        room_id = rooms.create()
    except ChatError:
        raise
    except Exception as e:
        logger.error(f"Error creating room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create room")
    return CreateRoomResponse(room_id=room_id)


@rooms_router.get("/exists", response_model=RoomExistsResponse)
async def room_exists(room_id: str, rooms: RoomManager = Depends(get_room_manager)):
    return RoomExistsResponse(exists=rooms.exists(room_id))


@rooms_router.get("/access", response_model=RoomAccessResponse)
async def room_access(
    credentials: Credentials = Depends(get_credentials),
    rooms: RoomManager = Depends(get_room_manager),
):
    """
    Pre-join check used before showing the room page.

    404 `not_found` if the room is gone, 409 `room_full` if a newcomer cannot
    join. Existing members are always let through.
    """
    is_member = rooms.check_access(credentials.room_id, credentials.token)
    return RoomAccessResponse(allowed=True, is_member=is_member)


@rooms_router.post("/join", response_model=JoinRoomResponse)
async def join_room(
    join_room_request: JoinRoomRequest,
    request: Request,
    response: Response,
    credentials: Credentials = Depends(get_credentials),
    rooms: RoomManager = Depends(get_room_manager),
):
    room_id = join_room_request.room_id
    logger.info(f"Join room request for {room_id} from {client_host(request)}, username: {join_room_request.username}")

    membership = rooms.join(room_id, join_room_request.username, token=credentials.token)
    if membership.is_new:
        # The cookie dies with the room
        response.set_cookie(
            key=TOKEN_COOKIE_NAME,
            value=membership.token,
            max_age=membership.ttl,
            path="/",
            httponly=True,
            secure=COOKIE_SECURE,
            samesite="lax",
        )
    return JoinRoomResponse(token=membership.token, ttl=membership.ttl)


@rooms_router.get("/ttl", response_model=RoomTTLResponse)
async def room_ttl(
    credentials: Credentials = Depends(get_credentials),
    rooms: RoomManager = Depends(get_room_manager),
):
    return RoomTTLResponse(ttl=rooms.get_ttl(credentials.room_id, credentials.token))


@rooms_router.get("", response_model=RoomDetailsResponse)
async def room_details(
    credentials: Credentials = Depends(get_credentials),
    rooms: RoomManager = Depends(get_room_manager),
):
    details = rooms.get_details(credentials.room_id, credentials.token)
    return RoomDetailsResponse(
        room_id=details.room_id,
        status=details.status,
        created_at=details.created_at,
        started_at=details.started_at,
        ttl=details.ttl,
        member_count=details.member_count,
        max_members=details.max_members,
        is_full=details.member_count >= details.max_members,
    )


@rooms_router.delete("", response_model=SuccessResponse)
async def destroy_room(
    request: Request,
    response: Response,
    credentials: Credentials = Depends(get_credentials),
    rooms: RoomManager = Depends(get_room_manager),
):
    logger.info(f"Destroy room request for {credentials.room_id} from {client_host(request)}")
    rooms.destroy(credentials.room_id, credentials.token)
    response.delete_cookie(TOKEN_COOKIE_NAME, path="/")
    return SuccessResponse()
