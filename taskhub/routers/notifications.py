import logging

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlmodel.ext.asyncio.session import AsyncSession

from taskhub.core.security import (
    CurrentUserDep,
    InvalidTokenError,
    decode_access_token,
    extract_bearer_token,
)
from taskhub.database import get_db
from taskhub.models import NotificationResponse, UnreadCountResponse
from taskhub.services.notification_service import NotificationService
from taskhub.websocket.manager import connection_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
@router.get("/", response_model=list[NotificationResponse], include_in_schema=False)
async def get_notifications(user: CurrentUserDep, db: AsyncSession = Depends(get_db)):
    """List all of the caller's notifications, newest first"""
    notifications = await NotificationService.get_user_notifications(user.id, db)
    return [NotificationResponse.from_entity(n) for n in notifications]


@router.get("/unread", response_model=list[NotificationResponse])
async def get_unread_notifications(user: CurrentUserDep, db: AsyncSession = Depends(get_db)):
    notifications = await NotificationService.get_user_notifications(
        user.id, db, unread_only=True
    )
    return [NotificationResponse.from_entity(n) for n in notifications]


@router.get("/unread/count", response_model=UnreadCountResponse)
async def get_unread_count(user: CurrentUserDep, db: AsyncSession = Depends(get_db)):
    count = await NotificationService.get_unread_count(user.id, db)
    return {"count": count}


@router.patch("/read-all")
async def mark_all_as_read(user: CurrentUserDep, db: AsyncSession = Depends(get_db)):
    await NotificationService.mark_all_as_read(user.id, db)
    return {"success": True}


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_as_read(
    notification_id: int, user: CurrentUserDep, db: AsyncSession = Depends(get_db)
):
    notification = await NotificationService.mark_as_read(notification_id, user.id, db)
    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification with id {notification_id} not found",
        )
    return NotificationResponse.from_entity(notification)


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket):
    token = extract_bearer_token(
        websocket.headers.get("authorization")
    ) or extract_bearer_token(websocket.query_params.get("token"))

    await websocket.accept()
    try:
        if not token:
            raise InvalidTokenError("no token provided")
        user = decode_access_token(token)
    except InvalidTokenError as e:
        logger.warning(f"WebSocket authentication failed: {e}")
        await websocket.send_json(
            {"event": "error", "data": {"message": "Authentication failed"}}
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        await connection_manager.connect(websocket, user.id, user.username)
        # server -> client only; inbound frames are read to notice the close
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        connection_manager.disconnect(websocket, user.id)
