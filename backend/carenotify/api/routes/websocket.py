from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from carenotify.core.container import Container
from carenotify.services.channels import ConnectionRegistry

router = APIRouter()


@router.websocket("/ws/notifications")
@inject
async def notifications_socket(
    websocket: WebSocket,
    user_id: str = Query(...),
    registry: ConnectionRegistry = Depends(Provide[Container.connection_registry]),
) -> None:
    """Real-time notification stream for one user.

    The caller's identity is taken as given; authentication happens in front
    of this service. Incoming frames are ignored apart from keeping the
    connection alive.
    """
    await websocket.accept()
    await registry.register(user_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await registry.unregister(user_id, websocket)
