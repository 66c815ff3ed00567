from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

router = APIRouter()


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    manager = getattr(websocket.app.state, "connection_manager", None)
    if manager is None:
        await websocket.close(code=1011, reason="Connection manager not initialized")
        return

    await websocket.accept()
    connection = await manager.open(websocket)
    try:
        while True:
            raw_message = await websocket.receive_text()
            await manager.handle_text(connection, raw_message)
    except WebSocketDisconnect:
        return
    finally:
        await manager.close(connection)
