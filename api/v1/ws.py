import asyncio
import base64
import binascii
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket
from starlette import status
from starlette.websockets import WebSocketDisconnect

from api.deps import get_chat_service, get_current_user_from_token
from core.exceptions import HistoryLoadFailure, ReadOnlyViolation, SendFailure
from core.logger import ws_logger
from schemas.chat import OutgoingFile
from services.chat_service import ChatService
from services.chat_session import ChatSession
from services.composer import filter_files

router = APIRouter(prefix="/api/v1/ws", tags=["Chat"])

CHAT_CLOSED_MESSAGE = "Chat ist geschlossen (Auftrag abgeschlossen)"


def decode_attachments(items) -> list[OutgoingFile]:
    """Attachments sent over the socket as {file_name, file_type, data: base64}."""
    return [
        OutgoingFile(
            file_name=item.get("file_name") or "file",
            file_type=item.get("file_type") or "application/octet-stream",
            data=base64.b64decode(item.get("data") or "", validate=True),
        )
        for item in items or []
    ]


async def handle_send(websocket: WebSocket, session: ChatSession, service: ChatService, data: dict):
    # the claim may have been completed since the socket opened
    claim = await service.get_claim(session.claim_id)
    if claim and claim.is_chat_read_only and not session.is_read_only:
        await session.mark_completed(claim.completed_at)

    try:
        files = decode_attachments(data.get("attachments"))
    except (binascii.Error, ValueError, AttributeError) as e:
        ws_logger.log_error("decode_attachments", e)
        await websocket.send_json({"type": "error", "code": "invalid_attachment", "message": str(e)})
        return

    accepted, rejections = filter_files(files)
    for rejection in rejections:
        await websocket.send_json({"type": "error", "code": "attachment_rejected", **rejection.model_dump()})

    try:
        msg = await session.send_message(data.get("text") or "", accepted)
        if msg:
            ws_logger.logger.info(f"✅ Message sent successfully: id={msg.id}")
    except ReadOnlyViolation:
        await websocket.send_json({"type": "error", "code": "chat_closed", "message": CHAT_CLOSED_MESSAGE})
    except SendFailure as e:
        await websocket.send_json({"type": "error", "code": "send_failed", "message": str(e)})


async def run_send(websocket: WebSocket, session: ChatSession, service: ChatService, data: dict):
    try:
        await handle_send(websocket, session, service, data)
    except Exception as e:
        ws_logger.log_error("send_message", e)


@router.websocket("/chat/{claim_id}")
async def chat_ws(
        websocket: WebSocket,
        claim_id: UUID,
        token: str = Query(...),
        service: ChatService = Depends(get_chat_service),
):
    await websocket.accept()

    current_user = await get_current_user_from_token(token)
    if not current_user:
        ws_logger.logger.error("Rejected chat socket: invalid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    claim = await service.get_claim(claim_id)
    if not claim:
        ws_logger.logger.error(f"Claim {claim_id} not found")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    ws_logger.log_connect(current_user.id, claim_id)

    session = ChatSession(
        claim_id=claim.id,
        current_user_id=current_user.id,
        user_role=current_user.role,
        completed_at=claim.completed_at,
        is_read_only=claim.is_chat_read_only,
        service=service,
        emit=websocket.send_json,
    )
    sends: set[asyncio.Task] = set()

    try:
        await session.open()

        while True:
            data = await websocket.receive_json()
            action = data.get("action")

            ws_logger.log_message(action, {
                "claim_id": str(claim_id),
                "user_id": str(current_user.id),
                "text_len": len(data.get("text") or ""),
                "attachments": len(data.get("attachments") or []),
            })

            if action == "send_message":
                # keep reading while the send runs; a second send meanwhile is dropped by the session
                task = asyncio.create_task(run_send(websocket, session, service, data))
                sends.add(task)
                task.add_done_callback(sends.discard)

            elif action == "reload":
                await session.load_history()

            else:
                await websocket.send_json({"type": "error", "code": "unknown_action", "message": str(action)})

    except WebSocketDisconnect:
        ws_logger.log_disconnect(current_user.id, claim_id)
    except HistoryLoadFailure as e:
        ws_logger.log_error("load_history", e)
        await websocket.send_json({"type": "error", "code": "history_failed", "message": str(e)})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    except Exception as e:
        ws_logger.log_error("websocket_loop", e)
    finally:
        await session.close()
        ws_logger.logger.info(f"🧹 Cleaned up connection: user={current_user.id}, claim={claim_id}")
