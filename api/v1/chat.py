from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse

from api.deps import get_chat_service, get_current_user, require_role
from core.config import settings
from core.exceptions import ReadOnlyViolation, SendFailure, ValidationRejection
from core.logger import app_logger
from models.chat_message import MessageAttachment
from models.profile import Profile, UserRole
from schemas.chat import OutgoingFile
from services.chat_service import ChatService
from services.composer import filter_files
from services.message_grouping import format_time, group_messages, sender_label
from services.retention import RetentionService

router = APIRouter(prefix="/api/v1/chat", tags=["Chat"])


async def _claim_or_404(claim_id: UUID, service: ChatService):
    claim = await service.get_claim(claim_id)
    if not claim:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Auftrag nicht gefunden")
    return claim


# ----------------------------------------
# 1. Chat status (read-only flag, deletion countdown)
# ----------------------------------------
@router.get("/claims/{claim_id}")
async def chat_status(
        claim_id: UUID,
        service: ChatService = Depends(get_chat_service),
        current_user: Profile = Depends(get_current_user)
):
    claim = await _claim_or_404(claim_id, service)
    return await service.get_status(claim)


# ----------------------------------------
# 2. Message history, optionally grouped by day
# ----------------------------------------
@router.get("/claims/{claim_id}/messages")
async def claim_messages(
        claim_id: UUID,
        grouped: bool = False,
        service: ChatService = Depends(get_chat_service),
        current_user: Profile = Depends(get_current_user)
):
    await _claim_or_404(claim_id, service)
    messages = await service.get_history(claim_id)

    if not grouped:
        return {"messages": messages}

    return {"groups": [
        {
            "date": group.date,
            "messages": [
                {
                    **unit.message.model_dump(mode="json"),
                    "is_own": unit.is_own,
                    "show_sender": unit.show_sender,
                    "sender_label": sender_label(unit.message),
                    "time": format_time(unit.message.created_at),
                }
                for unit in group.items
            ],
        }
        for group in group_messages(messages, current_user.id)
    ]}


# ----------------------------------------
# 3. Send without a live session (multipart)
# ----------------------------------------
@router.post("/claims/{claim_id}/messages", status_code=status.HTTP_201_CREATED)
async def post_message(
        claim_id: UUID,
        message: str = Form(""),
        files: List[UploadFile] = File(default=[]),
        service: ChatService = Depends(get_chat_service),
        current_user: Profile = Depends(get_current_user)
):
    claim = await _claim_or_404(claim_id, service)

    outgoing = [
        OutgoingFile(
            file_name=f.filename or "file",
            file_type=f.content_type or "application/octet-stream",
            data=await f.read(),
        )
        for f in files
    ]
    accepted, rejections = filter_files(outgoing)

    try:
        sent = await service.post_message(claim, current_user.id, message, accepted, rejections)
    except ReadOnlyViolation:
        raise HTTPException(status.HTTP_409_CONFLICT, "Chat ist geschlossen (Auftrag abgeschlossen)")
    except ValidationRejection as e:
        raise HTTPException(422, {"message": str(e), "rejected": [r.model_dump() for r in e.rejections]})
    except SendFailure:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Nachricht konnte nicht gesendet werden")

    return {"message": sent, "rejected": rejections}


# ----------------------------------------
# 4. Signed download URL for an attachment
# ----------------------------------------
@router.get("/attachments/{attachment_id}/url")
async def attachment_url(
        attachment_id: UUID,
        service: ChatService = Depends(get_chat_service),
        current_user: Profile = Depends(get_current_user)
):
    attachment = await MessageAttachment.get_or_none(id=attachment_id)
    if not attachment:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Anhang nicht gefunden")

    return {
        "url": service.store.signed_url(attachment.file_path),
        "file_name": attachment.file_name,
        "expires_in": settings.ATTACHMENT_URL_EXPIRE_SECONDS,
    }


@router.get("/files")
async def download_file(
        token: str = Query(...),
        service: ChatService = Depends(get_chat_service)
):
    path = service.store.resolve_signed(token)
    if path is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Datei nicht gefunden oder Link abgelaufen")
    return FileResponse(path, filename=path.name)


# ----------------------------------------
# 5. Retention purge (admin)
# ----------------------------------------
@router.post("/cleanup")
async def cleanup_messages(
        service: ChatService = Depends(get_chat_service),
        current_user: Profile = Depends(require_role([UserRole.ADMIN]))
):
    try:
        return await RetentionService(store=service.store).purge_expired()
    except Exception as e:
        app_logger.error(f"[Cleanup Error] {e}")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, {"success": False, "error": str(e)})
