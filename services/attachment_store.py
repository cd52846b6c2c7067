import asyncio
import shutil
from pathlib import Path, PurePosixPath

from core.config import settings
from core.exceptions import AttachmentUploadFailure
from core.logger import db_logger
from core.security import create_file_token, decode_file_token
from models.chat_message import MessageAttachment
from services.chat_repository import ChatRepository


def attachment_key(claim_id, message_id, file_name: str) -> str:
    """Store key <claim_id>/<message_id>/<file_name>; directory parts of the name are dropped."""
    safe_name = PurePosixPath(file_name.replace("\\", "/")).name or "file"
    return f"{claim_id}/{message_id}/{safe_name}"


class LocalAttachmentStore:
    """Chat attachments on local disk, served through signed, expiring URLs."""

    def __init__(self, base_dir: str = None, base_url: str = "/api/v1/chat/files"):
        self.base_dir = Path(base_dir or settings.ATTACHMENT_DIR).resolve()
        self.base_url = base_url

    def _path_for(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if not path.is_relative_to(self.base_dir):
            raise ValueError(f"Key escapes attachment root: {key}")
        return path

    # ---------------------------------------------
    # Upload a file under its key
    # ---------------------------------------------
    async def upload(self, key: str, data: bytes, content_type: str = None) -> str:
        try:
            path = self._path_for(key)
        except ValueError as e:
            raise AttachmentUploadFailure(key, str(e)) from e

        if path.exists():
            raise AttachmentUploadFailure(key, "file already exists")

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise AttachmentUploadFailure(key, str(e)) from e

        db_logger.logger.debug(f"📎 Stored {key} ({len(data)} bytes, {content_type})")
        return key

    async def create_attachment_record(self, message_id, file_path: str, file_name: str,
                                       file_type: str, file_size: int):
        try:
            row = await MessageAttachment.create(
                message_id=message_id,
                file_path=file_path,
                file_name=file_name,
                file_type=file_type,
                file_size=file_size,
            )
        except Exception as e:
            db_logger.log_error("create_attachment_record", e)
            raise

        attachment = ChatRepository.serialize_attachment(row)
        db_logger.log_create("MessageAttachment", attachment.model_dump(exclude={"created_at"}))
        return attachment

    # ---------------------------------------------
    # Signed download URLs
    # ---------------------------------------------
    def signed_url(self, file_path: str, expires_in: int = None) -> str:
        token = create_file_token(file_path, expires_in)
        return f"{self.base_url}?token={token}"

    def resolve_signed(self, token: str) -> Path | None:
        file_path = decode_file_token(token)
        if not file_path:
            return None
        return self.open_path(file_path)

    def open_path(self, file_path: str) -> Path | None:
        try:
            path = self._path_for(file_path)
        except ValueError:
            return None
        return path if path.is_file() else None

    # ---------------------------------------------
    # Remove every file of a claim
    # ---------------------------------------------
    async def delete_prefix(self, claim_id) -> bool:
        try:
            path = self._path_for(str(claim_id))
        except ValueError:
            return False
        if not path.is_dir() or path == self.base_dir:
            return False

        await asyncio.to_thread(shutil.rmtree, path)
        db_logger.logger.warning(f"DELETE attachment files of claim {claim_id}")
        return True
