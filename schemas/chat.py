from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from models.profile import UserRole


class SenderIdentity(BaseModel):
    id: str
    role: UserRole
    display_name: Optional[str] = None
    company_name: Optional[str] = None
    address: Optional[str] = None


class AttachmentOut(BaseModel):
    id: str
    message_id: str
    file_path: str
    file_name: str
    file_type: str
    file_size: int
    created_at: datetime


class MessageRecord(BaseModel):
    """A persisted row of claim_messages, without joined data."""

    id: str
    claim_id: str
    sender_id: str
    message: str
    created_at: datetime


class PendingMessage(BaseModel):
    kind: Literal["pending"] = "pending"
    id: str
    claim_id: str
    sender_id: str
    message: str
    created_at: datetime
    sender: Optional[SenderIdentity] = None
    attachments: List[AttachmentOut] = []


class PersistedMessage(BaseModel):
    kind: Literal["persisted"] = "persisted"
    id: str
    claim_id: str
    sender_id: str
    message: str
    created_at: datetime
    sender: Optional[SenderIdentity] = None
    attachments: List[AttachmentOut] = []

    @classmethod
    def from_record(cls, record: MessageRecord, sender=None, attachments=None):
        return cls(
            **record.model_dump(),
            sender=sender,
            attachments=attachments or [],
        )


LocalMessage = Annotated[Union[PendingMessage, PersistedMessage], Field(discriminator="kind")]


class OutgoingFile(BaseModel):
    file_name: str
    file_type: str
    data: bytes = Field(repr=False)

    @property
    def file_size(self) -> int:
        return len(self.data)


class AttachmentRejection(BaseModel):
    file_name: str
    reason: Literal["type", "size"]
    message: str


class ChatStatusOut(BaseModel):
    claim_id: str
    is_read_only: bool
    completed_at: Optional[datetime] = None
    days_until_deletion: Optional[int] = None
    message_count: int
    is_archived: bool = False


class CleanupResult(BaseModel):
    success: bool = True
    message: str
    deleted_count: int
    affected_claims: int = 0
