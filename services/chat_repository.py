from collections import defaultdict

from core.logger import db_logger
from models.chat_message import ClaimMessage, MessageAttachment
from models.profile import Profile
from schemas.chat import AttachmentOut, MessageRecord, SenderIdentity


class ChatRepository:
    """Durable, ordered message log per claim (Tortoise ORM)."""

    # --------------------------------------
    # Messages of one claim, oldest first
    # --------------------------------------
    async def list_messages(self, claim_id) -> list[MessageRecord]:
        db_logger.logger.debug(f"Fetching messages for claim {claim_id}")

        rows = await ClaimMessage.filter(claim_id=claim_id).order_by("created_at", "id")

        db_logger.logger.info(f"✅ Retrieved {len(rows)} messages for claim {claim_id}")
        return [self.serialize_message(row) for row in rows]

    # --------------------------------------
    # Insert a message (body only)
    # --------------------------------------
    async def insert_message(self, claim_id, sender_id, body: str) -> MessageRecord:
        try:
            row = await ClaimMessage.create(
                claim_id=claim_id,
                sender_id=sender_id,
                message=body,
            )
            record = self.serialize_message(row)

            db_logger.log_create("ClaimMessage", {
                "id": record.id,
                "claim_id": record.claim_id,
                "sender_id": record.sender_id,
                "text_len": len(body),
                "created_at": record.created_at.isoformat(),
            })
            return record

        except Exception as e:
            db_logger.log_error("insert_message", e)
            raise

    # --------------------------------------
    # Attachments
    # --------------------------------------
    async def list_attachments(self, message_id) -> list[AttachmentOut]:
        rows = await MessageAttachment.filter(message_id=message_id).order_by("created_at")
        return [self.serialize_attachment(row) for row in rows]

    async def list_attachments_for(self, message_ids) -> dict[str, list[AttachmentOut]]:
        """Attachments of many messages in one query, keyed by message id."""
        grouped = defaultdict(list)
        message_ids = list(message_ids)
        if not message_ids:
            return grouped

        rows = await MessageAttachment.filter(message_id__in=message_ids).order_by("created_at")
        for row in rows:
            attachment = self.serialize_attachment(row)
            grouped[attachment.message_id].append(attachment)

        db_logger.logger.debug(f"Loaded {len(rows)} attachments for {len(message_ids)} messages")
        return grouped

    # --------------------------------------
    # Sender identities
    # --------------------------------------
    async def get_user_identity(self, user_id) -> SenderIdentity | None:
        profile = await Profile.get_or_none(id=user_id)
        if not profile:
            db_logger.logger.warning(f"⚠️ Profile {user_id} not found")
            return None
        return self.serialize_identity(profile)

    async def get_identities(self, user_ids) -> dict[str, SenderIdentity]:
        user_ids = list(set(user_ids))
        if not user_ids:
            return {}

        profiles = await Profile.filter(id__in=user_ids)
        return {str(p.id): self.serialize_identity(p) for p in profiles}

    # --------------------------------------
    # Serialization
    # --------------------------------------
    @staticmethod
    def serialize_message(row: ClaimMessage) -> MessageRecord:
        return MessageRecord(
            id=str(row.id),
            claim_id=str(row.claim_id),
            sender_id=str(row.sender_id),
            message=row.message or "",
            created_at=row.created_at,
        )

    @staticmethod
    def serialize_attachment(row: MessageAttachment) -> AttachmentOut:
        return AttachmentOut(
            id=str(row.id),
            message_id=str(row.message_id),
            file_path=row.file_path,
            file_name=row.file_name,
            file_type=row.file_type,
            file_size=row.file_size,
            created_at=row.created_at,
        )

    @staticmethod
    def serialize_identity(profile: Profile) -> SenderIdentity:
        return SenderIdentity(
            id=str(profile.id),
            role=profile.role,
            display_name=profile.display_name,
            company_name=profile.company_name,
            address=profile.address,
        )
