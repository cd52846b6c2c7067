from core.exceptions import ReadOnlyViolation, SendFailure, ValidationRejection
from core.logger import chat_logger, db_logger
from models.chat_message import ClaimMessage
from models.claim import Claim
from schemas.chat import ChatStatusOut, MessageRecord, PersistedMessage
from services.attachment_store import LocalAttachmentStore, attachment_key
from services.chat_repository import ChatRepository
from services.realtime_feed import get_realtime_feed
from services.retention import days_until_deletion, utcnow


class ChatService:
    """Claim chat operations shared by live sessions and the HTTP routes."""

    def __init__(self, repository: ChatRepository = None, store: LocalAttachmentStore = None, feed=None):
        self.repository = repository or ChatRepository()
        self.store = store or LocalAttachmentStore()
        self.feed = feed or get_realtime_feed()

    # --------------------------------------
    # Claim lookup and chat status
    # --------------------------------------
    async def get_claim(self, claim_id) -> Claim | None:
        return await Claim.get_or_none(id=claim_id)

    async def get_status(self, claim: Claim, now=None) -> ChatStatusOut:
        count = await ClaimMessage.filter(claim_id=claim.id).count()
        return ChatStatusOut(
            claim_id=str(claim.id),
            is_read_only=claim.is_chat_read_only,
            completed_at=claim.completed_at,
            days_until_deletion=days_until_deletion(
                claim.completed_at, claim.is_chat_read_only, now=now or utcnow()
            ),
            message_count=count,
            is_archived=claim.is_archived,
        )

    # --------------------------------------
    # History with senders and attachments (two batched queries)
    # --------------------------------------
    async def get_history(self, claim_id) -> list[PersistedMessage]:
        records = await self.repository.list_messages(claim_id)
        return await self.hydrate(records)

    async def hydrate(self, records) -> list[PersistedMessage]:
        if not records:
            return []

        identities = await self.repository.get_identities(r.sender_id for r in records)
        attachments = await self.repository.list_attachments_for(r.id for r in records)

        return [
            PersistedMessage.from_record(
                record,
                sender=identities.get(record.sender_id),
                attachments=attachments.get(record.id, []),
            )
            for record in records
        ]

    async def hydrate_one(self, message: PersistedMessage) -> PersistedMessage:
        record = MessageRecord(**message.model_dump(include=set(MessageRecord.model_fields)))
        hydrated = await self.hydrate([record])
        return hydrated[0]

    # --------------------------------------
    # Upload files and link them to a message, one by one
    # --------------------------------------
    async def store_attachments(self, claim_id, message_id, files) -> list:
        """
        Best effort: a file whose upload or record creation fails is logged and
        skipped, the remaining files are still stored.
        """
        stored = []
        for file in files or []:
            key = attachment_key(claim_id, message_id, file.file_name)
            try:
                await self.store.upload(key, file.data, file.file_type)
            except Exception as e:
                chat_logger.log_error(f"upload {key}", e)
                continue

            try:
                attachment = await self.store.create_attachment_record(
                    message_id=message_id,
                    file_path=key,
                    file_name=file.file_name,
                    file_type=file.file_type,
                    file_size=file.file_size,
                )
            except Exception as e:
                chat_logger.log_error(f"attachment record {key}", e)
                continue

            stored.append(attachment)

        if files:
            chat_logger.logger.info(f"📎 Stored {len(stored)}/{len(files)} attachments for message {message_id}")
        return stored

    async def publish(self, claim_id, message: PersistedMessage):
        # the message is already persisted; a feed outage only delays remote viewers until reload
        try:
            await self.feed.publish(claim_id, message)
        except Exception as e:
            chat_logger.log_error(f"publish chat:{claim_id}", e)

    # --------------------------------------
    # Stateless send (HTTP)
    # --------------------------------------
    async def post_message(self, claim: Claim, sender_id, text: str, files=None, rejections=()) -> PersistedMessage:
        if claim.is_chat_read_only:
            raise ReadOnlyViolation(claim.id)

        text = (text or "").strip()
        if not text and not files:
            raise ValidationRejection("Nachricht ist leer", rejections)

        try:
            record = await self.repository.insert_message(claim.id, sender_id, text)
        except Exception as e:
            raise SendFailure(str(e)) from e

        attachments = await self.store_attachments(claim.id, record.id, files)
        sender = await self.repository.get_user_identity(sender_id)
        message = PersistedMessage.from_record(record, sender=sender, attachments=attachments)

        db_logger.logger.info(f"✅ Message created: id={message.id}, attachments={len(attachments)}")
        await self.publish(claim.id, message)
        return message
