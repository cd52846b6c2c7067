from datetime import datetime, timedelta, timezone

from core.config import settings
from core.logger import db_logger
from models.chat_message import ClaimMessage
from models.claim import Claim, ClaimStatus
from schemas.chat import CleanupResult


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until_deletion(completed_at: datetime | None, is_read_only: bool,
                        now: datetime = None, retention_days: int = None) -> int | None:
    """
    Days left before a completed claim's chat is purged.

    Whole elapsed days are floored on wall-clock UTC time and the result never
    goes below 0. Open chats and claims without a completion time give None.
    """
    if not is_read_only or completed_at is None:
        return None

    retention_days = settings.CHAT_RETENTION_DAYS if retention_days is None else retention_days
    now = as_utc(now or utcnow())
    elapsed_days = (now - as_utc(completed_at)) // timedelta(days=1)
    return max(0, retention_days - elapsed_days)


class RetentionService:
    """Purges chats of claims completed longer than the retention window ago."""

    def __init__(self, store=None, retention_days: int = None):
        self.store = store
        self.retention_days = settings.CHAT_RETENTION_DAYS if retention_days is None else retention_days

    async def purge_expired(self, now: datetime = None) -> CleanupResult:
        cutoff = as_utc(now or utcnow()) - timedelta(days=self.retention_days)

        claim_ids = await Claim.filter(
            status=ClaimStatus.ABGESCHLOSSEN,
            completed_at__lt=cutoff,
        ).values_list("id", flat=True)

        if not claim_ids:
            db_logger.logger.info("[Cleanup] nothing to delete")
            return CleanupResult(
                message="Keine Nachrichten zum Löschen gefunden.",
                deleted_count=0,
            )

        try:
            deleted = await ClaimMessage.filter(claim_id__in=claim_ids).delete()
        except Exception as e:
            db_logger.log_error("purge_expired", e)
            raise

        if self.store is not None:
            for claim_id in claim_ids:
                await self.store.delete_prefix(claim_id)

        db_logger.log_delete("ClaimMessage", deleted, f"from {len(claim_ids)} claims")
        return CleanupResult(
            message=f"{deleted} Nachrichten erfolgreich gelöscht.",
            deleted_count=deleted,
            affected_claims=len(claim_ids),
        )
