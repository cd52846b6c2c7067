from datetime import datetime, timedelta

import pytest

from conftest import NOW
from models.chat_message import ClaimMessage
from models.claim import Claim, ClaimStatus
from services.retention import RetentionService, days_until_deletion


@pytest.mark.parametrize("days_ago, expected", [
    (0, 14),
    (1, 13),
    (13, 1),
    (14, 0),
    (15, 0),
    (20, 0),
    (400, 0),
])
def test_countdown_clamps_at_zero(days_ago, expected):
    completed_at = NOW - timedelta(days=days_ago)
    assert days_until_deletion(completed_at, True, now=NOW) == expected


def test_partial_days_are_floored():
    completed_at = NOW - timedelta(days=13, hours=23)
    assert days_until_deletion(completed_at, True, now=NOW) == 1


def test_naive_completion_time_is_taken_as_utc():
    completed_at = datetime(2026, 3, 5, 12, 0)
    assert days_until_deletion(completed_at, True, now=NOW) == 9


def test_no_countdown_for_open_chat_or_missing_date():
    assert days_until_deletion(NOW, False, now=NOW) is None
    assert days_until_deletion(None, True, now=NOW) is None


async def test_purge_removes_only_expired_completed_chats(store, werkstatt):
    expired = await Claim.create(status=ClaimStatus.ABGESCHLOSSEN, completed_at=NOW - timedelta(days=20))
    recent = await Claim.create(status=ClaimStatus.ABGESCHLOSSEN, completed_at=NOW - timedelta(days=3))
    cancelled = await Claim.create(status=ClaimStatus.STORNIERT, completed_at=NOW - timedelta(days=30))
    open_claim = await Claim.create(status=ClaimStatus.IN_BEARBEITUNG)

    for claim, count in [(expired, 2), (recent, 1), (cancelled, 1), (open_claim, 1)]:
        for i in range(count):
            await ClaimMessage.create(claim_id=claim.id, sender_id=werkstatt.id, message=f"#{i}")

    key = f"{expired.id}/m1/foto.jpg"
    await store.upload(key, b"jpeg")

    result = await RetentionService(store=store).purge_expired(now=NOW)

    assert result.deleted_count == 2
    assert result.affected_claims == 1
    assert result.message == "2 Nachrichten erfolgreich gelöscht."
    assert await ClaimMessage.filter(claim_id=expired.id).count() == 0
    assert await ClaimMessage.all().count() == 3
    assert store.open_path(key) is None


async def test_purge_with_nothing_to_delete(db):
    result = await RetentionService().purge_expired(now=NOW)

    assert result.deleted_count == 0
    assert result.affected_claims == 0
    assert result.message == "Keine Nachrichten zum Löschen gefunden."
