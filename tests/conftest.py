import os
import tempfile
from datetime import datetime, timedelta, timezone

os.environ["DB_URL"] = "sqlite://:memory:"
os.environ["REALTIME_BACKEND"] = "memory"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="chat-logs-"))

import pytest
from tortoise import Tortoise, connections

from init_db import MODEL_MODULES
from models.claim import Claim, ClaimStatus
from models.profile import Profile, UserRole
from schemas.chat import OutgoingFile
from services.attachment_store import LocalAttachmentStore
from services.chat_repository import ChatRepository
from services.chat_service import ChatService
from services.realtime_feed import InMemoryRealtimeFeed

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class EventLog:
    """Collects what a ChatSession emits towards its UI."""

    def __init__(self):
        self.events = []

    async def __call__(self, event: dict):
        self.events.append(event)

    def of_type(self, event_type: str):
        return [e for e in self.events if e["type"] == event_type]


def make_file(name="photo.jpg", file_type="image/jpeg", size=128):
    return OutgoingFile(file_name=name, file_type=file_type, data=b"x" * size)


@pytest.fixture
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": MODEL_MODULES},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    yield
    await connections.close_all()


@pytest.fixture
async def werkstatt(db):
    return await Profile.create(
        role=UserRole.WERKSTATT,
        display_name="Glas Müller",
        address="Hauptstraße 1, Köln",
    )


@pytest.fixture
async def versicherung(db):
    return await Profile.create(
        role=UserRole.VERSICHERUNG,
        company_name="Allgemeine Versicherung AG",
    )


@pytest.fixture
async def claim(db):
    return await Claim.create(status=ClaimStatus.IN_BEARBEITUNG)


@pytest.fixture
async def completed_claim(db):
    return await Claim.create(
        status=ClaimStatus.ABGESCHLOSSEN,
        completed_at=NOW - timedelta(days=20),
    )


@pytest.fixture
def store(tmp_path):
    return LocalAttachmentStore(base_dir=str(tmp_path / "attachments"))


@pytest.fixture
def feed():
    return InMemoryRealtimeFeed()


@pytest.fixture
def service(store, feed):
    return ChatService(repository=ChatRepository(), store=store, feed=feed)
