import base64
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api.deps import get_chat_service
from core.security import create_access_token
from main import app
from models.claim import Claim, ClaimStatus
from models.profile import Profile, UserRole
from services.attachment_store import LocalAttachmentStore
from services.chat_repository import ChatRepository
from services.chat_service import ChatService
from services.realtime_feed import InMemoryRealtimeFeed
from services.retention import utcnow


@pytest.fixture
def client(tmp_path):
    service = ChatService(
        repository=ChatRepository(),
        store=LocalAttachmentStore(base_dir=str(tmp_path / "attachments")),
        feed=InMemoryRealtimeFeed(),
    )
    app.dependency_overrides[get_chat_service] = lambda: service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def seed(client):
    async def _seed():
        werkstatt = await Profile.create(role=UserRole.WERKSTATT, display_name="Glas Müller")
        versicherung = await Profile.create(role=UserRole.VERSICHERUNG, company_name="HUK")
        admin = await Profile.create(role=UserRole.ADMIN)
        open_claim = await Claim.create(status=ClaimStatus.IN_BEARBEITUNG)
        closed_claim = await Claim.create(
            status=ClaimStatus.ABGESCHLOSSEN,
            completed_at=utcnow() - timedelta(days=4, hours=1),
        )
        return {
            "werkstatt": str(werkstatt.id),
            "versicherung": str(versicherung.id),
            "admin": str(admin.id),
            "open": str(open_claim.id),
            "closed": str(closed_claim.id),
        }

    return client.portal.call(_seed)


def auth(user_id):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def receive_until(ws, event_type):
    while True:
        event = ws.receive_json()
        if event["type"] == event_type:
            return event


def test_requires_token(client, seed):
    response = client.get(f"/api/v1/chat/claims/{seed['open']}/messages")
    assert response.status_code in (401, 403)


def test_unknown_claim(client, seed):
    response = client.get(
        "/api/v1/chat/claims/00000000-0000-0000-0000-000000000000",
        headers=auth(seed["werkstatt"]),
    )
    assert response.status_code == 404


def test_post_message_with_attachments(client, seed):
    response = client.post(
        f"/api/v1/chat/claims/{seed['open']}/messages",
        headers=auth(seed["werkstatt"]),
        data={"message": "  Fotos vom Schaden  "},
        files=[
            ("files", ("riss.jpg", b"jpeg", "image/jpeg")),
            ("files", ("setup.exe", b"MZ", "application/x-msdownload")),
        ],
    )

    assert response.status_code == 201
    body = response.json()
    assert body["message"]["message"] == "Fotos vom Schaden"
    assert [a["file_name"] for a in body["message"]["attachments"]] == ["riss.jpg"]
    assert body["rejected"][0]["file_name"] == "setup.exe"
    assert body["rejected"][0]["reason"] == "type"

    attachment_id = body["message"]["attachments"][0]["id"]
    url = client.get(f"/api/v1/chat/attachments/{attachment_id}/url", headers=auth(seed["versicherung"])).json()
    download = client.get(url["url"])
    assert download.status_code == 200
    assert download.content == b"jpeg"
    assert url["expires_in"] == 3600


def test_post_empty_message_is_rejected(client, seed):
    response = client.post(
        f"/api/v1/chat/claims/{seed['open']}/messages",
        headers=auth(seed["werkstatt"]),
        data={"message": "   "},
    )
    assert response.status_code == 422


def test_post_with_only_invalid_files_lists_rejections(client, seed):
    response = client.post(
        f"/api/v1/chat/claims/{seed['open']}/messages",
        headers=auth(seed["werkstatt"]),
        data={"message": ""},
        files=[("files", ("setup.exe", b"MZ", "application/x-msdownload"))],
    )

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["message"] == "Nachricht ist leer"
    assert [r["file_name"] for r in detail["rejected"]] == ["setup.exe"]


def test_post_on_closed_chat_conflicts(client, seed):
    response = client.post(
        f"/api/v1/chat/claims/{seed['closed']}/messages",
        headers=auth(seed["werkstatt"]),
        data={"message": "Hallo"},
    )
    assert response.status_code == 409


def test_blank_post_on_closed_chat_still_conflicts(client, seed):
    response = client.post(
        f"/api/v1/chat/claims/{seed['closed']}/messages",
        headers=auth(seed["werkstatt"]),
        data={"message": "   "},
    )
    assert response.status_code == 409


def test_status_of_closed_chat(client, seed):
    response = client.get(f"/api/v1/chat/claims/{seed['closed']}", headers=auth(seed["versicherung"]))

    assert response.status_code == 200
    body = response.json()
    assert body["is_read_only"] is True
    assert body["days_until_deletion"] == 10
    assert body["message_count"] == 0
    assert body["is_archived"] is False


def test_grouped_history(client, seed):
    for user, text in [("werkstatt", "Hallo"), ("werkstatt", "Noch da?"), ("versicherung", "Ja")]:
        client.post(
            f"/api/v1/chat/claims/{seed['open']}/messages",
            headers=auth(seed[user]),
            data={"message": text},
        )

    response = client.get(
        f"/api/v1/chat/claims/{seed['open']}/messages?grouped=true",
        headers=auth(seed["versicherung"]),
    )

    groups = response.json()["groups"]
    messages = [m for g in groups for m in g["messages"]]
    assert [m["message"] for m in messages] == ["Hallo", "Noch da?", "Ja"]
    assert [m["is_own"] for m in messages] == [False, False, True]
    assert messages[0]["show_sender"] and not messages[1]["show_sender"]
    assert messages[0]["sender_label"] == "Glas Müller"


def test_cleanup_requires_admin(client, seed):
    assert client.post("/api/v1/chat/cleanup", headers=auth(seed["werkstatt"])).status_code == 403

    response = client.post("/api/v1/chat/cleanup", headers=auth(seed["admin"]))
    assert response.status_code == 200
    assert response.json()["deleted_count"] == 0


def test_websocket_send_is_reconciled(client, seed):
    token = create_access_token(seed["werkstatt"])
    with client.websocket_connect(f"/api/v1/ws/chat/{seed['open']}?token={token}") as ws:
        assert receive_until(ws, "history")["messages"] == []

        ws.send_json({
            "action": "send_message",
            "text": "Hallo",
            "attachments": [{
                "file_name": "scheibe.png",
                "file_type": "image/png",
                "data": base64.b64encode(b"png").decode(),
            }],
        })

        added = receive_until(ws, "message_added")
        assert added["message"]["id"].startswith("temp-")
        assert added["message"]["kind"] == "pending"

        reconciled = receive_until(ws, "message_reconciled")
        assert reconciled["temp_id"] == added["message"]["id"]
        assert reconciled["message"]["kind"] == "persisted"
        assert reconciled["message"]["message"] == "Hallo"
        assert reconciled["message"]["sender_id"] == seed["werkstatt"]
        assert [a["file_name"] for a in reconciled["message"]["attachments"]] == ["scheibe.png"]

    history = client.get(f"/api/v1/chat/claims/{seed['open']}/messages", headers=auth(seed["werkstatt"]))
    assert [m["id"] for m in history.json()["messages"]] == [reconciled["message"]["id"]]


def test_websocket_other_viewer_receives_message(client, seed):
    token_b = create_access_token(seed["versicherung"])
    with client.websocket_connect(f"/api/v1/ws/chat/{seed['open']}?token={token_b}") as ws_b:
        receive_until(ws_b, "history")

        client.post(
            f"/api/v1/chat/claims/{seed['open']}/messages",
            headers=auth(seed["werkstatt"]),
            data={"message": "Hi"},
        )

        event = receive_until(ws_b, "message")
        assert event["message"]["message"] == "Hi"
        assert event["message"]["sender_id"] == seed["werkstatt"]
        assert receive_until(ws_b, "notice")["message"] == "Neue Nachricht von Glas Müller"


def test_websocket_closed_chat_rejects_send(client, seed):
    token = create_access_token(seed["werkstatt"])
    with client.websocket_connect(f"/api/v1/ws/chat/{seed['closed']}?token={token}") as ws:
        state = receive_until(ws, "history")
        assert state["messages"] == []

        ws.send_json({"action": "send_message", "text": "Hallo"})

        error = receive_until(ws, "error")
        assert error["code"] == "chat_closed"


def test_websocket_rejects_bad_token(client, seed):
    with client.websocket_connect(f"/api/v1/ws/chat/{seed['open']}?token=nope") as ws:
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()
