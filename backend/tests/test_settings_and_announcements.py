from datetime import timedelta

import pytest
from starlette.websockets import WebSocketDisconnect

from escala.routes.telegram import command_reply
from escala.services.notification_service import NotificationService
from escala.utils.timezone import now

from conftest import auth_headers


def announcement_payload(title, start_offset, end_offset):
    current = now().replace(tzinfo=None)
    return {
        "title": title,
        "content": "Conteúdo",
        "start_date": (current + timedelta(days=start_offset)).isoformat(),
        "end_date": (current + timedelta(days=end_offset)).isoformat(),
    }


def test_active_announcements_window(client, admin, alice):
    headers = auth_headers(admin)
    client.post("/api/announcements", json=announcement_payload("Passado", -10, -5), headers=headers)
    client.post("/api/announcements", json=announcement_payload("Atual", -1, 1), headers=headers)
    client.post("/api/announcements", json=announcement_payload("Futuro", 5, 10), headers=headers)

    active = client.get("/api/announcements/active", headers=auth_headers(alice)).json()
    assert [a["title"] for a in active] == ["Atual"]

    everything = client.get("/api/announcements", headers=auth_headers(alice)).json()
    assert [a["title"] for a in everything] == ["Futuro", "Atual", "Passado"]


def test_announcement_rules(client, admin, alice):
    assert client.post("/api/announcements", json=announcement_payload("X", 0, 1),
                       headers=auth_headers(alice)).status_code == 403
    # 結束時間早於開始時間
    assert client.post("/api/announcements", json=announcement_payload("X", 2, 1),
                       headers=auth_headers(admin)).status_code == 422


def test_publication_links(client, admin, alice):
    assert client.get("/api/schedule-publication", headers=auth_headers(alice)).json() == {"pdf": None, "xlsx": None}

    response = client.put("/api/schedule-publication/xlsx", json={"url": " https://example.org/escala.xlsx "},
                          headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["value"] == "https://example.org/escala.xlsx"

    links = client.get("/api/schedule-publication", headers=auth_headers(alice)).json()
    assert links["xlsx"] == "https://example.org/escala.xlsx"

    assert client.put("/api/schedule-publication/docx", json={"url": "https://example.org/a"},
                      headers=auth_headers(admin)).status_code == 404
    assert client.put("/api/schedule-publication/pdf", json={"url": "ftp://example.org/a"},
                      headers=auth_headers(admin)).status_code == 422
    assert client.put("/api/schedule-publication/pdf", json={"url": "https://example.org/a.pdf"},
                      headers=auth_headers(alice)).status_code == 403


def test_pdf_proxy_without_link(client, alice):
    assert client.get("/api/schedule-publication/pdf", headers=auth_headers(alice)).status_code == 404


def test_late_submission_setting_visible_to_owner_only(client, admin, alice, bob):
    client.put("/api/system-settings/late-submission/alice@example.com", json={"allowed": True},
               headers=auth_headers(admin))
    key = "allow_submission_after_15th_alice@example.com"

    response = client.get(f"/api/system-settings/{key}", headers=auth_headers(alice))
    assert response.status_code == 200
    assert response.json()["value"] == "true"
    assert client.get(f"/api/system-settings/{key}", headers=auth_headers(bob)).status_code == 403


def test_telegram_command_replies():
    assert "<code>42</code>" in command_reply("/start", 42, "Ana")
    assert "/help" in command_reply("/help", 42, "Ana")
    assert "42" in command_reply("/id", 42, "Ana")
    assert "desconhecido" in command_reply("/foo", 42, "Ana")
    assert command_reply("olá", 42, "Ana") is None


def test_telegram_webhook_replies_to_commands(client, monkeypatch):
    sent = []

    async def fake_send(chat_id, text):
        sent.append((chat_id, text))
        return True

    monkeypatch.setattr(NotificationService, "send_telegram", fake_send)
    update = {"message": {"chat": {"id": 555}, "from": {"first_name": "Ana"}, "text": "/id"}}
    assert client.post("/api/telegram/webhook", json=update).json() == {"ok": True}
    assert sent[0][0] == "555"

    # 無訊息的更新直接忽略
    assert client.post("/api/telegram/webhook", json={"update_id": 1}).json() == {"ok": True}
    assert len(sent) == 1


def test_setup_webhook_requires_token(client, admin):
    response = client.post("/api/telegram/setup-webhook", headers=auth_headers(admin))
    assert response.status_code == 400


def test_websocket_ping_pong(client, alice):
    token = auth_headers(alice)["Authorization"].split()[1]
    with client.websocket_connect(f"/api/ws?token={token}") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connection_established"
        assert hello["data"]["email"] == "alice@example.com"
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_websocket_rejects_invalid_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/api/ws?token=invalido") as ws:
            ws.receive_json()


def test_announcement_notifies_everyone_but_author(client, admin, alice, make_user):
    make_user("ines@example.com", name="Inês", active=False)
    client.post("/api/announcements", json=announcement_payload("Reunião geral", 0, 3), headers=auth_headers(admin))

    inbox = client.get("/api/notifications", headers=auth_headers(alice)).json()
    assert [(n["kind"], n["body"]) for n in inbox] == [("announcement", "Reunião geral")]
    assert client.get("/api/notifications", headers=auth_headers(admin)).json() == []


def test_publication_link_notifies_active_users(client, admin, alice, bob):
    client.put("/api/schedule-publication/pdf", json={"url": "https://example.org/escala.pdf"},
               headers=auth_headers(admin))
    for user in (alice, bob):
        inbox = client.get("/api/notifications", headers=auth_headers(user)).json()
        assert inbox[0]["kind"] == "schedule_published"
        assert "PDF" in inbox[0]["body"]


def test_websocket_releases_db_session_after_handshake(client, alice, monkeypatch):
    from escala.routes import websocket as websocket_routes
    from conftest import TestingSessionLocal

    opened = []

    class TrackedSession:
        def __init__(self):
            self.session = TestingSessionLocal()
            self.closed = False
            opened.append(self)

        def __getattr__(self, name):
            return getattr(self.session, name)

        def close(self):
            self.closed = True
            self.session.close()

    monkeypatch.setattr(websocket_routes, "SessionLocal", TrackedSession)
    token = auth_headers(alice)["Authorization"].split()[1]
    with client.websocket_connect(f"/api/ws?token={token}") as ws:
        assert ws.receive_json()["type"] == "connection_established"
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
        # 連線仍開啟時 session 已歸還
        assert len(opened) == 1
        assert opened[0].closed is True
