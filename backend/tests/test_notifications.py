import asyncio
from datetime import date
from itertools import count

import httpx
import pytest
import resend
from sqlalchemy.exc import SQLAlchemyError

from escala.core.config import settings
from escala.models.schedule import Schedule
from escala.models.shift_exchange import ShiftExchangeRequest
from escala.services.exchange_service import ShiftExchangeService
from escala.services.notification_service import month_label_pt
from escala.tasks.exchange_tasks import exchange_task_manager, reminder_due

from conftest import auth_headers

EXCHANGE = {
    "target_email": "bob@example.com",
    "requested_date": "2025-03-10",
    "requested_shift": "day",
    "offered_date": "2025-03-12",
    "offered_shift": "day",
}


def running_loop():
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


@pytest.fixture()
def resend_enabled(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")


def test_broadcast_counts_failed_recipients(db, alice, bob, make_user, monkeypatch):
    make_user("carol@example.com", name="Carol")
    make_user("dave@example.com", name="Dave")
    real_commit = db.commit
    commits = count(1)

    def flaky_commit():
        if next(commits) == 2:
            raise SQLAlchemyError("ligação perdida")
        real_commit()

    monkeypatch.setattr(db, "commit", flaky_commit)
    outcome = ShiftExchangeService.broadcast(db, alice, date(2025, 3, 15), "morning", "Alguém?")

    assert (outcome.total, outcome.sent, outcome.failed) == (3, 2, 1)
    assert outcome.summary == "Pedido enviado para 2 de 3 utilizadores"
    targets = {r.target_email for r in db.query(ShiftExchangeRequest).all()}
    assert targets == {"bob@example.com", "dave@example.com"}


def test_email_failure_keeps_request(client, db, alice, bob, resend_enabled, monkeypatch):
    def failing_send(params):
        raise RuntimeError("Resend indisponível")

    monkeypatch.setattr(resend.Emails, "send", failing_send)
    response = client.post("/api/shift-exchange", json=EXCHANGE, headers=auth_headers(alice))

    assert response.status_code == 201
    assert response.json()["status"] == "pending"
    stored = db.query(ShiftExchangeRequest).one()
    assert stored.email_sent is False
    assert stored.email_sent_at is None


def test_email_success_marks_request(client, db, alice, bob, resend_enabled, monkeypatch):
    sent = []

    def fake_send(params):
        sent.append((params["to"], running_loop()))
        return {"id": "email-1"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    response = client.post("/api/shift-exchange", json=EXCHANGE, headers=auth_headers(alice))

    assert response.status_code == 201
    # SDK 同步呼叫不在事件迴圈內執行
    assert sent == [(["bob@example.com"], None)]
    db.expire_all()
    stored = db.query(ShiftExchangeRequest).one()
    assert stored.email_sent is True
    assert stored.email_sent_at is not None


def test_telegram_error_does_not_break_exchange(client, db, alice, bob, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")
    for user, chat_id in ((alice, "111"), (bob, "222")):
        user.telegram_chat_id = chat_id
    db.commit()
    calls = []

    async def fake_post(self, url, **kwargs):
        calls.append(kwargs["json"]["chat_id"])
        return httpx.Response(500, text="Internal Server Error")

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    created = client.post("/api/shift-exchange", json=EXCHANGE, headers=auth_headers(alice))
    assert created.status_code == 201

    answered = client.post(f"/api/shift-exchange/{created.json()['id']}/respond",
                           json={"decision": "accepted"}, headers=auth_headers(bob))
    assert answered.status_code == 200
    assert answered.json()["status"] == "accepted"
    assert calls == ["222", "111"]


def test_month_label():
    assert month_label_pt("2025-04") == "abril de 2025"
    assert month_label_pt("abril") == "abril"


def test_reminder_window():
    assert not reminder_due(date(2025, 3, 11), 15, 3)
    assert reminder_due(date(2025, 3, 12), 15, 3)
    assert reminder_due(date(2025, 3, 15), 15, 3)
    assert not reminder_due(date(2025, 3, 16), 15, 3)


def test_deadline_reminder_targets_pending_users(client, db, admin, alice, bob, monkeypatch):
    monkeypatch.setattr(settings, "SUBMISSION_DEADLINE_DAY", 15)
    monkeypatch.setattr(settings, "DEADLINE_REMINDER_DAYS", 3)
    db.add(Schedule(user_email=alice.email, user_name=alice.name, month="2025-04",
                    dates={"shifts": ["Segunda-feira"], "overnights": []}, edit_count=1))
    db.commit()

    assert asyncio.run(exchange_task_manager.send_deadline_reminders(date(2025, 3, 5))) == 0
    assert asyncio.run(exchange_task_manager.send_deadline_reminders(date(2025, 3, 13))) == 1

    inbox = client.get("/api/notifications", headers=auth_headers(bob)).json()
    assert inbox[0]["kind"] == "deadline_reminder"
    assert "abril de 2025" in inbox[0]["body"]
    assert "15/03/2025" in inbox[0]["body"]
    assert client.get("/api/notifications", headers=auth_headers(alice)).json() == []
    assert client.get("/api/notifications", headers=auth_headers(admin)).json() == []
