from datetime import date

import pytest

from escala.core.config import settings
from escala.models.schedule import Schedule
from escala.services import submission_policy
from escala.services.settings_service import SystemSettingsService
from escala.services.submission_policy import evaluate, submission_month
from escala.websocket.connection_manager import connection_manager

from conftest import auth_headers

SELECTION = {"shifts": ["Segunda-feira", "Sábado_manhã"], "overnights": ["Sex/Sab"]}


@pytest.fixture()
def on_day(monkeypatch):
    """固定提交檢查所用的「今天」"""
    def _set(day):
        monkeypatch.setattr(submission_policy, "local_today", lambda: date(2025, 3, day))
    return _set


def submit(client, user, month="2025-04", dates=None, **extra):
    payload = {"month": month, "dates": dates or SELECTION, **extra}
    return client.post("/api/schedules", json=payload, headers=auth_headers(user))


def test_window_rule():
    assert evaluate(date(2025, 3, 15), is_admin=False, override=False).allowed
    blocked = evaluate(date(2025, 3, 16), is_admin=False, override=False)
    assert not blocked.allowed
    assert "15" in blocked.message
    assert evaluate(date(2025, 3, 16), is_admin=False, override=True).allowed
    assert evaluate(date(2025, 3, 31), is_admin=True, override=False).allowed


def test_submission_after_deadline_is_rejected(client, alice, on_day):
    on_day(16)
    response = submit(client, alice)
    assert response.status_code == 403
    assert "dia 15" in response.json()["detail"]


def test_late_submission_override(client, db, alice, admin, on_day):
    on_day(20)
    response = client.put(
        "/api/system-settings/late-submission/alice@example.com",
        json={"allowed": True},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["key"] == "allow_submission_after_15th_alice@example.com"
    assert response.json()["value"] == "true"

    assert submit(client, alice).status_code == 200


def test_admin_can_submit_for_user_after_deadline(client, alice, admin, on_day):
    on_day(28)
    response = submit(client, admin, user_email="alice@example.com")
    assert response.status_code == 200
    assert response.json()["user_email"] == "alice@example.com"


def test_user_cannot_submit_for_someone_else(client, alice, bob, on_day):
    on_day(1)
    assert submit(client, alice, user_email="bob@example.com").status_code == 403


def test_edit_count_and_cap(client, db, alice, on_day):
    on_day(10)
    first = submit(client, alice)
    assert first.status_code == 200
    assert first.json()["edit_count"] == 1
    assert first.json()["dates"]["shifts"] == ["Segunda-feira", "Sábado_manhã"]

    second = submit(client, alice, dates={"shifts": ["Terça-feira"], "overnights": []})
    assert second.status_code == 200
    assert second.json()["edit_count"] == 2
    assert second.json()["id"] == first.json()["id"]

    third = submit(client, alice)
    assert third.status_code == 403
    assert str(settings.MAX_SCHEDULE_EDITS) in third.json()["detail"]

    assert db.query(Schedule).filter(Schedule.user_email == "alice@example.com").count() == 1


def test_admin_reset_edit_count(client, db, alice, admin, on_day):
    on_day(10)
    submit(client, alice)
    submit(client, alice)

    response = client.post("/api/schedules/alice@example.com/reset-edit-count", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["updated"] == 1

    again = submit(client, alice)
    assert again.status_code == 200
    assert again.json()["edit_count"] == 1


def test_resubmission_clears_printed_flag(client, alice, admin, on_day):
    on_day(5)
    schedule_id = submit(client, alice).json()["id"]
    printed = client.post(f"/api/schedules/{schedule_id}/printed", headers=auth_headers(admin))
    assert printed.json()["printed_at"] is not None

    assert submit(client, alice).json()["printed_at"] is None


def test_empty_selection_rejected(client, alice, on_day):
    on_day(5)
    response = submit(client, alice, dates={"shifts": [], "overnights": []})
    assert response.status_code == 422


def test_unknown_shift_rejected(client, alice, on_day):
    on_day(5)
    response = submit(client, alice, dates={"shifts": ["Feriado"], "overnights": []})
    assert response.status_code == 422


def test_legacy_date_format_accepted(client, alice, on_day):
    on_day(5)
    response = submit(client, alice, dates=[{"date": "2025-04-07", "shifts": ["day"]}])
    assert response.status_code == 200
    assert response.json()["dates"] == [{"date": "2025-04-07", "shifts": ["day"]}]


def test_schedule_listing(client, alice, bob, admin, on_day):
    on_day(5)
    submit(client, alice)
    submit(client, bob)

    everything = client.get("/api/schedules", headers=auth_headers(admin)).json()
    assert {s["user_email"] for s in everything} == {"alice@example.com", "bob@example.com"}

    own = client.get("/api/schedules", headers=auth_headers(alice)).json()
    assert [s["user_email"] for s in own] == ["alice@example.com"]


def test_submission_status(client, db, alice, monkeypatch):
    from escala.routes import schedules as schedule_routes

    monkeypatch.setattr(schedule_routes, "today", lambda: date(2025, 3, 20))
    status = client.get("/api/schedules/submission-status", headers=auth_headers(alice)).json()
    assert status["month"] == "2025-04"
    assert status["window_open"] is False
    assert status["can_submit"] is False
    assert status["edits_remaining"] == settings.MAX_SCHEDULE_EDITS

    SystemSettingsService.set_late_submission(db, "alice@example.com", True)
    status = client.get("/api/schedules/submission-status", headers=auth_headers(alice)).json()
    assert status["can_submit"] is True
    assert status["late_submission_allowed"] is True
    assert status["edits_remaining"] is None


def test_submission_month_is_next_month():
    assert submission_month(date(2025, 3, 20)) == "2025-04"
    assert submission_month(date(2025, 12, 1)) == "2026-01"


def test_change_event_follows_row_creation(client, alice, admin, on_day, monkeypatch):
    events = []

    async def record(table, event, record_id=None, *args, **kwargs):
        events.append((table, event))

    monkeypatch.setattr(connection_manager, "broadcast_table_change", record)
    on_day(5)
    submit(client, alice)
    client.post("/api/schedules/alice@example.com/reset-edit-count", headers=auth_headers(admin))
    # 重設後 edit_count 回到 1，但資料列仍存在
    again = submit(client, alice)
    assert again.json()["edit_count"] == 1

    schedule_events = [e for e in events if e[0] == "schedules"]
    assert schedule_events[0] == ("schedules", "INSERT")
    assert schedule_events[-1] == ("schedules", "UPDATE")


def test_submission_notifies_other_admins(client, alice, admin, make_user, on_day):
    other_admin = make_user("chefe@example.com", name="Chefe", role="admin")
    on_day(5)
    submit(client, alice)

    inbox = client.get("/api/notifications", headers=auth_headers(admin)).json()
    assert inbox[0]["kind"] == "schedule_submitted"
    assert inbox[0]["title"] == "Nova Escala Submetida"
    assert "abril de 2025" in inbox[0]["body"]
    assert client.get("/api/notifications", headers=auth_headers(alice)).json() == []

    # 管理員代為提交時不通知自己
    submit(client, admin, user_email="alice@example.com")
    own = client.get("/api/notifications", headers=auth_headers(admin)).json()
    assert [n["title"] for n in own] == ["Nova Escala Submetida"]
    others = client.get("/api/notifications", headers=auth_headers(other_admin)).json()
    assert {n["title"] for n in others} == {"Nova Escala Submetida", "Escala Atualizada"}
