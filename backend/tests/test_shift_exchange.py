from datetime import date, timedelta

from escala.models.shift_exchange import ShiftExchangeRequest
from escala.services.exchange_service import BROADCAST_PREFIX, ShiftExchangeService
from escala.utils.timezone import utc_now

from conftest import auth_headers

# 2025-03-10 為星期一，2025-03-15 為星期六
WEEKDAY = "2025-03-10"
SATURDAY = "2025-03-15"


def create_request(client, requester, target_email, **overrides):
    payload = {
        "target_email": target_email,
        "requested_date": WEEKDAY,
        "requested_shift": "day",
        "offered_date": "2025-03-12",
        "offered_shift": "day",
        "message": "Pode trocar?",
        **overrides,
    }
    return client.post("/api/shift-exchange", json=payload, headers=auth_headers(requester))


def broadcast(client, requester, offered_date=SATURDAY, offered_shift="morning"):
    return client.post(
        "/api/shift-exchange/broadcast",
        json={"offered_date": offered_date, "offered_shift": offered_shift, "message": "Alguém pode?"},
        headers=auth_headers(requester),
    )


def respond(client, user, request_id, decision="accepted", **extra):
    return client.post(
        f"/api/shift-exchange/{request_id}/respond",
        json={"decision": decision, **extra},
        headers=auth_headers(user),
    )


def test_create_targeted_request(client, alice, bob):
    response = create_request(client, alice, "bob@example.com")
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["target_name"] == "Bob"
    assert body["broadcast_id"] is None

    pending = client.get("/api/shift-exchange/pending", headers=auth_headers(bob)).json()
    assert [r["id"] for r in pending] == [body["id"]]


def test_request_to_self_or_unknown_target(client, alice):
    assert create_request(client, alice, "alice@example.com").status_code == 400
    assert create_request(client, alice, "ghost@example.com").status_code == 404


def test_shift_must_match_day_type(client, alice, bob):
    # 平日沒有早班
    response = create_request(client, alice, "bob@example.com", requested_shift="morning")
    assert response.status_code == 400


def test_only_target_can_respond(client, alice, bob, make_user):
    carol = make_user("carol@example.com", name="Carol")
    request_id = create_request(client, alice, "bob@example.com").json()["id"]

    assert respond(client, carol, request_id).status_code == 403
    assert respond(client, alice, request_id).status_code == 403

    response = respond(client, bob, request_id, "rejected")
    assert response.status_code == 200
    assert response.json()["request"]["status"] == "rejected"
    assert response.json()["request"]["responded_at"] is not None

    # 已回覆的請求不能再回覆
    assert respond(client, bob, request_id, "accepted").status_code == 409


def test_respond_notifies_requester_in_app(client, alice, bob):
    request_id = create_request(client, alice, "bob@example.com").json()["id"]
    respond(client, bob, request_id)

    notifications = client.get("/api/notifications", headers=auth_headers(alice)).json()
    assert notifications[0]["kind"] == "exchange_response"
    assert notifications[0]["related_request_id"] == request_id
    assert client.get("/api/notifications/unread-count", headers=auth_headers(alice)).json() == {"unread": 1}


def test_broadcast_fans_out_to_other_active_users(client, db, alice, bob, make_user):
    make_user("carol@example.com", name="Carol")
    make_user("dave@example.com", name="Dave", active=False)

    response = broadcast(client, alice)
    assert response.status_code == 201
    body = response.json()
    assert body["total"] == 2
    assert body["sent"] == 2
    assert body["failed"] == 0
    assert body["message"] == "Pedido enviado para 2 de 2 utilizadores"

    rows = db.query(ShiftExchangeRequest).all()
    assert {r.target_email for r in rows} == {"bob@example.com", "carol@example.com"}
    assert {r.broadcast_id for r in rows} == {body["broadcast_id"]}
    for r in rows:
        assert r.offered_date is None
        assert r.requested_date == date(2025, 3, 15)
        assert r.message.startswith(BROADCAST_PREFIX)


def test_accepting_broadcast_cancels_siblings_only(client, db, alice, bob, make_user):
    carol = make_user("carol@example.com", name="Carol")
    make_user("dave@example.com", name="Dave")
    other = create_request(client, carol, "bob@example.com").json()["id"]

    broadcast_id = broadcast(client, alice).json()["broadcast_id"]
    bob_leg = db.query(ShiftExchangeRequest).filter(
        ShiftExchangeRequest.broadcast_id == broadcast_id,
        ShiftExchangeRequest.target_email == "bob@example.com",
    ).one()

    response = respond(client, bob, bob_leg.id, offered_date=WEEKDAY, offered_shift="day")
    assert response.status_code == 200
    assert response.json()["cancelled_siblings"] == 2
    assert response.json()["request"]["offered_date"] == WEEKDAY

    db.expire_all()
    statuses = {
        r.target_email: r.status
        for r in db.query(ShiftExchangeRequest).filter(ShiftExchangeRequest.broadcast_id == broadcast_id)
    }
    assert statuses == {
        "bob@example.com": "accepted",
        "carol@example.com": "cancelled",
        "dave@example.com": "cancelled",
    }
    # 不同群組的請求不受影響
    assert db.get(ShiftExchangeRequest, other).status == "pending"


def test_second_acceptance_in_broadcast_group_conflicts(client, db, alice, bob, make_user):
    carol = make_user("carol@example.com", name="Carol")
    broadcast_id = broadcast(client, alice).json()["broadcast_id"]
    legs = {
        r.target_email: r.id
        for r in db.query(ShiftExchangeRequest).filter(ShiftExchangeRequest.broadcast_id == broadcast_id)
    }

    assert respond(client, bob, legs["bob@example.com"]).status_code == 200
    assert respond(client, carol, legs["carol@example.com"]).status_code == 409

    db.expire_all()
    accepted = db.query(ShiftExchangeRequest).filter(
        ShiftExchangeRequest.broadcast_id == broadcast_id,
        ShiftExchangeRequest.status == "accepted",
    ).count()
    assert accepted == 1


def test_offered_slot_only_on_broadcast(client, alice, bob):
    request_id = create_request(client, alice, "bob@example.com").json()["id"]
    response = respond(client, bob, request_id, offered_date=WEEKDAY, offered_shift="day")
    assert response.status_code == 400


def test_requester_cancels_whole_broadcast(client, db, alice, bob, make_user):
    make_user("carol@example.com", name="Carol")
    broadcast_id = broadcast(client, alice).json()["broadcast_id"]
    first = db.query(ShiftExchangeRequest).filter(ShiftExchangeRequest.broadcast_id == broadcast_id).first()

    assert client.post(f"/api/shift-exchange/{first.id}/cancel", headers=auth_headers(bob)).status_code == 403

    response = client.post(f"/api/shift-exchange/{first.id}/cancel", headers=auth_headers(alice))
    assert response.status_code == 200
    assert {r["status"] for r in response.json()} == {"cancelled"}
    assert len(response.json()) == 2


def test_grouped_history(client, alice, bob, make_user):
    make_user("carol@example.com", name="Carol")
    broadcast(client, alice)
    create_request(client, alice, "bob@example.com")

    grouped = client.get("/api/shift-exchange/history/grouped", headers=auth_headers(alice)).json()
    assert len(grouped["broadcasts"]) == 1
    group = grouped["broadcasts"][0]
    assert group["total"] == 2
    assert group["pending"] == 2
    assert group["requested_date"] == SATURDAY
    assert len(grouped["requests"]) == 1

    # 收件人看到的是個別請求
    bob_view = client.get("/api/shift-exchange/history/grouped", headers=auth_headers(bob)).json()
    assert bob_view["broadcasts"] == []
    assert len(bob_view["requests"]) == 2


def test_history_is_newest_first(client, alice, bob):
    first = create_request(client, alice, "bob@example.com").json()["id"]
    second = create_request(client, bob, "alice@example.com").json()["id"]
    history = client.get("/api/shift-exchange/history", headers=auth_headers(alice)).json()
    assert [r["id"] for r in history] == [second, first]


def test_cleanup_removes_only_old_terminal_requests(client, db, alice, bob, admin):
    old = utc_now() - timedelta(days=120)
    for status in ("rejected", "cancelled", "accepted", "pending"):
        db.add(ShiftExchangeRequest(
            requester_email=alice.email, requester_name=alice.name,
            target_email=bob.email, target_name=bob.name,
            requested_date=date(2024, 11, 4), requested_shift="day",
            offered_date=date(2024, 11, 5), offered_shift="day",
            status=status, created_at=old, updated_at=old,
        ))
    db.commit()
    create_request(client, alice, "bob@example.com")

    response = client.post("/api/shift-exchange/cleanup", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json() == {"deleted": 2, "retention_days": 90}

    remaining = {r.status for r in db.query(ShiftExchangeRequest).all()}
    assert remaining == {"accepted", "pending"}


def test_cleanup_requires_admin(client, alice):
    assert client.post("/api/shift-exchange/cleanup", headers=auth_headers(alice)).status_code == 403


def test_shift_options(client, alice):
    weekday = client.get("/api/shift-exchange/shift-options", params={"on": WEEKDAY}, headers=auth_headers(alice))
    assert weekday.json()["day_type"] == "weekday"
    assert [o["value"] for o in weekday.json()["options"]] == ["day", "overnight"]

    # 2025-04-18 Sexta-feira Santa
    holiday = client.get("/api/shift-exchange/shift-options", params={"on": "2025-04-18"}, headers=auth_headers(alice))
    assert holiday.json()["day_type"] == "holiday"
    assert [o["value"] for o in holiday.json()["options"]] == ["morning", "afternoon", "night", "overnight"]


def test_accepted_ordered_by_response_time(db, alice, bob):
    request = ShiftExchangeService.create(
        db, alice, bob.email, date(2025, 3, 10), "day", date(2025, 3, 12), "day"
    )
    ShiftExchangeService.respond(db, request.id, bob, "accepted")
    later = ShiftExchangeService.create(
        db, bob, alice.email, date(2025, 3, 10), "day", date(2025, 3, 13), "day"
    )
    ShiftExchangeService.respond(db, later.id, alice, "accepted")
    assert [r.id for r in ShiftExchangeService.accepted(db)] == [request.id, later.id]
