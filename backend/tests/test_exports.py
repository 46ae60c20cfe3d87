import csv
import io

from escala.models.schedule import Schedule

from conftest import auth_headers


def add_schedule(db, user, month, dates, notes=None):
    schedule = Schedule(
        user_email=user.email, user_name=user.name, month=month,
        dates=dates, notes=notes, edit_count=1,
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule


def test_csv_export_of_selected_users(client, db, admin, alice, bob):
    add_schedule(db, alice, "2025-04", {"shifts": ["Segunda-feira", "Sábado_manhã"], "overnights": ["Sex/Sab"]},
                 notes="Só de manhã")
    add_schedule(db, bob, "2025-04", {"shifts": ["Terça-feira"], "overnights": []})
    add_schedule(db, alice, "2025-05", {"shifts": ["Quinta-feira"], "overnights": []})

    response = client.post(
        "/api/exports/schedules.csv",
        json={"user_emails": ["alice@example.com"], "month": "2025-04"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="escalas_2025-04.csv"' in response.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(response.content.decode("utf-8-sig"))))
    assert rows[0] == ["Utilizador", "Email", "Mês", "Turnos", "Observações", "Edições"]
    assert rows[1] == [
        "Alice", "alice@example.com", "2025-04",
        "Segunda-feira; Sábado manhã; Pernoite Sex/Sab", "Só de manhã", "1",
    ]
    assert len(rows) == 2


def test_csv_export_requires_admin(client, alice):
    response = client.post("/api/exports/schedules.csv", json={"user_emails": []}, headers=auth_headers(alice))
    assert response.status_code == 403


def test_pdf_export(client, db, alice, bob):
    schedule = add_schedule(db, alice, "2025-04", {"shifts": ["Segunda-feira"], "overnights": ["Dom/Seg"]},
                            notes="<nota>")

    response = client.get(f"/api/exports/schedules/{schedule.id}.pdf", headers=auth_headers(alice))
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")

    assert client.get(f"/api/exports/schedules/{schedule.id}.pdf", headers=auth_headers(bob)).status_code == 403
    assert client.get("/api/exports/schedules/999.pdf", headers=auth_headers(alice)).status_code == 404
