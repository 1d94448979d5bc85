import pytest

from app.models import Show
from app.services.notification_service import create_notification
from tests.factories import auth_headers, make_horse, make_manager, make_provider


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json() == {"message": "HorseLinc API is running"}


def test_fee(client):
    assert client.get("/api/fee").json() == {"fee": 0.05}


def test_legal_documents(client):
    terms = client.get("/api/legal/terms")
    privacy = client.get("/api/legal/privacy")

    assert terms.status_code == 200
    assert terms.json()["termsOfService"]
    assert privacy.json()["privacyPolicy"]


def test_show_search(client, db):
    manager = make_manager(db, "Tess Trainer")
    db.add_all([Show(name="wellington classic"), Show(name="devon"), Show(name="upperville classic")])
    db.commit()

    body = client.get("/api/shows?searchTerm=CLASSIC", headers=auth_headers(manager)).json()

    assert body["showCount"] == 2
    assert [show["name"] for show in body["shows"]] == ["upperville classic", "wellington classic"]


def test_show_is_created_from_request_body(client, db):
    manager = make_manager(db, "Tess Trainer")
    provider = make_provider(db, "Pat Braider")
    db.add(Show(name="devon"))
    db.commit()

    horse = make_horse(db, manager)
    response = client.post(
        "/api/requests",
        json={
            "_horse": horse.id,
            "_serviceProvider": provider.id,
            "_show": {"name": "  Devon "},
            "date": "2030-05-01T12:00:00",
            "services": [{"service": "Braiding", "rate": 80}],
        },
        headers=auth_headers(manager),
    )

    assert response.json()["_show"]["name"] == "devon"
    assert db.query(Show).count() == 1


@pytest.mark.anyio
async def test_notification_feed(client, db, pushes):
    manager = make_manager(db, "Tess Trainer")
    other = make_manager(db, "Tara Trainer")

    await create_notification(db, [manager.id, other.id, None], "First")
    await create_notification(db, [manager], "Second", send_push=False)
    await create_notification(db, [], "Nobody")

    body = client.get("/api/notifications", headers=auth_headers(manager)).json()

    assert body["notificationCount"] == 2
    assert {n["message"] for n in body["notifications"]} == {"First", "Second"}
    assert len(pushes) == 1
    assert sorted(pushes[0]["include_player_ids"]) == ["device-tara-trainer", "device-tess-trainer"]
