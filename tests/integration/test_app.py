from fastapi.testclient import TestClient

from nexacore.config import settings
from nexacore.errors import NotFoundError
from nexacore.main import create_app


def test_healthz():
    with TestClient(create_app()) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "nexacore"}
    assert "X-RateLimit-Limit" not in response.headers


def test_readyz_reports_collaboration_stats():
    client = TestClient(create_app())

    response = client.get("/readyz")

    assert response.status_code == 200
    body = response.json()
    assert set(body["checks"]["collaboration"]) == {
        "active_rooms",
        "active_users",
        "total_updates",
        "messages_to_process",
    }
    assert "X-RateLimit-Remaining" in response.headers


def test_domain_errors_mapped_to_status():
    app = create_app()

    @app.get("/rooms/{room_id}")
    async def get_room(room_id: str):
        raise NotFoundError("Room not found", context={"room_id": room_id})

    client = TestClient(app)
    response = client.get("/rooms/invoice:1")

    assert response.status_code == 404
    assert response.json() == {
        "error": "not_found",
        "message": "Room not found",
        "room_id": "invoice:1",
    }


def test_lifespan_runs_maintenance_jobs():
    app = create_app()

    with TestClient(app) as client:
        client.get("/healthz")
        tasks = list(app.state.background_tasks)
        assert sorted(task.get_name() for task in tasks) == [
            "job:presence_cleanup",
            "job:rate_limit_sweep",
        ]
        assert not any(task.done() for task in tasks)

    assert all(task.done() for task in tasks)


def test_lifespan_jobs_can_be_disabled(monkeypatch):
    monkeypatch.setattr(settings, "BACKGROUND_JOBS_ENABLED", False)
    app = create_app()

    with TestClient(app):
        assert app.state.background_tasks == []
