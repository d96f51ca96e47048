from nexacore.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.get_rate_limits()["window_ms"] == 60_000
    assert settings.get_collaboration_config()["max_room_size"] == 50
    assert settings.get_collaboration_config()["enforce_locks"] is False
    calendar = settings.get_calendar_config()
    assert (calendar["business_start_hour"], calendar["business_end_hour"]) == (9, 17)
    assert calendar["prodid"] == "-//NexaGestion//Calendar//EN"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("COLLAB_ENFORCE_LOCKS", "true")
    monkeypatch.setenv("CALENDAR_SLOT_STEP_MINUTES", "15")
    monkeypatch.setenv("RATE_LIMIT_BACKEND", "redis")

    settings = Settings(_env_file=None)

    assert settings.get_collaboration_config()["enforce_locks"] is True
    assert settings.get_calendar_config()["slot_step_minutes"] == 15
    assert settings.get_rate_limits()["backend"] == "redis"
