from types import SimpleNamespace

import pytest

from nephrawn import config, database


class _FakeConn:
    async def run_sync(self, _fn) -> None:
        return None

    async def execute(self, _statement) -> None:
        return None


class _FakeContextFactory:
    def __init__(self, fail_times: int) -> None:
        self.fail_times = fail_times
        self.calls = 0

    def __call__(self):
        self.calls += 1
        call_number = self.calls
        fail_times = self.fail_times

        class _Ctx:
            async def __aenter__(self_nonlocal):
                if call_number <= fail_times:
                    raise ConnectionError("db not ready")
                return _FakeConn()

            async def __aexit__(self_nonlocal, exc_type, exc, tb):
                return False

        return _Ctx()


@pytest.fixture()
def fast_retries(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(database.settings, "debug", False, raising=False)
    monkeypatch.setattr(
        database.settings,
        "database_init_retry_delay_seconds",
        0.01,
        raising=False,
    )

    async def _noop_sleep(_seconds: float) -> None:
        return None

    monkeypatch.setattr(database.asyncio, "sleep", _noop_sleep)
    return monkeypatch


@pytest.mark.anyio
async def test_init_db_retries_until_success(fast_retries) -> None:
    begin_factory = _FakeContextFactory(fail_times=2)
    fast_retries.setattr(database, "engine", SimpleNamespace(begin=begin_factory))
    fast_retries.setattr(database.settings, "database_init_retries", 3, raising=False)

    await database.init_db()

    assert begin_factory.calls == 3


@pytest.mark.anyio
async def test_init_db_raises_after_retries_exhausted(fast_retries) -> None:
    begin_factory = _FakeContextFactory(fail_times=10)
    fast_retries.setattr(database, "engine", SimpleNamespace(begin=begin_factory))
    fast_retries.setattr(database.settings, "database_init_retries", 1, raising=False)

    with pytest.raises(ConnectionError, match="db not ready"):
        await database.init_db()

    assert begin_factory.calls == 2


@pytest.mark.anyio
async def test_init_db_reports_missing_tables(fast_retries, caplog) -> None:
    class _PartialSchemaConn(_FakeConn):
        async def run_sync(self, _fn):
            return ["alerts", "notification_logs"]

    class _Ctx:
        async def __aenter__(self):
            return _PartialSchemaConn()

        async def __aexit__(self, exc_type, exc, tb):
            return False

    fast_retries.setattr(database, "engine", SimpleNamespace(begin=_Ctx))

    with caplog.at_level("WARNING", logger="nephrawn.database"):
        await database.init_db()

    assert "Tables missing: alerts, notification_logs" in caplog.text


@pytest.mark.anyio
async def test_check_db(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        database, "engine", SimpleNamespace(connect=_FakeContextFactory(fail_times=0))
    )
    assert await database.check_db() is True

    monkeypatch.setattr(
        database, "engine", SimpleNamespace(connect=_FakeContextFactory(fail_times=1))
    )
    assert await database.check_db() is False


def test_settings_defaults_and_cache():
    settings = config.get_settings()
    second = config.get_settings()

    assert settings is second
    assert settings.app_name == "Nephrawn API"
    assert settings.api_prefix == "/api/v1"
    assert settings.dedup_window_minutes == 5
    assert settings.notification_cooldown_hours == 1.0


def test_email_backend_requires_credentials(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EMAIL_BACKEND", "resend")
    monkeypatch.delenv("RESEND_API_KEY", raising=False)

    with pytest.raises(ValueError, match="RESEND_API_KEY"):
        config.Settings(_env_file=None)


def test_main_app_metadata():
    from nephrawn.main import app

    assert app.title == config.settings.app_name
    assert app.version == config.settings.app_version
    assert app.docs_url == "/docs"
    paths = {route.path for route in app.routes}
    assert "/api/v1/patients/{patient_id}/measurements" in paths
    assert "/api/v1/clinicians/{clinician_id}/notification-preferences" in paths
