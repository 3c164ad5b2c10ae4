from devkit.config import load_settings


def test_load_settings_reads_env(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://example")
    monkeypatch.setenv("REDIS_URL", "redis://example:6379/0")
    settings = load_settings("api")

    assert settings.SERVICE_NAME == "api"
    assert settings.DATABASE_URL == "postgresql://example"
    assert settings.REDIS_URL == "redis://example:6379/0"


def test_load_settings_accepts_subclass(monkeypatch) -> None:
    from devkit.config import ServiceSettings

    class WorkerSettings(ServiceSettings):
        WORKER_BATCH_SIZE: int = 10

    monkeypatch.setenv("WORKER_BATCH_SIZE", "25")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    settings = load_settings("worker", WorkerSettings)

    assert isinstance(settings, WorkerSettings)
    assert settings.SERVICE_NAME == "worker"
    assert settings.WORKER_BATCH_SIZE == 25
    assert settings.DATABASE_URL is None
