"""
Tests — Settings loading

  Defaults:    dataclass defaults match the production queue tuning
  YAML:        sections parsed into typed config
  Env vars:    ${VAR} substitution, unset variables become empty
"""
import textwrap

import pytest

from config.settings import QueueConfig, ScheduleConfig, Settings, TriageConfig, load_settings


def _write(tmp_path, body: str) -> str:
    path = tmp_path / "settings.yaml"
    path.write_text(textwrap.dedent(body))
    return str(path)


class TestDefaults:
    def test_queue_defaults(self):
        cfg = QueueConfig()
        assert cfg.backend == "memory"
        assert cfg.failed_threshold == 10
        assert cfg.cleanup_grace_days == 7
        assert cfg.stalled_job_timeout == 600
        assert cfg.queues["notifications"].concurrency == 10
        assert cfg.queues["case-sync"].retain_failed == 25

    def test_schedule_defaults(self):
        cfg = ScheduleConfig()
        assert cfg.daily_case_sync_cron == "0 2 * * *"
        assert cfg.cleanup_cron == "0 3 * * sun"

    def test_triage_defaults(self):
        assert TriageConfig().baseline_priority == "MEDIUM"

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert isinstance(settings, Settings)
        assert settings.database.store_backend == "memory"


class TestYamlLoading:
    def test_sections_parsed(self, tmp_path):
        path = _write(tmp_path, """
            app_name: NyayaMitra Staging
            timezone: Asia/Kolkata
            database:
              url: postgresql://nyaya:pw@db:5432/nyaya
              store_backend: sql
            queue:
              backend: redis
              redis_url: redis://cache:6379/1
              failed_threshold: 25
              stalled_job_timeout: 900
              queues:
                notifications:
                  concurrency: 4
            schedule:
              enabled: false
            triage:
              baseline_priority: low
              workload_threshold: 6
            emergency:
              type: rest
              endpoints:
                Police: https://dispatch.example.in/police
            channels:
              email:
                enabled: true
                credentials:
                  smtp_host: smtp.example.in
        """)

        settings = load_settings(path)

        assert settings.app_name == "NyayaMitra Staging"
        assert settings.database.store_backend == "sql"
        assert settings.queue.backend == "redis"
        assert settings.queue.failed_threshold == 25
        assert settings.queue.stalled_job_timeout == 900
        assert settings.queue.queues["notifications"].concurrency == 4
        assert settings.queue.queues["notifications"].retain_completed == 200
        assert settings.queue.queues["sos-dispatch"].concurrency == 5
        assert settings.schedule.enabled is False
        assert settings.schedule.timezone == "Asia/Kolkata"
        assert settings.triage.baseline_priority == "LOW"
        assert settings.triage.workload_threshold == 6
        assert settings.emergency.endpoints == {"Police": "https://dispatch.example.in/police"}
        assert settings.channels["email"].credentials["smtp_host"] == "smtp.example.in"

    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NYAYA_TEST_REDIS", "redis://queue-host:6380")
        monkeypatch.delenv("NYAYA_TEST_DB", raising=False)
        path = _write(tmp_path, """
            database:
              url: ${NYAYA_TEST_DB}
            queue:
              redis_url: ${NYAYA_TEST_REDIS}
        """)

        settings = load_settings(path)

        assert settings.queue.redis_url == "redis://queue-host:6380"
        assert settings.database.url == "sqlite:///./nyayamitra.db"

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "app_name: From Env\n")
        monkeypatch.setenv("NYAYA_CONFIG", path)
        assert load_settings().app_name == "From Env"


class TestEngineKwargs:
    def test_sqlite(self):
        from database.session import engine_options
        kwargs = engine_options("sqlite+aiosqlite:///./t.db", echo=False)
        assert kwargs["connect_args"] == {"check_same_thread": False}
        assert "pool_size" not in kwargs

    @pytest.mark.parametrize("url", [
        "postgresql+asyncpg://u:p@db/nyaya",
        "mysql+aiomysql://u:p@db/nyaya",
    ])
    def test_pooled(self, url):
        from database.session import engine_options
        kwargs = engine_options(url, echo=True)
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["echo"] is True

    def test_sqlite_memory_shares_one_connection(self):
        from sqlalchemy.pool import StaticPool
        from database.session import engine_options
        assert engine_options("sqlite+aiosqlite:///:memory:")["poolclass"] is StaticPool
