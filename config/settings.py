"""
Configuration loader for the NyayaMitra job pipeline.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class ChannelConfig:
    enabled: bool = False
    credentials: dict[str, Any] = field(default_factory=dict)


@dataclass
class CaseApiConfig:
    type: str = "mock"                  # "rest" | "mock"
    base_url: str = ""
    auth_type: str = "bearer"           # "bearer" | "api_key" | "none"
    auth_credentials: dict[str, Any] = field(default_factory=dict)
    endpoints: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0


@dataclass
class EmergencyConfig:
    type: str = "mock"                  # "rest" | "mock"
    endpoints: dict[str, str] = field(default_factory=dict)   # service name -> URL
    api_key: str = ""
    failure_rate: float = 0.0           # mock gateway only
    timeout: float = 10.0


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./nyayamitra.db"             # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory"


@dataclass
class QueueTuning:
    concurrency: int = 5
    retain_completed: int = 100
    retain_failed: int = 50


def _default_queue_tuning() -> dict[str, QueueTuning]:
    return {
        "sos-dispatch": QueueTuning(concurrency=5, retain_completed=100, retain_failed=50),
        "notifications": QueueTuning(concurrency=10, retain_completed=200, retain_failed=100),
        "case-sync": QueueTuning(concurrency=3, retain_completed=50, retain_failed=25),
        "report-triage": QueueTuning(concurrency=5, retain_completed=100, retain_failed=50),
    }


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "nyaya"
    delayed_promote_interval: int = 5   # seconds between delayed-set scans
    poll_interval: float = 0.5          # idle worker sleep, seconds
    failed_threshold: int = 10          # failed jobs per queue before health degrades
    cleanup_grace_days: int = 7
    stalled_job_timeout: int = 600      # seconds active before a starting worker requeues a job
    queues: dict[str, QueueTuning] = field(default_factory=_default_queue_tuning)


@dataclass
class ScheduleConfig:
    enabled: bool = True
    daily_case_sync_cron: str = "0 2 * * *"
    cleanup_cron: str = "0 3 * * sun"
    timezone: str = "UTC"


@dataclass
class TriageConfig:
    baseline_priority: str = "MEDIUM"
    workload_threshold: int = 10        # moderators at or above this are skipped for random pick
    recency_hours: int = 24


@dataclass
class Settings:
    app_name: str = "NyayaMitra"
    debug: bool = False
    timezone: str = "UTC"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    case_api: CaseApiConfig = field(default_factory=CaseApiConfig)
    emergency: EmergencyConfig = field(default_factory=EmergencyConfig)
    triage: TriageConfig = field(default_factory=TriageConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values (empty when unset)."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _load_queue(q: dict[str, Any]) -> QueueConfig:
    defaults = QueueConfig()
    tuning = _default_queue_tuning()
    for name, data in (q.get("queues") or {}).items():
        base = tuning.get(name, QueueTuning())
        tuning[name] = QueueTuning(
            concurrency=int(data.get("concurrency", base.concurrency)),
            retain_completed=int(data.get("retain_completed", base.retain_completed)),
            retain_failed=int(data.get("retain_failed", base.retain_failed)),
        )
    return QueueConfig(
        backend=q.get("backend", defaults.backend),
        redis_url=q.get("redis_url") or defaults.redis_url,
        key_prefix=q.get("key_prefix", defaults.key_prefix),
        delayed_promote_interval=q.get("delayed_promote_interval", defaults.delayed_promote_interval),
        poll_interval=q.get("poll_interval", defaults.poll_interval),
        failed_threshold=q.get("failed_threshold", defaults.failed_threshold),
        cleanup_grace_days=q.get("cleanup_grace_days", defaults.cleanup_grace_days),
        stalled_job_timeout=int(q.get("stalled_job_timeout", defaults.stalled_job_timeout)),
        queues=tuning,
    )


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "NYAYA_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.timezone = raw.get("timezone", settings.timezone)

        if "database" in raw:
            db = raw["database"]
            settings.database = DatabaseConfig(
                url=db.get("url") or settings.database.url,
                store_backend=db.get("store_backend", settings.database.store_backend),
            )

        if "queue" in raw:
            settings.queue = _load_queue(raw["queue"] or {})

        if "schedule" in raw:
            sc = raw["schedule"]
            settings.schedule = ScheduleConfig(
                enabled=sc.get("enabled", True),
                daily_case_sync_cron=sc.get("daily_case_sync_cron", "0 2 * * *"),
                cleanup_cron=sc.get("cleanup_cron", "0 3 * * sun"),
                timezone=sc.get("timezone", settings.timezone),
            )

        if "case_api" in raw:
            ca = raw["case_api"]
            settings.case_api = CaseApiConfig(
                type=ca.get("type", "mock"),
                base_url=ca.get("base_url", ""),
                auth_type=ca.get("auth_type", "bearer"),
                auth_credentials=ca.get("auth_credentials", {}),
                endpoints=ca.get("endpoints", {}),
                timeout=ca.get("timeout", 30.0),
            )

        if "emergency" in raw:
            em = raw["emergency"]
            settings.emergency = EmergencyConfig(
                type=em.get("type", "mock"),
                endpoints=em.get("endpoints", {}),
                api_key=em.get("api_key", ""),
                failure_rate=float(em.get("failure_rate", 0.0)),
                timeout=em.get("timeout", 10.0),
            )

        if "triage" in raw:
            tr = raw["triage"]
            settings.triage = TriageConfig(
                baseline_priority=str(tr.get("baseline_priority", "MEDIUM")).upper(),
                workload_threshold=tr.get("workload_threshold", 10),
                recency_hours=tr.get("recency_hours", 24),
            )

        if "channels" in raw:
            for ch_name, ch_data in raw["channels"].items():
                settings.channels[ch_name] = ChannelConfig(
                    enabled=ch_data.get("enabled", False),
                    credentials=ch_data.get("credentials", {}),
                )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
