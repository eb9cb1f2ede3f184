"""
Tests for settings, .env loading and stats.
"""

import os
import pytest
from datetime import datetime, timezone
from pathlib import Path

from reposcheduler.config import Settings
from reposcheduler.env import load_env
from reposcheduler.models import Job, JobStatus
from reposcheduler.stats import compute_stats


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.store_path == Path("data") / "jobs.json"
        assert settings.credentials_db == Path("data") / "credentials.db"
        assert settings.sweep_interval == 10.0
        assert settings.http_timeout == 30.0
        assert settings.max_workers == 4
        assert settings.api_url == "https://api.github.com"

    def test_data_dir_moves_default_paths(self):
        settings = Settings.from_env({"REPOSCHEDULER_DATA_DIR": "/srv/rs"})
        assert settings.store_path == Path("/srv/rs/jobs.json")
        assert settings.credentials_db == Path("/srv/rs/credentials.db")

    def test_explicit_overrides(self):
        settings = Settings.from_env({
            "REPOSCHEDULER_STORE": "/tmp/a.json",
            "REPOSCHEDULER_SWEEP_INTERVAL": "2.5",
            "REPOSCHEDULER_MAX_WORKERS": "8",
            "GITHUB_API_URL": "https://ghe.example/api/v3",
            "REPOSCHEDULER_LOG_LEVEL": "debug",
        })
        assert settings.store_path == Path("/tmp/a.json")
        assert settings.sweep_interval == 2.5
        assert settings.max_workers == 8
        assert settings.api_url == "https://ghe.example/api/v3"
        assert settings.log_level == "DEBUG"

    def test_invalid_number_names_variable(self):
        with pytest.raises(ValueError, match="REPOSCHEDULER_HTTP_TIMEOUT"):
            Settings.from_env({"REPOSCHEDULER_HTTP_TIMEOUT": "soon"})

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValueError, match="REPOSCHEDULER_LOG_LEVEL"):
            Settings.from_env({"REPOSCHEDULER_LOG_LEVEL": "chatty"})

    def test_non_positive_rejected(self):
        with pytest.raises(ValueError, match="REPOSCHEDULER_SWEEP_INTERVAL"):
            Settings.from_env({"REPOSCHEDULER_SWEEP_INTERVAL": "0"})


class TestLoadEnv:
    """.env loading via python-dotenv."""

    def test_loads_dotenv_without_overriding(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text(
            "REPOSCHEDULER_TEST_A=from-file\nREPOSCHEDULER_TEST_B=from-file\n", encoding="utf-8"
        )
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("REPOSCHEDULER_TEST_A", raising=False)
        monkeypatch.setenv("REPOSCHEDULER_TEST_B", "from-env")

        load_env()

        assert os.environ["REPOSCHEDULER_TEST_A"] == "from-file"
        assert os.environ["REPOSCHEDULER_TEST_B"] == "from-env"
        monkeypatch.delenv("REPOSCHEDULER_TEST_A")

    def test_missing_dotenv_is_fine(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        load_env()


class TestStats:
    """Aggregate counts."""

    def test_counts_per_status(self):
        when = datetime(2026, 1, 1, tzinfo=timezone.utc)
        jobs = [
            Job(name="a", scheduled_at=when),
            Job(name="b", scheduled_at=when),
            Job(name="c", scheduled_at=when, status=JobStatus.CREATING),
            Job(name="d", scheduled_at=when, status=JobStatus.CREATED),
            Job(name="e", scheduled_at=when, status=JobStatus.FAILED),
        ]
        assert compute_stats(jobs, active_timers=2) == {
            "total": 5,
            "pending": 2,
            "creating": 1,
            "created": 1,
            "failed": 1,
            "active_timers": 2,
        }

    def test_empty(self):
        stats = compute_stats([])
        assert stats["total"] == 0
        assert stats["active_timers"] == 0
