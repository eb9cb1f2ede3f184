"""
Tests for the command-line interface.
"""

import json
import pytest

from reposcheduler import __version__
from reposcheduler import app

from conftest import FakeCreator


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at a throwaway data directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("REPOSCHEDULER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("REPOSCHEDULER_STORE", raising=False)
    monkeypatch.delenv("REPOSCHEDULER_CREDENTIALS_DB", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    return tmp_path / "data"


def _list_json(capsys):
    capsys.readouterr()
    app.main(["list", "--json"])
    return json.loads(capsys.readouterr().out)


class TestCli:
    """End-to-end runs of main() against a temp store."""

    def test_version(self, capsys):
        app.main(["--version"])
        assert capsys.readouterr().out.strip() == __version__

    def test_schedule_and_list(self, cli_env, capsys):
        app.main(["schedule", "--name", "cli-repo", "--in-minutes", "30", "--private", "--gitignore", "Go"])
        out = capsys.readouterr().out
        assert "Repository scheduled" in out
        assert "Status: pending" in out

        jobs = _list_json(capsys)
        assert len(jobs) == 1
        assert jobs[0]["name"] == "cli-repo"
        assert jobs[0]["private"] is True
        assert jobs[0]["gitignore_template"] == "Go"
        assert (cli_env / "jobs.json").exists()

    def test_schedule_in_past_exits_2(self, cli_env, capsys):
        with pytest.raises(SystemExit) as exc:
            app.main(["schedule", "--name", "old", "--at", "2001-01-01T00:00:00Z"])
        assert exc.value.code == 2
        assert "must be in the future" in capsys.readouterr().out

    def test_bad_timestamp(self, cli_env):
        with pytest.raises(SystemExit, match="Invalid --at"):
            app.main(["schedule", "--name", "x", "--at", "tomorrow-ish"])

    def test_update_cancel_and_stats(self, cli_env, capsys):
        app.main(["schedule", "--name", "a", "--in-minutes", "10"])
        job_id = _list_json(capsys)[0]["id"]

        app.main(["update", "--id", job_id, "--description", "changed", "--public"])
        assert "Description: changed" in capsys.readouterr().out

        app.main(["stats"])
        assert "Pending: 1" in capsys.readouterr().out

        app.main(["cancel", "--id", job_id])
        assert _list_json(capsys) == []

    def test_read_only_commands_leave_store_untouched(self, cli_env, capsys, snapshot_file):
        """list/show/stats never rewrite a job another process is creating."""
        before = snapshot_file.read_text(encoding="utf-8")

        app.main(["list", "--store", str(snapshot_file)])
        app.main(["show", "--id", "inflight1", "--store", str(snapshot_file)])
        app.main(["stats", "--store", str(snapshot_file)])

        out = capsys.readouterr().out
        assert "Status: creating" in out
        assert "Creating: 1" in out
        assert snapshot_file.read_text(encoding="utf-8") == before

    def test_bad_config_number(self, cli_env, monkeypatch):
        monkeypatch.setenv("REPOSCHEDULER_MAX_WORKERS", "lots")
        with pytest.raises(SystemExit, match="REPOSCHEDULER_MAX_WORKERS"):
            app.main(["stats"])

    def test_unknown_id(self, cli_env):
        with pytest.raises(SystemExit, match="Job not found"):
            app.main(["show", "--id", "does-not-exist"])

    def test_token_set_without_verify(self, cli_env, capsys):
        app.main(["token", "set", "--token", "ghp_x", "--no-verify"])
        assert "Token saved for 'default'" in capsys.readouterr().out

        app.main(["token", "list"])
        assert "default: (unverified)" in capsys.readouterr().out

    def test_create_now(self, cli_env, capsys, monkeypatch):
        monkeypatch.setattr(app, "RepositoryCreator", lambda **kwargs: FakeCreator("https://github.com/me/now"))
        app.main(["token", "set", "--token", "ghp_x", "--no-verify"])
        app.main(["schedule", "--name", "now-repo", "--in-minutes", "60"])
        job_id = _list_json(capsys)[0]["id"]

        app.main(["create-now", "--id", job_id])
        out = capsys.readouterr().out
        assert "Status: created" in out
        assert "URL: https://github.com/me/now" in out

    def test_create_now_twice_rejected(self, cli_env, capsys, monkeypatch):
        monkeypatch.setattr(app, "RepositoryCreator", lambda **kwargs: FakeCreator())
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
        app.main(["schedule", "--name", "once", "--in-minutes", "60"])
        job_id = _list_json(capsys)[0]["id"]
        app.main(["create-now", "--id", job_id])

        with pytest.raises(SystemExit, match="Cannot trigger"):
            app.main(["create-now", "--id", job_id])
