"""
Tests for the visibility-recs CLI.

What we test
------------
1. init-db creates the database file and is safe to re-run.
2. validate-config prints thresholds; a missing file exits 1.
3. mode-status reports both a fresh account and a forced elite account.
4. run-sweep and cleanup-contexts succeed on an empty database.
5. replay-scan on an unknown scan exits 1.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from visibility_recs.cli import app
from visibility_recs.config import ModeConfig
from visibility_recs.db.connection import get_connection
from visibility_recs.lifecycle.mode import ModeTransitionGate
from visibility_recs.taxonomy.lifecycle_taxonomy import RecommendationMode
from visibility_recs.utils import logging as logging_utils

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging():
    # configure_logging() would replace the root handlers and open a log file.
    with patch.object(logging_utils, "configure_logging"):
        yield


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "recs.db")
    result = runner.invoke(app, ["init-db", "--db-path", path])
    assert result.exit_code == 0, result.output
    return path


class TestInitDb:
    def test_creates_file(self, db_path):
        with get_connection(db_path) as conn:
            tables = {r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table';")}
        assert "recommendations" in tables

    def test_rerun_applies_no_migrations(self, db_path):
        result = runner.invoke(app, ["init-db", "--db-path", db_path])
        assert result.exit_code == 0
        assert "Migrations applied: 0" in result.output


class TestValidateConfig:
    def test_prints_thresholds(self):
        result = runner.invoke(app, ["validate-config"])
        assert result.exit_code == 0
        assert "enter=850 exit=800" in result.output
        assert "[OK] Config valid." in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["validate-config", "--config", str(tmp_path / "missing.toml")])
        assert result.exit_code == 1


class TestModeStatus:
    def test_fresh_account(self, db_path):
        result = runner.invoke(app, ["mode-status", "--account-id", "7", "--db-path", db_path])
        assert result.exit_code == 0
        assert "no mode state yet" in result.output

    def test_elite_account(self, db_path):
        with get_connection(db_path) as conn:
            ModeTransitionGate(conn, ModeConfig()).force_transition(
                7, RecommendationMode.ELITE_MAINTENANCE, score=880
            )
        result = runner.invoke(app, ["mode-status", "--account-id", "7", "--db-path", db_path])
        assert result.exit_code == 0
        assert "elite_maintenance" in result.output
        assert "Recent transitions:" in result.output


class TestRunSweep:
    def test_empty_database(self, db_path):
        result = runner.invoke(app, ["run-sweep", "--db-path", db_path])
        assert result.exit_code == 0
        assert "Due cycles:       0" in result.output
        assert "[OK] Sweep success." in result.output


class TestCleanupContexts:
    def test_empty_database(self, db_path):
        result = runner.invoke(app, ["cleanup-contexts", "--db-path", db_path])
        assert result.exit_code == 0
        assert "[OK] Expired 0 context(s)." in result.output


class TestReplayScan:
    def test_unknown_scan(self, db_path):
        result = runner.invoke(
            app, ["replay-scan", "--account-id", "1", "--scan-id", "404", "--db-path", db_path]
        )
        assert result.exit_code == 1
