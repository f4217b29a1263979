"""
Tests for configuration loading.

What we test
------------
1. default.toml loads and matches the model defaults.
2. VISIBILITY_RECS_* environment variables override file values.
3. Validators reject inverted mode bands, bad weights and bad deltas.
4. active_limit_for() per plan tier.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from visibility_recs.config import (
    AppConfig,
    DetectionConfig,
    LoggingConfig,
    ModeConfig,
    RefreshConfig,
    ScoringConfig,
    load_config,
)

_DEFAULT_TOML = Path(__file__).resolve().parents[2] / "config" / "default.toml"


class TestLoadConfig:
    def test_default_file_matches_models(self):
        cfg = load_config(_DEFAULT_TOML)
        assert cfg.mode == ModeConfig()
        assert cfg.refresh == RefreshConfig()
        assert cfg.scoring == ScoringConfig()
        assert cfg.sweep == AppConfig().sweep
        assert cfg.detection.min_confidence == 60.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VISIBILITY_RECS_MODE_ENTER", "900")
        monkeypatch.setenv("VISIBILITY_RECS_MODE_EXIT", "820")
        monkeypatch.setenv("VISIBILITY_RECS_REFRESH_WINDOW", "7")
        monkeypatch.setenv("VISIBILITY_RECS_DB_PATH", str(tmp_path / "x.db"))
        monkeypatch.setenv("VISIBILITY_RECS_LOG_LEVEL", "debug")
        monkeypatch.setenv("VISIBILITY_RECS_DEBUG", "yes")

        cfg = load_config(_DEFAULT_TOML)

        assert cfg.mode.enter_threshold == 900
        assert cfg.mode.exit_threshold == 820
        assert cfg.refresh.window_days == 7
        assert cfg.database.db_path == str(tmp_path / "x.db")
        assert cfg.logging.level == "DEBUG"
        assert cfg.debug is True

    def test_local_toml_merged(self, tmp_path):
        (tmp_path / "default.toml").write_text("[mode]\nenter_threshold = 850\nexit_threshold = 800\n")
        (tmp_path / "local.toml").write_text("[mode]\nexit_threshold = 790\n")
        cfg = load_config(tmp_path / "default.toml")
        assert cfg.mode.enter_threshold == 850
        assert cfg.mode.exit_threshold == 790


class TestValidators:
    def test_inverted_band(self):
        with pytest.raises(ValidationError):
            ModeConfig(enter_threshold=800, exit_threshold=850)

    def test_band_off_scale(self):
        with pytest.raises(ValidationError):
            ModeConfig(enter_threshold=1200, exit_threshold=800)

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError):
            ScoringConfig(optimization_weights={
                "deficiency": 0.5, "difficulty": 0.3, "compounding": 0.2, "industry": 0.1,
            })

    def test_weights_need_all_keys(self):
        with pytest.raises(ValidationError):
            ScoringConfig(elite_weights={"deficiency": 1.0})

    def test_minor_above_significant(self):
        with pytest.raises(ValidationError):
            DetectionConfig(minor_delta=1.5)

    def test_window_positive(self):
        with pytest.raises(ValidationError):
            RefreshConfig(window_days=0)

    def test_log_level(self):
        assert LoggingConfig(level="warning").level == "WARNING"
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")


class TestActiveLimit:
    @pytest.mark.parametrize("tier,expected", [
        ("free", 5), ("diy", 5), ("pro", 10), ("Agency", 10), ("enterprise", 10),
        ("unknown", 5), (None, 5),
    ])
    def test_tiers(self, tier, expected):
        assert RefreshConfig().active_limit_for(tier) == expected
