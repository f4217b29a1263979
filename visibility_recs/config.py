"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      - committed static defaults
  2. ``config/local.toml``        - optional local overrides (gitignored)
  3. ``.env``                     - local secrets and env overrides (gitignored)
  4. Environment variables        - ``VISIBILITY_RECS_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Every lifecycle service receives an ``AppConfig`` (or one of its sections).
The product-tuned thresholds (mode cutoffs, confidence floors, batch sizes)
live here as named values rather than literals inside the services.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/visibility_recs.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/visibility_recs.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class ModeConfig(BaseModel):
    """Hysteresis thresholds on the 0–1000 total-score scale."""

    model_config = ConfigDict(frozen=True)

    enter_threshold: int = 850
    exit_threshold: int = 800

    @model_validator(mode="after")
    def validate_band(self) -> "ModeConfig":
        if self.exit_threshold >= self.enter_threshold:
            raise ValueError(
                f"exit_threshold ({self.exit_threshold}) must be below "
                f"enter_threshold ({self.enter_threshold})."
            )
        if not 0 <= self.exit_threshold <= 1000 or not 0 <= self.enter_threshold <= 1000:
            raise ValueError("Mode thresholds must lie on the 0–1000 scale.")
        return self


class RefreshConfig(BaseModel):
    """Rotation window and active-set sizes per plan tier.

    ``long_window_tiers`` get contexts that live until the end of the
    current calendar month instead of ``now + window_days``.
    """

    model_config = ConfigDict(frozen=True)

    window_days: int = 5
    long_window_tiers: list[str] = ["free"]
    active_limits: dict[str, int] = {
        "free": 5,
        "diy": 5,
        "pro": 10,
        "agency": 10,
        "enterprise": 10,
    }
    default_active_limit: int = 5

    @field_validator("window_days", "default_active_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}.")
        return v

    def active_limit_for(self, plan_tier: Optional[str]) -> int:
        """Return K, the number of simultaneously active recommendations."""
        if plan_tier is None:
            return self.default_active_limit
        return self.active_limits.get(plan_tier.lower(), self.default_active_limit)


class DetectionConfig(BaseModel):
    """Implicit-implementation detection thresholds.

    Deltas are on the 0–10 pillar scale. Confidences are 0–100.
    """

    model_config = ConfigDict(frozen=True)

    significant_delta: float = 1.0
    minor_delta: float = 0.5
    significant_credit: float = 60.0
    minor_credit: float = 40.0
    linear_credit: float = 30.0
    evidence_weight: float = 15.0
    evidence_cap: float = 40.0
    min_confidence: float = 60.0         # below this a detection is discarded
    auto_complete_confidence: float = 70.0
    skipped_min_confidence: float = 70.0
    skipped_window_days: int = 30
    load_time_improvement_s: float = 0.5

    @model_validator(mode="after")
    def validate_thresholds(self) -> "DetectionConfig":
        if not 0 < self.minor_delta < self.significant_delta:
            raise ValueError(
                "Expected 0 < minor_delta < significant_delta, got "
                f"{self.minor_delta} / {self.significant_delta}."
            )
        if self.skipped_min_confidence < self.min_confidence:
            raise ValueError("skipped_min_confidence must be >= min_confidence.")
        return self


class ScoringConfig(BaseModel):
    """Sub-score combination weights for the impact scorer, per mode."""

    model_config = ConfigDict(frozen=True)

    optimization_weights: dict[str, float] = {
        "deficiency": 0.40,
        "difficulty": 0.30,
        "compounding": 0.20,
        "industry": 0.10,
    }
    elite_weights: dict[str, float] = {
        "deficiency": 0.25,
        "difficulty": 0.20,
        "compounding": 0.30,
        "industry": 0.25,
    }

    @field_validator("optimization_weights", "elite_weights")
    @classmethod
    def validate_weights(cls, v: dict[str, float]) -> dict[str, float]:
        required = {"deficiency", "difficulty", "compounding", "industry"}
        if set(v) != required:
            raise ValueError(f"weights must have exactly the keys {sorted(required)}.")
        if abs(sum(v.values()) - 1.0) > 1e-6:
            raise ValueError(f"weights must sum to 1.0, got {sum(v.values()):.4f}.")
        return v


class SweepConfig(BaseModel):
    """Periodic sweep behaviour: context housekeeping and plateau checks."""

    model_config = ConfigDict(frozen=True)

    cleanup_expired_contexts: bool = True
    plateau_window_days: int = 60
    plateau_min_scans: int = 4
    plateau_max_range: int = 30
    plateau_min_implemented: int = 10
    plateau_cooldown_days: int = 30


class AppConfig(BaseModel):
    """Complete application configuration, the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    mode: ModeConfig = ModeConfig()
    refresh: RefreshConfig = RefreshConfig()
    detection: DetectionConfig = DetectionConfig()
    scoring: ScoringConfig = ScoringConfig()
    sweep: SweepConfig = SweepConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

ENV_PREFIX = "VISIBILITY_RECS_"

# env suffix -> (section or None for top level, key, parser)
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str, Callable[[str], Any]]] = {
    "DB_PATH":        ("database", "db_path", str),
    "LOG_LEVEL":      ("logging", "level", str),
    "MODE_ENTER":     ("mode", "enter_threshold", int),
    "MODE_EXIT":      ("mode", "exit_threshold", int),
    "REFRESH_WINDOW": ("refresh", "window_days", int),
    "DEBUG":          (None, "debug", lambda s: s.strip().lower() in {"1", "true", "yes", "on"}),
}

_SECTIONS: dict[str, type[BaseModel]] = {
    "database": DatabaseConfig,
    "logging": LoggingConfig,
    "mode": ModeConfig,
    "refresh": RefreshConfig,
    "detection": DetectionConfig,
    "scoring": ScoringConfig,
    "sweep": SweepConfig,
}


def project_root() -> Path:
    """Nearest ancestor of this package that holds ``pyproject.toml``."""
    here = Path(__file__).resolve().parent
    for parent in (here, *here.parents):
        if (parent / "pyproject.toml").is_file():
            return parent
    return here.parent


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Build the validated ``AppConfig`` from the layers listed above.

    Raises ``FileNotFoundError`` when the base TOML file is missing and
    ``pydantic.ValidationError`` when a merged value is rejected.
    """
    root = project_root()
    load_dotenv(dotenv_path=root / ".env", override=False)

    base = Path(config_path) if config_path is not None else root / "config" / "default.toml"
    if not base.is_file():
        raise FileNotFoundError(
            f"Config file not found: {base}\n"
            "Create config/default.toml or pass --config explicitly."
        )

    raw = _read_toml(base)
    local = base.with_name("local.toml")
    if local.is_file():
        raw = _merge(raw, _read_toml(local))

    return _to_app_config(_env_layer(raw, os.environ))


def _read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def _merge(lower: dict[str, Any], upper: dict[str, Any]) -> dict[str, Any]:
    """Nested-dict merge; values in ``upper`` win, tables merge key by key."""
    merged = dict(lower)
    for key, value in upper.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _env_layer(raw: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay ``VISIBILITY_RECS_*`` variables listed in ``_ENV_OVERRIDES``."""
    for suffix, (section, key, parse) in _ENV_OVERRIDES.items():
        value = environ.get(ENV_PREFIX + suffix)
        if not value:
            continue
        target = raw if section is None else raw.setdefault(section, {})
        target[key] = parse(value)
    return raw


def _to_app_config(raw: dict[str, Any]) -> AppConfig:
    sections = {name: model(**raw.get(name, {})) for name, model in _SECTIONS.items()}
    return AppConfig(**sections, debug=raw.get("debug", False))
