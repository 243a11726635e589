"""
Configuration for the FX Favorability Tracker.

``load_config()`` layers, later wins:

  1. ``config/default.toml``  committed defaults
  2. ``config/local.toml``    machine overrides next to the chosen file (gitignored)
  3. ``.env``                 secrets such as ``EXCHANGE_RATES_API_KEY`` (gitignored)
  4. environment              see ``ENV_OVERRIDES`` and ``DEBUG_ENV_VAR``

Each component is handed its own frozen section (``HistoryConfig`` for the
history store, ``ScoringConfig`` for the engine, ``RatesConfig`` for the
client) at construction; nothing reads the environment at import time.
"""

from __future__ import annotations

import os
import tomllib
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ── Sections ──────────────────────────────────────────────────────────────────

class DatabaseConfig(BaseModel):
    """Where histories and run records live."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/fx_favorability.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class HistoryConfig(BaseModel):
    """Retention and de-duplication policy for stored rate series."""

    model_config = ConfigDict(frozen=True)

    max_samples: int = 400
    min_gap_minutes: float = 60.0

    @field_validator("max_samples")
    @classmethod
    def validate_max_samples(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_samples must be >= 1, got {v}.")
        return v

    @field_validator("min_gap_minutes")
    @classmethod
    def validate_min_gap(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"min_gap_minutes must be >= 0, got {v}.")
        return v

    @property
    def min_gap(self) -> timedelta:
        return timedelta(minutes=self.min_gap_minutes)


class ScoringConfig(BaseModel):
    """Favorability scoring parameters.

    ``momentum_weight = 0`` disables the EMA trend and its score adjustment.
    """

    model_config = ConfigDict(frozen=True)

    lookback: int = 180
    momentum_weight: float = 0.0
    z_max: float = 3.5

    @field_validator("lookback")
    @classmethod
    def validate_lookback(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"lookback must be >= 1, got {v}.")
        return v

    @field_validator("momentum_weight")
    @classmethod
    def validate_momentum_weight(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"momentum_weight must be >= 0, got {v}.")
        return v

    @field_validator("z_max")
    @classmethod
    def validate_z_max(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"z_max must be > 0, got {v}.")
        return v


class RatesConfig(BaseModel):
    """Exchange-rate source and the pairs derived from it.

    ``cross_pairs`` maps a quote symbol to a target symbol: ``{"EUR": "COP"}``
    records ``EUR->COP`` (``rates["COP"] / rates["EUR"]``) instead of
    ``USD->EUR``.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.apilayer.com/exchangerates_data"
    timeout_seconds: float = 10.0
    base: str = "USD"
    symbols: list[str] = ["COP", "MXN", "EUR"]
    cross_pairs: dict[str, str] = {"EUR": "COP"}

    @field_validator("base")
    @classmethod
    def validate_base(cls, v: str) -> str:
        if not v:
            raise ValueError("Base currency must be provided.")
        return v.upper()

    @field_validator("symbols")
    @classmethod
    def validate_symbols(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one target currency must be provided.")
        return [s.upper() for s in v]


class LoggingConfig(BaseModel):
    """Log level, optional log file and output format."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/fx_favorability.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Log level must be one of {list(_LOG_LEVELS)}, got '{v}'.")
        return level


class AppConfig(BaseModel):
    """All sections together; built by ``load_config()`` or directly in tests."""

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    history: HistoryConfig = HistoryConfig()
    scoring: ScoringConfig = ScoringConfig()
    rates: RatesConfig = RatesConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

DEFAULT_CONFIG_RELPATH = Path("config") / "default.toml"
LOCAL_OVERRIDE_NAME = "local.toml"

# env var → (section, key); values stay strings, pydantic coerces them
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "FX_FAVORABILITY_DB_PATH":   ("database", "db_path"),
    "FX_FAVORABILITY_LOG_LEVEL": ("logging", "level"),
    "FX_HISTORY_MAX_SAMPLES":    ("history", "max_samples"),
    "FX_LOOKBACK_SAMPLES":       ("scoring", "lookback"),
    "FX_MOMENTUM_WEIGHT":        ("scoring", "momentum_weight"),
    "FX_Z_MAX":                  ("scoring", "z_max"),
}
DEBUG_ENV_VAR = "FX_FAVORABILITY_DEBUG"


def project_root() -> Path:
    """Nearest ancestor of this package that holds ``pyproject.toml``."""
    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents):
        if (candidate / "pyproject.toml").is_file():
            return candidate
    return here.parent


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Build the ``AppConfig`` from TOML, ``.env`` and the environment.

    Args:
        config_path: TOML file to start from; ``config/default.toml`` under
            the project root when omitted. A ``local.toml`` beside it is
            merged on top.

    Raises:
        FileNotFoundError: ``config_path`` (or the default file) is missing.
        pydantic.ValidationError: A merged value is out of range.
    """
    root = project_root()
    load_dotenv(dotenv_path=root / ".env", override=False)

    path = Path(config_path) if config_path is not None else root / DEFAULT_CONFIG_RELPATH
    if not path.is_file():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Create config/default.toml or pass --config."
        )

    raw = _read_toml(path)
    local = path.with_name(LOCAL_OVERRIDE_NAME)
    if local.is_file() and local != path:
        raw = _merge(raw, _read_toml(local))

    return AppConfig.model_validate(_with_env_overrides(raw))


def _read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Nested-dict merge; ``override`` wins on conflicts."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _with_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply ``ENV_OVERRIDES`` and fold ``[project] debug`` into ``debug``.

    ``FX_FAVORABILITY_DEBUG`` accepts ``1`` / ``true`` / ``yes``.
    """
    result = {k: dict(v) if isinstance(v, dict) else v for k, v in raw.items()}

    for env_var, (section, key) in ENV_OVERRIDES.items():
        if value := os.environ.get(env_var):
            result.setdefault(section, {})[key] = value

    project = result.pop("project", {})
    if debug := os.environ.get(DEBUG_ENV_VAR):
        result["debug"] = debug.lower() in ("1", "true", "yes")
    elif "debug" in project:
        result["debug"] = project["debug"]

    return result
