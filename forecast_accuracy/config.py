from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, field_validator

DEFAULT_ALPHA = 2.0
ALPHA_ENV_VAR = "HORIZON_ALPHA"


def coerce_alpha(value: Any, default: float = DEFAULT_ALPHA) -> float:
    try:
        alpha = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(alpha) or alpha <= 0:
        return default
    return alpha


class ScoringConfig(BaseModel):
    alpha: float = DEFAULT_ALPHA
    epsilon: float = 0.0001

    @field_validator("alpha", mode="before")
    @classmethod
    def _positive_finite_alpha(cls, value: Any) -> float:
        return coerce_alpha(value)


class LeaderboardConfig(BaseModel):
    cache_ttl_s: float = 60
    cache_max_size: int = 5000
    default_limit: int = 10
    max_limit: int = 100


class BackfillConfig(BaseModel):
    batch_size: int = 1000


class StorageConfig(BaseModel):
    db_path: str = "data/forecast_accuracy.sqlite"


class JobsConfig(BaseModel):
    remote: bool = False
    api_base_url: str = "https://api.render.com/v1"
    service_name_prefix: str = "background-worker"
    branch: str = "main"
    command: str = "forecast-accuracy"
    request_timeout_s: int = 20


class AppConfig(BaseModel):
    scoring: ScoringConfig = ScoringConfig()
    leaderboard: LeaderboardConfig = LeaderboardConfig()
    backfill: BackfillConfig = BackfillConfig()
    storage: StorageConfig = StorageConfig()
    jobs: JobsConfig = JobsConfig()


def load_config(path: str | Path, env: Optional[Dict[str, str]] = None) -> AppConfig:
    data: Dict[str, Any] = {}
    config_path = Path(path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
            if isinstance(loaded, dict):
                data = loaded

    environ = os.environ if env is None else env
    alpha_override = environ.get(ALPHA_ENV_VAR)
    if alpha_override not in (None, ""):
        scoring = dict(data.get("scoring") or {})
        scoring["alpha"] = alpha_override
        data["scoring"] = scoring
    return AppConfig(**data)
