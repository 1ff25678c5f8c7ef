from __future__ import annotations

from pathlib import Path

import pytest

from forecast_accuracy.config import ALPHA_ENV_VAR, AppConfig, ScoringConfig, load_config


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.yaml", env={})
    assert config == AppConfig()
    assert config.scoring.alpha == 2.0
    assert config.leaderboard.cache_ttl_s == 60
    assert config.leaderboard.cache_max_size == 5000
    assert config.jobs.remote is False


def test_yaml_values_are_loaded(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "scoring:\n  alpha: 1.5\nbackfill:\n  batch_size: 50\njobs:\n  remote: true\n  branch: prod\n",
        encoding="utf-8",
    )

    config = load_config(path, env={})

    assert config.scoring.alpha == 1.5
    assert config.backfill.batch_size == 50
    assert config.jobs.remote is True
    assert config.jobs.branch == "prod"


def test_env_overrides_alpha(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("scoring:\n  alpha: 1.5\n", encoding="utf-8")

    assert load_config(path, env={ALPHA_ENV_VAR: "3"}).scoring.alpha == 3.0
    assert load_config(path, env={ALPHA_ENV_VAR: ""}).scoring.alpha == 1.5


@pytest.mark.parametrize("raw", ["-1", "0", "nan", "inf", "abc"])
def test_invalid_env_alpha_falls_back_to_default(tmp_path: Path, raw: str) -> None:
    assert load_config(tmp_path / "missing.yaml", env={ALPHA_ENV_VAR: raw}).scoring.alpha == 2.0


def test_scoring_config_coerces_alpha() -> None:
    assert ScoringConfig(alpha="abc").alpha == 2.0
    assert ScoringConfig(alpha="0.5").alpha == 0.5
    assert ScoringConfig().epsilon == pytest.approx(0.0001)
