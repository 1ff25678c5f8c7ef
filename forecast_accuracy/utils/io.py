from __future__ import annotations

import gzip
import json
from pathlib import Path
from typing import Any


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def save_gzip_json(path: Path, payload: Any) -> None:
    ensure_dir(path.parent)
    with gzip.open(path, "wt", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=True)


def load_gzip_json(path: Path) -> Any:
    with gzip.open(path, "rt", encoding="utf-8") as handle:
        return json.load(handle)


def load_json(path: Path) -> Any:
    if path.suffix == ".gz":
        return load_gzip_json(path)
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def export_diagnostics(payload: Any) -> dict[str, Any]:
    top_level_keys: list[str] = []
    attestation_count = 0
    condition_count = 0

    if isinstance(payload, dict):
        top_level_keys = sorted(str(key) for key in payload.keys())
        attestations = payload.get("attestations")
        conditions = payload.get("conditions")
        if isinstance(attestations, list):
            attestation_count = len(attestations)
        if isinstance(conditions, list):
            condition_count = len(conditions)
    elif isinstance(payload, list):
        top_level_keys = ["<list>"]

    return {
        "top_level_keys": top_level_keys,
        "attestation_count": attestation_count,
        "condition_count": condition_count,
    }
