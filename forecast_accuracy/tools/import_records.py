from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Sequence

from forecast_accuracy.config import load_config
from forecast_accuracy.db import store
from forecast_accuracy.utils.io import export_diagnostics, load_json
from forecast_accuracy.utils.time import to_unix_seconds

logger = logging.getLogger(__name__)


def normalize_attestation(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": int(record["id"]),
        "uid": record.get("uid"),
        "attester": record.get("attester"),
        "condition_id": record.get("condition_id") or record.get("conditionId"),
        "resolver": record.get("resolver"),
        "prediction": "" if record.get("prediction") is None else str(record.get("prediction")),
        "time": to_unix_seconds(record.get("time")),
        "comment": record.get("comment"),
    }


def normalize_condition(record: dict[str, Any]) -> dict[str, Any]:
    end_time = record.get("end_time", record.get("endTime"))
    return {
        "id": str(record["id"]),
        "question": record.get("question"),
        "end_time": to_unix_seconds(end_time),
        "settled": bool(record.get("settled")),
        "resolved_to_yes": bool(record.get("resolved_to_yes", record.get("resolvedToYes"))),
        "resolver": record.get("resolver"),
    }


def import_records(conn, payload: Any, commit: bool = True) -> dict[str, Any]:
    diagnostics = export_diagnostics(payload)
    if not isinstance(payload, dict):
        logger.warning("Export payload is not an object; keys=%s", diagnostics["top_level_keys"])
        return {**diagnostics, "conditions_imported": 0, "attestations_imported": 0, "skipped": 0}

    conditions = []
    attestations = []
    skipped = 0
    for record in payload.get("conditions") or []:
        try:
            conditions.append(normalize_condition(record))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping condition record %s: %s", record, exc)
            skipped += 1
    for record in payload.get("attestations") or []:
        try:
            attestation = normalize_attestation(record)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping attestation record %s: %s", record, exc)
            skipped += 1
            continue
        if not attestation["attester"] or attestation["time"] is None:
            logger.warning("Skipping attestation %s without attester or time", attestation["id"])
            skipped += 1
            continue
        attestations.append(attestation)

    store.upsert_conditions(conn, conditions, commit=False)
    store.upsert_attestations(conn, attestations, commit=False)
    if commit:
        conn.commit()
    logger.info(
        "Imported %d conditions and %d attestations (skipped=%d)",
        len(conditions),
        len(attestations),
        skipped,
    )
    return {
        **diagnostics,
        "conditions_imported": len(conditions),
        "attestations_imported": len(attestations),
        "skipped": skipped,
    }


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    parser = argparse.ArgumentParser(description="Import attestation/condition exports")
    parser.add_argument("path", help="JSON or .json.gz export with attestations and conditions")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--db", default=None)
    args = parser.parse_args(argv)

    config = load_config(Path(args.config))
    conn = store.get_connection(Path(args.db or config.storage.db_path))
    store.init_db(conn)
    try:
        summary = import_records(conn, load_json(Path(args.path)))
    finally:
        conn.close()
    print(
        f"conditions={summary['conditions_imported']} "
        f"attestations={summary['attestations_imported']} skipped={summary['skipped']}"
    )


if __name__ == "__main__":
    main()
