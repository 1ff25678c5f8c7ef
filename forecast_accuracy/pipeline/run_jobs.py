from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Sequence

from forecast_accuracy.config import load_config
from forecast_accuracy.db import store
from forecast_accuracy.pipeline import reindex
from forecast_accuracy.service import AccuracyService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forecast-accuracy",
        description="Recompute forecast accuracy scores",
    )
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--db", default=None, help="SQLite database path (overrides storage.db_path)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("backfill", help="Rebuild every attestation score and settled market")

    for name, help_text in (
        ("reindex", "Rebuild scores for one market address and/or market id"),
        ("trigger", "Start a reindex locally or on the background worker"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--address", default=None)
        sub.add_argument("--market-id", dest="market_id", default=None)

    status = subparsers.add_parser("status", help="Show job status")
    status.add_argument(
        "--job",
        default=reindex.REINDEX_JOB,
        choices=[reindex.REINDEX_JOB, reindex.BACKFILL_JOB],
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = build_parser().parse_args(argv)
    config = load_config(Path(args.config))
    db_path = Path(args.db or config.storage.db_path)

    conn = store.get_connection(db_path)
    store.init_db(conn)
    service = AccuracyService(conn, config)
    try:
        if args.command == "backfill":
            result = service.backfill_accuracy()
            logger.info("Done backfilling accuracy scores")
        elif args.command == "reindex":
            result = service.reindex_accuracy(args.address, args.market_id)
            logger.info("Done reindexing accuracy scores")
        elif args.command == "trigger":
            result = service.trigger_reindex(args.address, args.market_id)
        else:
            result = service.status(args.job)
        print(json.dumps(result, ensure_ascii=True, sort_keys=True))
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
