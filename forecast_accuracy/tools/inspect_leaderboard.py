from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from forecast_accuracy.analytics import leaderboard
from forecast_accuracy.config import load_config
from forecast_accuracy.db import store


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Print the forecaster leaderboard")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--db", default=None)
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--attester", default=None)
    args = parser.parse_args(argv)

    config = load_config(Path(args.config))
    conn = store.get_connection(Path(args.db or config.storage.db_path))
    store.init_db(conn)
    epsilon = config.scoring.epsilon
    top = leaderboard.top_forecasters(conn, args.limit, epsilon, config.leaderboard.max_limit)
    rank = leaderboard.accuracy_rank_by_address(conn, args.attester, epsilon) if args.attester else None
    conn.close()

    if not top:
        print("No scored forecasters.")
        return

    print("top_forecasters:")
    for index, entry in enumerate(top, start=1):
        print(
            f"{index}. {entry.get('attester')} accuracy={_fmt(entry.get('accuracy_score'), 2)} "
            f"mean_tw_error={_fmt(entry.get('mean_tw_error'), 6)} markets={entry.get('num_time_weighted')}"
        )
    if rank is not None:
        print(
            f"rank: {rank['attester']} {rank['rank'] if rank['rank'] is not None else 'n/a'}"
            f"/{rank['total_forecasters']} accuracy={_fmt(rank['accuracy_score'], 2)}"
        )


def _fmt(value: float | None, digits: int) -> str:
    if value is None:
        return "n/a"
    return f"{value:.{digits}f}"


if __name__ == "__main__":
    main()
