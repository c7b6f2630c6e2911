"""CLI entrypoint for trivia stats maintenance and archival."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from trivia_stats.archival.worker import SweepWorker
from trivia_stats.config import TriviaStatsProfile
from trivia_stats.logging_utils import configure_logging
from trivia_stats.service import TriviaStatsService


def main(argv: list[str] | None = None) -> None:
    base = argparse.ArgumentParser(add_help=False)
    base.add_argument("--profile", required=True, help="Path to trivia stats profile YAML")
    base.add_argument("--log-file", default=None, help="Optional log file path")

    parser = argparse.ArgumentParser(description="Daily challenge stats + round-guess archival")
    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser("sweep", parents=[base], help="Finalize and archive aged-out challenges")
    sweep.add_argument("--older-than-days", type=int, default=None, help="Override age threshold")
    sweep.add_argument("--once", action="store_true", help="Run one sweep and exit")

    emergency = commands.add_parser("emergency", parents=[base], help="Finalize one challenge immediately")
    emergency.add_argument("--date", required=True)
    emergency.add_argument("--challenge-id", required=True)

    rebuild = commands.add_parser("rebuild-scores", parents=[base], help="Purge out-of-range scores and recompute stats")
    rebuild.add_argument("--date", required=True)
    rebuild.add_argument("--max-score", type=int, default=None)

    distribution = commands.add_parser("distribution", parents=[base], help="Print the processed score distribution")
    distribution.add_argument("--date", required=True)
    distribution.add_argument("--user-score", default=None)
    distribution.add_argument("--points", default=None)

    args = parser.parse_args(argv)
    configure_logging(level=logging.INFO, log_path=args.log_file)
    profile = TriviaStatsProfile.load(Path(args.profile))
    service = TriviaStatsService.from_profile(profile)
    try:
        _dispatch(args, profile, service)
    finally:
        service.hot_store.close()


def _dispatch(args: argparse.Namespace, profile: TriviaStatsProfile, service: TriviaStatsService) -> None:
    if args.command == "sweep":
        worker = SweepWorker(
            service.scheduler,
            poll_sleep_seconds=profile.poll_sleep_seconds,
            age_threshold_days=args.older_than_days,
        )
        if args.once:
            report = worker.run_once()
            if report is not None:
                print(json.dumps(report.as_dict(), sort_keys=True))
            raise SystemExit(0 if report is not None and report.ok else 1)
        worker.run_forever()
        return
    if args.command == "emergency":
        outcome = service.archive_emergency(args.date, args.challenge_id)
        payload = {"finalized": bool(outcome and outcome.finalized), "archive_ref": outcome.archive_ref if outcome else None}
        print(json.dumps(payload, sort_keys=True))
        return
    if args.command == "rebuild-scores":
        stats = service.rebuild_score_stats(args.date, max_score=args.max_score)
        print(json.dumps({"completions": stats.completions, "averageScore": stats.average_score}, sort_keys=True))
        return
    processed = service.get_distribution(args.date, user_score=args.user_score, point_count=args.points)
    print(json.dumps(processed.as_dict(), sort_keys=True))


if __name__ == "__main__":
    main()
