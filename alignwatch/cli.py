"""
ALIGNWATCH command line.

    alignwatch run                          # scheduler + queue until Ctrl-C
    alignwatch add-landmark NAME LAT LON ELEV
    alignwatch landmark 3
    alignwatch rename-landmark 3 "Tanuki Lake North"
    alignwatch move-landmark 3 LAT LON ELEV
    alignwatch remove-landmark 3
    alignwatch regenerate-year 2027
    alignwatch regenerate-landmark 3 2026 2027
    alignwatch events 2026-01-01 2026-01-31 [--landmark 3]
    alignwatch upcoming [--limit 10]
    alignwatch next-fires
    alignwatch stats
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import List, Optional

from alignwatch.app import AlignwatchApp, create_app
from alignwatch.exceptions import AlignwatchError
from alignwatch.logging_config import get_logger, setup_logging

logger = get_logger("CLI")


def _print(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _run_forever(app: AlignwatchApp):
    await app.start()
    try:
        await asyncio.Event().wait()
    finally:
        await app.shutdown()


async def _run_queued(app: AlignwatchApp, job_id: str):
    """Process the queue (without the scheduler) until the job settles."""
    await app.queue.start()
    try:
        await app.queue.wait_idle()
    finally:
        await app.queue.stop()
    _print(app.queue.get(job_id).to_dict())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="alignwatch", description="Diamond and Pearl alignment calendar")
    parser.add_argument("--config", help="Path to YAML config file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run scheduler and work queue until interrupted")

    add = sub.add_parser("add-landmark", help="Add a landmark and compute this and next year")
    add.add_argument("name")
    add.add_argument("latitude", type=float)
    add.add_argument("longitude", type=float)
    add.add_argument("elevation", type=float)

    show = sub.add_parser("landmark", help="Show one landmark")
    show.add_argument("landmark_id", type=int)

    rename = sub.add_parser("rename-landmark", help="Change a landmark's name")
    rename.add_argument("landmark_id", type=int)
    rename.add_argument("name")

    move = sub.add_parser("move-landmark", help="Change coordinates and recompute this and next year")
    move.add_argument("landmark_id", type=int)
    move.add_argument("latitude", type=float)
    move.add_argument("longitude", type=float)
    move.add_argument("elevation", type=float)

    remove = sub.add_parser("remove-landmark", help="Delete a landmark and its cached events")
    remove.add_argument("landmark_id", type=int)

    year = sub.add_parser("regenerate-year", help="Recompute every landmark for a year")
    year.add_argument("year", type=int)

    lm = sub.add_parser("regenerate-landmark", help="Recompute one landmark for a span of years")
    lm.add_argument("landmark_id", type=int)
    lm.add_argument("start_year", type=int)
    lm.add_argument("end_year", type=int, nargs="?")

    events = sub.add_parser("events", help="List cached events between two dates")
    events.add_argument("start", type=date.fromisoformat)
    events.add_argument("end", type=date.fromisoformat)
    events.add_argument("--landmark", type=int)

    upcoming = sub.add_parser("upcoming", help="Next cached events")
    upcoming.add_argument("--limit", type=int, default=10)

    sub.add_parser("next-fires", help="Next fire time of every maintenance rule")
    sub.add_parser("stats", help="Cache, queue and scheduler status")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the ``alignwatch`` console script."""
    args = build_parser().parse_args(argv)

    try:
        app = create_app(args.config)
    except AlignwatchError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    setup_logging(app.config.log_level, app.config.log_file)

    try:
        if args.command == "run":
            asyncio.run(_run_forever(app))
        elif args.command == "add-landmark":
            landmark, job_id = app.add_landmark(args.name, args.latitude, args.longitude, args.elevation)
            _print(landmark.to_dict())
            asyncio.run(_run_queued(app, job_id))
        elif args.command == "landmark":
            landmark = app.get_landmark(args.landmark_id)
            if landmark is None:
                print(f"error: landmark {args.landmark_id} not found", file=sys.stderr)
                return 1
            _print(landmark.to_dict())
        elif args.command == "rename-landmark":
            _print(app.rename_landmark(args.landmark_id, args.name).to_dict())
        elif args.command == "move-landmark":
            landmark, job_id = app.move_landmark(args.landmark_id, args.latitude, args.longitude, args.elevation)
            _print(landmark.to_dict())
            asyncio.run(_run_queued(app, job_id))
        elif args.command == "remove-landmark":
            app.remove_landmark(args.landmark_id)
            _print({"removed": args.landmark_id})
        elif args.command == "regenerate-year":
            asyncio.run(_run_queued(app, app.triggers.regenerate_year(args.year)))
        elif args.command == "regenerate-landmark":
            job_id = app.triggers.regenerate_landmark(args.landmark_id, args.start_year, args.end_year)
            asyncio.run(_run_queued(app, job_id))
        elif args.command == "events":
            found = app.events.events_in_range(args.start, args.end, landmark_id=args.landmark)
            _print([e.to_dict() for e in found])
        elif args.command == "upcoming":
            _print([e.to_dict() for e in app.events.upcoming(args.limit)])
        elif args.command == "next-fires":
            _print({name: when.isoformat() for name, when in app.scheduler.next_fires().items()})
        elif args.command == "stats":
            _print(app.get_status())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except AlignwatchError as e:
        logger.error(str(e))
        return 1
    finally:
        app.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
