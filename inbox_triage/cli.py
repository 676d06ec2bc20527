"""
Command line entry point.

    inbox-triage serve            # API + scheduler
    inbox-triage poll             # one poll-and-drain cycle, then exit
    inbox-triage status           # print the status view from the state file
"""

import argparse
import json

from inbox_triage.config import Settings
from inbox_triage.core.context import AppContext
from inbox_triage.core.logging import configure_logging, get_logger

log = get_logger(__name__)


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from inbox_triage.app import TriageApp
    from inbox_triage.main import create_app

    app = create_app(TriageApp.create(settings))
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


def cmd_poll(args: argparse.Namespace, settings: Settings) -> int:
    from inbox_triage.app import TriageApp

    triage = TriageApp.create(settings)
    triage.start(start_polling=False)
    try:
        stats = triage.poll_now()
    finally:
        triage.stop()

    log.info("poll_summary", **(stats or {}))
    return 0


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    ctx = AppContext.from_settings(settings)
    ctx.ledger.load()
    snapshot = ctx.stats.snapshot(recent_limit=args.limit)
    print(json.dumps(snapshot, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inbox-triage",
        description="Poll a mailbox, triage new email with an LLM, notify by SMS",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL setting)",
    )
    parser.add_argument(
        "--state-path",
        default=None,
        help="State file (default: STATE_PATH setting)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Never send SMS, only record what would have been sent",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API and scheduler")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8001)
    serve.set_defaults(func=cmd_serve)

    poll = sub.add_parser("poll", help="Run one poll-and-drain cycle")
    poll.set_defaults(func=cmd_poll)

    status = sub.add_parser("status", help="Print the status view")
    status.add_argument("--limit", type=int, default=20, help="Recent decisions/sends to show")
    status.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.state_path:
        overrides["state_path"] = args.state_path
    if args.dry_run:
        overrides["dry_run"] = True
    if args.log_level:
        overrides["log_level"] = args.log_level
    settings = Settings(**overrides)

    configure_logging(settings.log_level, json_output=settings.log_json)
    return args.func(args, settings)


if __name__ == "__main__":
    raise SystemExit(main())
