"""Command line entry point.

    python -m recharge_engine                # serve the HTTP API
    python -m recharge_engine serve --port 9000
    python -m recharge_engine sweep          # one scheduler tick, for cron
"""

import argparse
import json
import os
import sys

import uvicorn

from recharge_engine import __version__

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", choices=LOG_LEVELS, default=os.getenv("LOG_LEVEL", "INFO"))
    common.add_argument("--log-format", choices=["json", "console"], default=os.getenv("LOG_FORMAT", "json"))
    common.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/engine.yaml"),
        help="engine.yaml to load (default: config/engine.yaml)",
    )

    parser = argparse.ArgumentParser(
        prog="recharge-engine",
        description="Recharge-code inventory, allocation and expiry reminders",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", parents=[common], help="run the HTTP API (default)")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    serve.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="auto-reload on code changes",
    )

    commands.add_parser("sweep", parents=[common], help="run one reminder sweep and exit")
    return parser


def run_sweep_once(log_level: str, json_format: bool) -> int:
    """Run one scheduler tick and print its report.

    Returns:
        Exit status: 0 done, 1 another sweep holds the lock, 2 bad configuration
    """
    from recharge_engine.config import ConfigurationError
    from recharge_engine.logging_config import configure_logging, get_logger
    from recharge_engine.services.reminder_scheduler import get_reminder_scheduler

    configure_logging(log_level=log_level, json_format=json_format)
    logger = get_logger(__name__)

    try:
        report = get_reminder_scheduler().run_tick()
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e))
        return 2

    if report is None:
        logger.warning("sweep_not_run", reason="sweep_already_running")
        return 1

    print(json.dumps(report.model_dump(mode="json"), indent=2))
    return 0


def serve(args: argparse.Namespace) -> int:
    try:
        uvicorn.run(
            "recharge_engine.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,
        )
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        print(f"Failed to start recharge engine: {e}", file=sys.stderr)
        return 1
    return 0


def main(argv=None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or (argv[0].startswith("-") and argv[0] not in ("-h", "--help", "--version")):
        argv.insert(0, "serve")
    args = build_parser().parse_args(argv)

    # create_app and get_config read these
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config

    if args.command == "sweep":
        sys.exit(run_sweep_once(args.log_level, args.log_format == "json"))
    sys.exit(serve(args))


if __name__ == "__main__":
    main()
