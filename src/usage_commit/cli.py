import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

from usage_commit.config import CONFIG_ENV, load_settings
from usage_commit.engine import connect_engine
from usage_commit.errors import UsageCommitError
from usage_commit.logging_config import setup_logging
from usage_commit.models import RunReport
from usage_commit.sink import FailureSink
from usage_commit.source import JsonFileRecordSource

log = logging.getLogger("usage_commit.cli")

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="usage-commit", description="Commit usage records to the chain in batches.")
    parser.add_argument("-c", "--config",
                        type=Path,
                        help="TOML config file layered over the packaged defaults.",
                        )
    parser.add_argument("-l", "--log-level",
                        default=None,
                        help="Log level (default: $LOG_LEVEL or INFO).",
                        )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one batch submission over a records file.")
    run.add_argument("-r", "--records",
                     type=Path,
                     required=True,
                     help="JSON array or JSON-lines file of usage records.",
                     )
    run.add_argument("--fixed",
                     action="store_true",
                     help="Records file is a failure artifact (already fixed-point), e.g. to reprocess failed_batches.json.",
                     )
    run.add_argument("--strict",
                     action="store_true",
                     help=f"Exit {EXIT_PARTIAL} if any batch did not confirm.",
                     )

    serve = sub.add_parser("serve", help="Start the HTTP service.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("-p", "--port", type=int, default=8000)
    return parser.parse_args(argv)


def _install_signal_handlers(cancel: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except NotImplementedError:  # not available on Windows
            pass


async def run_once(args) -> RunReport:
    settings = load_settings(args.config)
    cancel = asyncio.Event()
    _install_signal_handlers(cancel)
    engine = await connect_engine(settings, cancel=cancel)
    if args.fixed:
        return await engine.run_chain_records(FailureSink(args.records).read())
    return await engine.run(JsonFileRecordSource(args.records))


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "serve":
        import uvicorn

        # the app is imported by uvicorn and loads its own settings
        if args.config:
            os.environ[CONFIG_ENV] = str(args.config.resolve())
        uvicorn.run("usage_commit.app:app", host=args.host, port=args.port, lifespan="on")
        return EXIT_OK

    try:
        report = asyncio.run(run_once(args))
    except UsageCommitError as e:
        log.error("Run aborted: %s", e)
        return EXIT_FATAL
    except (OSError, ValueError) as e:
        log.error("Run aborted: %s: %s", e.__class__.__name__, e)
        return EXIT_FATAL

    print(json.dumps(report.as_dict(), indent=2))
    if not report.ok:
        log.warning("Run completed with %s failed records, see %s", report.failed_records, report.failure_file)
        if args.strict:
            return EXIT_PARTIAL
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
