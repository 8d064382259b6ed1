from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from .commands import doctor as cmd_doctor
from .commands import tracks as cmd_tracks
from .config import Settings, find_config
from .engine import TrackEngine
from .models import TokenPair

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}

QUIET_LOGGERS = ("aiohttp", "asyncio")


class ColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def configure_logging(level_name: str) -> WarningBufferHandler:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(warn_buffer)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return warn_buffer


def _token_pair(value: str) -> TokenPair:
    try:
        return TokenPair.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Music NFT discovery for Tezos wallets")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    scan_parser = subparsers.add_parser("scan", help="Discover the music NFTs held by a wallet")
    scan_parser.add_argument("wallet", help="Tezos address (tz1/tz2/tz3/KT1)")
    scan_parser.add_argument("--json", action="store_true", help="Print tracks as JSON")

    tokens_parser = subparsers.add_parser(
        "tokens",
        help="Look up explicit tokens in the secondary index",
    )
    tokens_parser.add_argument(
        "pairs",
        nargs="+",
        type=_token_pair,
        metavar="CONTRACT:TOKEN_ID",
        help="Token identified by contract address and token id",
    )
    tokens_parser.add_argument("--json", action="store_true", help="Print tracks as JSON")

    search_parser = subparsers.add_parser(
        "search",
        help="Search a wallet's indexed tracks by title or artist",
    )
    search_parser.add_argument("wallet", help="Tezos address whose tracks are searched")
    search_parser.add_argument("term", help="Substring matched against title and artist")
    search_parser.add_argument("--json", action="store_true", help="Print tracks as JSON")

    doctor_parser = subparsers.add_parser(
        "doctor",
        help="Check configuration and upstream reachability",
    )
    doctor_parser.add_argument(
        "--online",
        action="store_true",
        help="Also probe the indexer and secondary index over the network",
    )
    return parser


async def _run_engine_command(args: argparse.Namespace, settings: Settings) -> bool:
    async with TrackEngine.create(settings) as engine:
        match args.command:
            case "scan":
                return await cmd_tracks.scan(engine, args.wallet, json_output=args.json)
            case "tokens":
                return await cmd_tracks.tokens(engine, args.pairs, json_output=args.json)
            case "search":
                return await cmd_tracks.search(engine, args.wallet, args.term, json_output=args.json)
    raise ValueError(f"Unknown command: {args.command}")


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    warn_buffer = configure_logging(args.log_level)
    config_path = find_config(args.config)
    settings = Settings.load(config_path) if config_path else Settings.default()
    # JSON goes to stdout; keep the warnings recap off it.
    show_summary = not getattr(args, "json", False)

    try:
        match args.command:
            case "scan" | "tokens" | "search":
                if not asyncio.run(_run_engine_command(args, settings)):
                    raise SystemExit(1)
            case "doctor":
                report = asyncio.run(cmd_doctor.run(settings, validate_online=args.online))
                for line in report.checks:
                    print(line)
                if not report.ok:
                    raise SystemExit(1)
            case _:
                parser.error("Unknown command")
    except KeyboardInterrupt:
        print("\nInterrupted.")
        raise SystemExit(130)
    finally:
        if show_summary and warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")


if __name__ == "__main__":
    main()
